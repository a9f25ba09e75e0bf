from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from models import Base
import config


def get_session(databaseUrl: str = None):
    """Создает и возвращает фабрику сессий SQLAlchemy и движок базы данных"""
    url = databaseUrl or config.DATABASE_URL
    engineArgs = {}
    if url.startswith("sqlite"):
        engineArgs["connect_args"] = {"check_same_thread": False}
        # In-memory база живет в одном соединении
        if url in ("sqlite://", "sqlite:///:memory:"):
            engineArgs["poolclass"] = StaticPool

    engine = create_engine(url, **engineArgs)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return session_factory, engine


def init_tables(engine):
    """Инициализирует таблицы базы данных"""
    Base.metadata.create_all(engine)


# Для обратной совместимости с существующим кодом
Session, _engine = get_session()
