# models/app_setting.py
"""
AppSetting model - versioned JSON configuration snapshots.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from datetime import datetime, timezone
from models.base import Base


class AppSetting(Base):
    __tablename__ = 'app_settings'

    settingID = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    value = Column(JSON, nullable=False)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    createdBy = Column(Integer, nullable=True)  # Admin memberID

    __table_args__ = (
        UniqueConstraint('key', 'version', name='uq_app_setting_version'),
    )

    def __repr__(self):
        return f"<AppSetting(key={self.key}, version={self.version})>"
