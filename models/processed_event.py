# models/processed_event.py
"""
ProcessedEvent model - qualifying events already turned into commissions.
"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime, timezone
from models.base import Base


class ProcessedEvent(Base):
    __tablename__ = 'processed_events'

    sourceEventID = Column(String, primary_key=True)
    eventType = Column(String, nullable=False)  # enrollment_activated, billing_cycle_completed
    memberID = Column(Integer, nullable=False)
    commissionsCount = Column(Integer, default=0)
    processedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<ProcessedEvent(id={self.sourceEventID}, type={self.eventType})>"
