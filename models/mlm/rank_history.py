# models/mlm/rank_history.py
"""
RankHistory model - immutable log of rank transitions.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base


class RankHistory(Base):
    __tablename__ = 'rank_history'

    historyID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relations
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    # Rank details
    previousRank = Column(String, nullable=True)
    newRank = Column(String, nullable=False)
    reason = Column(Text, nullable=True)

    # Qualification metrics at time of transition
    personallyEnrolledActive = Column(Integer, nullable=True)
    qualificationMethod = Column(String, nullable=True)  # natural, assigned

    # If assigned by admin
    assignedBy = Column(Integer, ForeignKey('members.memberID'), nullable=True)

    # Relationships
    member = relationship('Member', foreign_keys=[memberID], backref='rankHistory')
    assigner = relationship('Member', foreign_keys=[assignedBy])

    def __repr__(self):
        return f"<RankHistory(member={self.memberID}, {self.previousRank} -> {self.newRank}, date={self.createdAt})>"
