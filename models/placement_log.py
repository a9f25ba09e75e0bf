# models/placement_log.py
"""
PlacementLog model - audit trail of every matrix placement.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base


class PlacementLog(Base):
    __tablename__ = 'placement_logs'

    logID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    nodeID = Column(Integer, ForeignKey('matrix_nodes.nodeID'), nullable=False)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False)
    placedUnderMemberID = Column(Integer, ForeignKey('members.memberID'), nullable=True)
    sponsorID = Column(Integer, ForeignKey('members.memberID'), nullable=True)

    depth = Column(Integer, nullable=False)
    position = Column(Integer, nullable=True)
    positionIndex = Column(Integer, unique=True, nullable=False)  # Порядковый номер размещения (1-based)
    placementSource = Column(String, nullable=False)  # direct_signup, spillover

    node = relationship('MatrixNode', backref='placementLogs')

    def __repr__(self):
        return f"<PlacementLog(member={self.memberID}, under={self.placedUnderMemberID}, source={self.placementSource})>"
