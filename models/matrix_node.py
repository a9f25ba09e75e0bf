# models/matrix_node.py
"""
MatrixNode model - one seat in the 3-wide forced matrix.
"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint, Index, text
from sqlalchemy.orm import relationship, backref
from datetime import datetime, timezone
from models.base import Base


class MatrixNode(Base):
    __tablename__ = 'matrix_nodes'

    nodeID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), unique=True, nullable=False)

    # Placement - immutable once written
    parentNodeID = Column(Integer, ForeignKey('matrix_nodes.nodeID'), nullable=True, index=True)
    position = Column(Integer, nullable=True)  # 0, 1, 2; NULL only for the root
    slotGeneration = Column(Integer, default=0, nullable=False)  # +1 each time a released slot is reused
    depth = Column(Integer, nullable=False)  # 1 for the root
    placedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Connection removal
    removedAt = Column(DateTime, nullable=True)
    slotLockedUntil = Column(DateTime, nullable=True)

    member = relationship('Member', backref=backref('matrixNode', uselist=False))
    parent = relationship('MatrixNode', remote_side=[nodeID], backref='children')

    __table_args__ = (
        UniqueConstraint('parentNodeID', 'position', 'slotGeneration', name='uq_matrix_slot'),
        Index('uq_matrix_root', 'depth', unique=True,
              sqlite_where=text('depth = 1'), postgresql_where=text('depth = 1')),
    )

    @property
    def isRemoved(self) -> bool:
        return self.removedAt is not None

    def __repr__(self):
        return (f"<MatrixNode(member={self.memberID}, parent={self.parentNodeID}, "
                f"position={self.position}, depth={self.depth})>")
