# models/mlm/member_rank.py
"""
MemberRank model - the single stored rank per member.
Versioned for optimistic concurrency: a concurrent update raises StaleDataError.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship, backref
from datetime import datetime, timezone
from models.base import Base


class MemberRank(Base):
    __tablename__ = 'member_ranks'

    memberID = Column(Integer, ForeignKey('members.memberID'), primary_key=True)
    currentRank = Column(String, default="rookie", nullable=False, index=True)
    rankQualifiedAt = Column(DateTime, nullable=True)
    lastEvaluatedAt = Column(DateTime, nullable=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    version = Column(Integer, nullable=False)

    member = relationship('Member', backref=backref('memberRank', uselist=False))

    __mapper_args__ = {
        "version_id_col": version,
    }

    def __repr__(self):
        return f"<MemberRank(member={self.memberID}, rank={self.currentRank}, v{self.version})>"
