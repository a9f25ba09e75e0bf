# models/member.py
"""
Member model - identity facts the compensation engine reads.
Owned by the identity subsystem; the engine only reads sponsor linkage,
account category and activity status.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship, backref
from datetime import datetime, timezone
from models.base import Base


class Member(Base):
    __tablename__ = 'members'

    memberID = Column(Integer, primary_key=True, autoincrement=True)
    sponsorID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)  # Кто пригласил
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    email = Column(String, nullable=True)
    fullName = Column(String, nullable=True)

    accountCategory = Column(String, default="client", nullable=False)  # client, barber
    status = Column(String, default="active", nullable=False, index=True)  # active, inactive, cancelled
    membershipStatus = Column(String, nullable=True)  # active, past_due, cancelled (из биллинга)

    enrollees = relationship('Member', backref=backref('sponsor', remote_side=[memberID]))

    @property
    def isActivePaid(self) -> bool:
        """Active account holding a paid-up membership."""
        return self.status == "active" and self.membershipStatus == "active"

    def __repr__(self):
        return f"<Member(memberID={self.memberID}, sponsor={self.sponsorID}, category={self.accountCategory})>"
