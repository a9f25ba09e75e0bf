# models/payout_request.py
"""
PayoutRequest model - member requests to withdraw pending commissions.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Text, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base


class PayoutRequest(Base):
    __tablename__ = 'payout_requests'

    requestID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    amount = Column(DECIMAL(12, 2), nullable=False)
    method = Column(String, nullable=False)  # cashapp, paypal
    methodDetails = Column(String, nullable=True)  # $cashtag или email PayPal

    status = Column(String, default="pending", nullable=False)  # pending, approved, rejected, paid
    requestedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    processedAt = Column(DateTime, nullable=True)
    processedBy = Column(Integer, nullable=True)  # Admin memberID
    notes = Column(Text, nullable=True)

    member = relationship('Member', backref='payoutRequests')
    commissionEvents = relationship('CommissionEvent', backref='payoutRequest')

    __table_args__ = (
        # Один pending-запрос на участника
        Index('uq_payout_pending_member', 'memberID', unique=True,
              sqlite_where=text("status = 'pending'"), postgresql_where=text("status = 'pending'")),
    )

    def __repr__(self):
        return f"<PayoutRequest(requestID={self.requestID}, member={self.memberID}, amount={self.amount}, status={self.status})>"
