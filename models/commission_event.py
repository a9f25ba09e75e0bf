# models/commission_event.py
"""
CommissionEvent model - append-only ledger of commissions owed.
"""
from sqlalchemy import Column, Integer, String, Numeric, DECIMAL, Text, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class CommissionEvent(Base, AuditMixin):
    __tablename__ = 'commission_events'

    # Primary key
    eventID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)  # Кто получает
    sourceMemberID = Column(Integer, ForeignKey('members.memberID'), nullable=True)  # Кто сгенерировал
    sourceEventID = Column(String, nullable=True, index=True)  # ID события биллинга

    # Commission details
    commissionType = Column(String, nullable=False)  # fast_start, level_bonus, matrix_membership, matching, product_commission
    level = Column(Integer, nullable=True)
    rate = Column(Numeric(8, 4), nullable=True)  # Процент (10 для 10%), NULL для фиксированных сумм
    amount = Column(DECIMAL(12, 2), nullable=False)

    # Status
    status = Column(String, default="pending", nullable=False, index=True)  # pending, paid, voided
    statusChangedAt = Column(DateTime, nullable=True)
    payoutRequestID = Column(Integer, ForeignKey('payout_requests.requestID'), nullable=True)

    idempotencyKey = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    # Note: createdAt, updatedAt - от AuditMixin

    # Relationships
    member = relationship('Member', foreign_keys=[memberID], backref='commissionsReceived')
    sourceMember = relationship('Member', foreign_keys=[sourceMemberID], backref='commissionsGenerated')

    __table_args__ = (
        CheckConstraint('amount >= 0', name='ck_commission_amount_non_negative'),
    )

    def __repr__(self):
        return (f"<CommissionEvent(eventID={self.eventID}, member={self.memberID}, "
                f"type={self.commissionType}, level={self.level}, amount={self.amount})>")
