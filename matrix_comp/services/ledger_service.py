# matrix_comp/services/ledger_service.py
"""
Commission ledger - append-only record of commissions and their status.
Source of truth for member balances.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import CommissionEvent
from matrix_comp.errors import NotFound, InvalidStatusTransition
from matrix_comp.events.event_bus import eventBus, MLMEvents
from matrix_comp.utils.time_machine import timeMachine
from matrix_comp.utils.transactions import runInTransaction

logger = logging.getLogger(__name__)

COMMISSION_TYPES = (
    "fast_start",
    "level_bonus",
    "matrix_membership",
    "matching",
    "product_commission",
)

# pending -> paid | voided; paid and voided are final
STATUS_TRANSITIONS = {
    "pending": {"paid", "voided"},
    "paid": set(),
    "voided": set(),
}

CENT = Decimal("0.01")


def toMoney(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def idempotencyKey(sourceEventId: str, beneficiaryId: int, commissionType: str, level: Optional[int]) -> str:
    return f"{sourceEventId}:{beneficiaryId}:{commissionType}:{level if level is not None else 0}"


class LedgerService:
    """Service for writing and reading commission events."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def availableBalance(self, memberId: int) -> Decimal:
        """Sum of pending (unpaid) commissions."""
        return self._sumByStatus(memberId, "pending")

    async def paidTotal(self, memberId: int) -> Decimal:
        return self._sumByStatus(memberId, "paid")

    async def earningsSummary(self, memberId: int) -> Dict[str, Decimal]:
        """Non-voided earnings per commission type plus totals."""
        rows = self.session.query(
            CommissionEvent.commissionType,
            func.sum(CommissionEvent.amount)
        ).filter(
            CommissionEvent.memberID == memberId,
            CommissionEvent.status != "voided"
        ).group_by(CommissionEvent.commissionType).all()

        summary = {commissionType: Decimal("0.00") for commissionType in COMMISSION_TYPES}
        for commissionType, total in rows:
            summary[commissionType] = toMoney(total or 0)

        summary["available"] = await self.availableBalance(memberId)
        summary["paid"] = await self.paidTotal(memberId)
        return summary

    async def getEvents(self, memberId: int, status: Optional[str] = None) -> List[CommissionEvent]:
        query = self.session.query(CommissionEvent).filter_by(memberID=memberId)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(CommissionEvent.createdAt.desc(), CommissionEvent.eventID.desc()).all()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def recordCommission(
            self,
            memberId: int,
            commissionType: str,
            amount: Decimal,
            sourceEventId: str,
            sourceMemberId: Optional[int] = None,
            level: Optional[int] = None,
            rate: Optional[Decimal] = None,
            description: Optional[str] = None
    ) -> CommissionEvent:
        """Append a pending commission. Caller commits."""
        if commissionType not in COMMISSION_TYPES:
            raise ValueError(f"Unknown commission type '{commissionType}'")

        amount = toMoney(amount)
        if amount < 0:
            raise ValueError(f"Commission amount must be non-negative, got {amount}")

        event = CommissionEvent(
            memberID=memberId,
            sourceMemberID=sourceMemberId,
            sourceEventID=sourceEventId,
            commissionType=commissionType,
            level=level,
            rate=rate,
            amount=amount,
            status="pending",
            idempotencyKey=idempotencyKey(sourceEventId, memberId, commissionType, level),
            description=description,
            createdAt=timeMachine.now
        )
        self.session.add(event)
        return event

    async def markPaid(self, eventIds: Iterable[int], payoutRequestId: Optional[int] = None) -> List[CommissionEvent]:
        """Settle pending commissions. Own transaction."""
        eventIds = list(eventIds)
        return await runInTransaction(
            self.session,
            lambda: self.markPaidInSession(eventIds, payoutRequestId),
            "markPaid"
        )

    async def markPaidInSession(
            self,
            eventIds: Iterable[int],
            payoutRequestId: Optional[int] = None
    ) -> List[CommissionEvent]:
        events = []
        for eventId in eventIds:
            event = self._getEvent(eventId)
            self._transition(event, "paid")
            event.payoutRequestID = payoutRequestId
            events.append(event)

        self.session.flush()
        logger.info(f"Marked {len(events)} commissions paid (payout request {payoutRequestId})")
        return events

    async def void(self, eventId: int, reason: str, adminId: Optional[int] = None) -> CommissionEvent:
        """Administrative reversal, e.g. on chargeback."""

        async def work():
            event = self._getEvent(eventId)
            self._transition(event, "voided")
            event.notes = f"Voided by admin {adminId}: {reason}" if adminId else f"Voided: {reason}"
            self.session.flush()
            return event

        event = await runInTransaction(self.session, work, "void")

        logger.info(f"Commission {eventId} voided: {reason}")
        await eventBus.emit(MLMEvents.COMMISSION_VOIDED, {
            "eventId": eventId,
            "memberId": event.memberID,
            "amount": event.amount,
            "reason": reason
        })
        return event

    # ------------------------------------------------------------------

    def _sumByStatus(self, memberId: int, status: str) -> Decimal:
        total = self.session.query(func.sum(CommissionEvent.amount)).filter(
            CommissionEvent.memberID == memberId,
            CommissionEvent.status == status
        ).scalar()
        return toMoney(total or 0)

    def _getEvent(self, eventId: int) -> CommissionEvent:
        event = self.session.get(CommissionEvent, eventId)
        if not event:
            raise NotFound("CommissionEvent", eventId)
        return event

    def _transition(self, event: CommissionEvent, target: str):
        if target not in STATUS_TRANSITIONS.get(event.status, set()):
            raise InvalidStatusTransition("CommissionEvent", event.eventID, event.status, target)

        event.status = target
        event.statusChangedAt = timeMachine.now
