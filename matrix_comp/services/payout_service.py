# matrix_comp/services/payout_service.py
"""
Payout request service - validates member withdrawals against the ledger
and records settlement decisions.
"""
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

import config
from models import Member, CommissionEvent, PayoutRequest
from matrix_comp.config.settings import loadSettings
from matrix_comp.errors import (
    NotFound, PendingRequestExists, BelowMinimumPayout, InsufficientBalance,
    InvalidPayoutMethod, InvalidStatusTransition, SettlementMismatch
)
from matrix_comp.events.event_bus import eventBus, MLMEvents
from matrix_comp.services.ledger_service import LedgerService, toMoney
from matrix_comp.utils.time_machine import timeMachine
from matrix_comp.utils.transactions import runInTransaction

logger = logging.getLogger(__name__)

PAYOUT_TRANSITIONS = {
    "pending": {"approved", "rejected", "paid"},
    "approved": {"paid", "rejected"},
    "rejected": set(),
    "paid": set(),
}


class PayoutService:
    """Service for member payout requests."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)

    async def requestPayout(
            self,
            memberId: int,
            method: str,
            amount: Optional[Decimal] = None,
            methodDetails: Optional[str] = None
    ) -> PayoutRequest:
        """
        Create a pending payout request.
        Omitting the amount requests the full available balance.
        """
        if method not in config.PAYOUT_METHODS:
            raise InvalidPayoutMethod(method)

        if amount is not None and toMoney(amount) <= 0:
            raise ValueError(f"Payout amount must be positive, got {amount}")

        async def work():
            self._getMember(memberId)
            settings = loadSettings(self.session)

            pending = self.getPendingRequest(memberId)
            if pending:
                raise PendingRequestExists(memberId, pending.requestID)

            available = await self.ledger.availableBalance(memberId)
            requested = toMoney(amount) if amount is not None else available

            if requested < settings.minimumPayout:
                raise BelowMinimumPayout(requested, settings.minimumPayout)

            if requested > available:
                raise InsufficientBalance(requested, available)

            payoutRequest = PayoutRequest(
                memberID=memberId,
                amount=requested,
                method=method,
                methodDetails=methodDetails,
                status="pending",
                requestedAt=timeMachine.now
            )
            self.session.add(payoutRequest)
            self.session.flush()
            return payoutRequest

        payoutRequest = await runInTransaction(self.session, work, "requestPayout")

        logger.info(
            f"Payout request {payoutRequest.requestID} created for member {memberId}: "
            f"{payoutRequest.amount} via {method}"
        )
        await eventBus.emit(MLMEvents.PAYOUT_REQUESTED, {
            "requestId": payoutRequest.requestID,
            "memberId": memberId,
            "amount": payoutRequest.amount,
            "method": method
        })
        return payoutRequest

    def getPendingRequest(self, memberId: int) -> Optional[PayoutRequest]:
        return self.session.query(PayoutRequest).filter_by(
            memberID=memberId,
            status="pending"
        ).first()

    async def getPayoutRequests(self, memberId: int) -> List[PayoutRequest]:
        return self.session.query(PayoutRequest).filter_by(
            memberID=memberId
        ).order_by(PayoutRequest.requestedAt.desc(), PayoutRequest.requestID.desc()).all()

    # ------------------------------------------------------------------
    # Settlement actions (invoked by the payout collaborator / admin)
    # ------------------------------------------------------------------

    async def approvePayout(self, requestId: int, adminId: int, notes: Optional[str] = None) -> PayoutRequest:
        return await self._settle(requestId, "approved", adminId, notes)

    async def rejectPayout(self, requestId: int, adminId: int, notes: Optional[str] = None) -> PayoutRequest:
        return await self._settle(requestId, "rejected", adminId, notes)

    async def markPayoutPaid(
            self,
            requestId: int,
            adminId: int,
            notes: Optional[str] = None,
            eventIds: Optional[List[int]] = None
    ) -> PayoutRequest:
        """
        Record money sent. Pending commissions are marked paid: the given
        eventIds, or the oldest ones whose running total fits the request.
        Raises SettlementMismatch unless they sum to the requested amount.
        """
        return await self._settle(requestId, "paid", adminId, notes, eventIds)

    async def _settle(
            self,
            requestId: int,
            target: str,
            adminId: int,
            notes: Optional[str],
            eventIds: Optional[List[int]] = None
    ) -> PayoutRequest:

        async def work():
            payoutRequest = self.session.get(PayoutRequest, requestId)
            if not payoutRequest:
                raise NotFound("PayoutRequest", requestId)

            if target not in PAYOUT_TRANSITIONS.get(payoutRequest.status, set()):
                raise InvalidStatusTransition("PayoutRequest", requestId, payoutRequest.status, target)

            if target == "paid":
                ids = eventIds if eventIds is not None else self._selectEventsToSettle(payoutRequest)
                self._checkSettlementCovers(payoutRequest, ids)
                await self.ledger.markPaidInSession(ids, payoutRequest.requestID)

            payoutRequest.status = target
            payoutRequest.processedAt = timeMachine.now
            payoutRequest.processedBy = adminId
            if notes:
                payoutRequest.notes = notes

            self.session.flush()
            return payoutRequest

        payoutRequest = await runInTransaction(self.session, work, f"settlePayout:{target}")

        logger.info(f"Payout request {requestId} marked {target} by admin {adminId}")
        await eventBus.emit(MLMEvents.PAYOUT_SETTLED, {
            "requestId": requestId,
            "memberId": payoutRequest.memberID,
            "status": target,
            "amount": payoutRequest.amount
        })
        return payoutRequest

    def _selectEventsToSettle(self, payoutRequest: PayoutRequest) -> List[int]:
        """Oldest pending commissions whose cumulative sum does not exceed the request."""
        pending = self.session.query(CommissionEvent).filter_by(
            memberID=payoutRequest.memberID,
            status="pending"
        ).order_by(CommissionEvent.createdAt, CommissionEvent.eventID).all()

        selected = []
        remaining = toMoney(payoutRequest.amount)
        for event in pending:
            if event.amount > remaining:
                break
            selected.append(event.eventID)
            remaining -= event.amount

        return selected

    def _checkSettlementCovers(self, payoutRequest: PayoutRequest, eventIds: List[int]):
        """A paid request consumes exactly its amount of the member's own pending commissions."""
        settled = Decimal("0.00")
        for eventId in eventIds:
            event = self.session.get(CommissionEvent, eventId)
            if not event:
                raise NotFound("CommissionEvent", eventId)
            if event.memberID != payoutRequest.memberID:
                raise InvalidStatusTransition("CommissionEvent", eventId, event.status, "paid")
            settled += toMoney(event.amount)

        requested = toMoney(payoutRequest.amount)
        if settled != requested:
            logger.warning(
                f"Payout request {payoutRequest.requestID} not settled: "
                f"commissions cover {settled} of {requested}"
            )
            raise SettlementMismatch(payoutRequest.requestID, requested, settled)

    def _getMember(self, memberId: int) -> Member:
        member = self.session.get(Member, memberId)
        if not member:
            raise NotFound("Member", memberId)
        return member
