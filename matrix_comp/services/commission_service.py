# matrix_comp/services/commission_service.py
"""
Commission calculation service - turns qualifying billing events into ledger rows.
"""
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
import logging

from models import Member, CommissionEvent, ProcessedEvent
from matrix_comp.config.settings import CompensationSettings, loadSettings
from matrix_comp.errors import NotFound, DuplicateEvent
from matrix_comp.events.event_bus import eventBus, MLMEvents
from matrix_comp.events.qualifying import EnrollmentActivated, BillingCycleCompleted, QualifyingEvent
from matrix_comp.services.ledger_service import LedgerService, toMoney
from matrix_comp.services.matrix_service import MatrixService
from matrix_comp.services.qualification_gates import QualificationGateProvider
from matrix_comp.services.rank_service import RankService
from matrix_comp.utils.time_machine import timeMachine
from matrix_comp.utils.transactions import runInTransaction

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
FAST_START_DEPTH = 3


class CommissionService:
    """Service for calculating every commission owed on a qualifying event."""

    def __init__(self, session: Session, gateProvider: Optional[QualificationGateProvider] = None):
        self.session = session
        self.matrixService = MatrixService(session)
        self.rankService = RankService(session, gateProvider)
        self.ledger = LedgerService(session)

    async def onQualifyingEvent(self, event: QualifyingEvent) -> List[CommissionEvent]:
        """
        Process all commissions for a qualifying event, all-or-nothing.
        Redelivery of a processed event is a no-op returning the original rows.
        """
        try:
            commissions = await runInTransaction(
                self.session,
                lambda: self._processInSession(event),
                "onQualifyingEvent"
            )
        except DuplicateEvent:
            logger.warning(f"Event {event.eventId} already processed, skipping redelivery")
            return self.getCommissionsForEvent(event.eventId)

        totalDistributed = sum((c.amount for c in commissions), Decimal("0.00"))
        logger.info(
            f"Processed {event.eventType} {event.eventId}: "
            f"{len(commissions)} commissions, total {totalDistributed}"
        )

        await eventBus.emit(MLMEvents.COMMISSION_CALCULATED, {
            "eventId": event.eventId,
            "eventType": event.eventType,
            "memberId": event.memberId,
            "commissions": len(commissions),
            "totalDistributed": totalDistributed
        })
        return commissions

    def getCommissionsForEvent(self, sourceEventId: str) -> List[CommissionEvent]:
        return self.session.query(CommissionEvent).filter_by(
            sourceEventID=sourceEventId
        ).order_by(CommissionEvent.eventID).all()

    # ------------------------------------------------------------------

    async def _processInSession(self, event: QualifyingEvent) -> List[CommissionEvent]:
        # Settings snapshot is read once per attempt
        settings = loadSettings(self.session)

        if self.session.get(ProcessedEvent, event.eventId):
            raise DuplicateEvent(event.eventId)

        if isinstance(event, EnrollmentActivated):
            commissions = await self._processEnrollment(event, settings)
        elif isinstance(event, BillingCycleCompleted):
            commissions = await self._processBillingCycle(event, settings)
        else:
            raise TypeError(f"Unsupported qualifying event {type(event).__name__}")

        self.session.add(ProcessedEvent(
            sourceEventID=event.eventId,
            eventType=event.eventType,
            memberID=event.memberId,
            commissionsCount=len(commissions),
            processedAt=timeMachine.now
        ))
        self.session.flush()
        return commissions

    async def _processEnrollment(
            self,
            event: EnrollmentActivated,
            settings: CompensationSettings
    ) -> List[CommissionEvent]:
        member = self._getMember(event.newMemberId)
        sponsorId = event.sponsorId if event.sponsorId is not None else member.sponsorID

        # Fast start is one-time: a reactivation of a placed member pays nothing
        if self.matrixService.getNode(member.memberID):
            logger.warning(
                f"Member {member.memberID} already in matrix, no fast start for event {event.eventId}"
            )
            return []

        await self.matrixService.placeMember(member.memberID, sponsorId)

        if sponsorId is None or sponsorId == member.memberID:
            return []

        return await self._calculateFastStart(event, sponsorId, settings)

    async def _processBillingCycle(
            self,
            event: BillingCycleCompleted,
            settings: CompensationSettings
    ) -> List[CommissionEvent]:
        self._getMember(event.memberId)

        amountBilled = toMoney(
            event.amountBilled if event.amountBilled is not None else settings.perPlacement
        )
        if amountBilled < 0:
            raise ValueError(f"Billed amount must be non-negative, got {amountBilled}")

        commissions = []
        commissions += await self._calculateLevelBonus(event, settings)
        commissions += await self._calculateMatrixCommissions(event, amountBilled, settings)
        commissions += await self._calculateMatchingBonus(event, commissions, settings)
        return commissions

    async def _calculateFastStart(
            self,
            event: EnrollmentActivated,
            sponsorId: int,
            settings: CompensationSettings
    ) -> List[CommissionEvent]:
        """
        One-time fixed amounts: the enrolling sponsor at depth 1,
        then the sponsor's matrix ancestors at depths 2-3.
        """
        sponsor = self._getMember(sponsorId)
        depth = min(FAST_START_DEPTH, len(settings.fastStartAmounts))
        upline = await self.matrixService.getAncestorChain(sponsor.memberID, depth - 1)
        beneficiaries = [(sponsor, 1)] + [(ancestor, level + 1) for ancestor, level in upline]

        return self._payBeneficiaries(
            event,
            beneficiaries,
            settings.fastStartAmounts,
            "fast_start",
            "Fast Start Level {depth} Bonus"
        )

    async def _calculateLevelBonus(
            self,
            event: BillingCycleCompleted,
            settings: CompensationSettings
    ) -> List[CommissionEvent]:
        """Recurring fixed amounts to the billed member's matrix line, depth 1-3."""
        return await self._payTieredAmounts(
            event,
            settings.levelBonusAmounts,
            "level_bonus",
            "Monthly Level Bonus - Level {depth}"
        )

    async def _payTieredAmounts(
            self,
            event: QualifyingEvent,
            amounts: List[Decimal],
            commissionType: str,
            descriptionTemplate: str
    ) -> List[CommissionEvent]:
        chain = await self.matrixService.getAncestorChain(event.memberId, min(FAST_START_DEPTH, len(amounts)))
        return self._payBeneficiaries(event, chain, amounts, commissionType, descriptionTemplate)

    def _payBeneficiaries(
            self,
            event: QualifyingEvent,
            beneficiaries: List[Tuple[Member, int]],
            amounts: List[Decimal],
            commissionType: str,
            descriptionTemplate: str
    ) -> List[CommissionEvent]:
        commissions = []

        for ancestor, depth in beneficiaries:
            amount = amounts[depth - 1]
            if amount <= 0:
                continue

            if not self._isEligible(ancestor):
                logger.info(
                    f"Skipping {commissionType} level {depth} for member {ancestor.memberID}: "
                    f"not active and paid"
                )
                continue

            commissions.append(self.ledger.recordCommission(
                memberId=ancestor.memberID,
                commissionType=commissionType,
                amount=amount,
                sourceEventId=event.eventId,
                sourceMemberId=event.memberId,
                level=depth,
                description=descriptionTemplate.format(depth=depth)
            ))

        return commissions

    async def _calculateMatrixCommissions(
            self,
            event: BillingCycleCompleted,
            amountBilled: Decimal,
            settings: CompensationSettings
    ) -> List[CommissionEvent]:
        """
        Percentage of the billed amount up the matrix line.
        Depth beyond an ancestor's rank cap is forfeited, not passed up.
        """
        commissions = []
        chain = await self.matrixService.getAncestorChain(event.memberId, settings.matrixPayableDepth)

        for ancestor, depth in chain:
            if not self._isEligible(ancestor):
                logger.info(
                    f"Skipping matrix level {depth} for member {ancestor.memberID}: not active and paid"
                )
                continue

            rank = self.rankService.getCurrentRank(ancestor.memberID)
            maxPayableLevel = self.rankService.getMaxPayableLevel(ancestor.memberID)
            if depth > maxPayableLevel:
                logger.warning(
                    f"Matrix level {depth} forfeited for member {ancestor.memberID}: "
                    f"rank {rank.value} pays through level {maxPayableLevel}"
                )
                continue

            percent = settings.matrixPercent(depth, ancestor.accountCategory)
            amount = toMoney(amountBilled * percent / HUNDRED)
            if amount <= 0:
                continue

            commissions.append(self.ledger.recordCommission(
                memberId=ancestor.memberID,
                commissionType="matrix_membership",
                amount=amount,
                sourceEventId=event.eventId,
                sourceMemberId=event.memberId,
                level=depth,
                rate=percent,
                description=f"Matrix Level {depth} ({ancestor.accountCategory} {percent}%, {rank.value} rank)"
            ))

        return commissions

    async def _calculateMatchingBonus(
            self,
            event: BillingCycleCompleted,
            earned: List[CommissionEvent],
            settings: CompensationSettings
    ) -> List[CommissionEvent]:
        """
        Percentage of level bonus and matrix commissions earned in this event,
        paid up the earners' sponsor line. One row per (sponsor, tier).
        """
        totals: Dict[Tuple[int, int], Decimal] = OrderedDict()
        percents: Dict[Tuple[int, int], set] = {}

        for commission in earned:
            if commission.commissionType not in ("level_bonus", "matrix_membership"):
                continue

            earner = self._getMember(commission.memberID)
            for sponsor, tier in self._sponsorLine(earner, 3):
                rates = settings.matchingRatesFor(sponsor.accountCategory).tiers()
                if tier > len(rates):
                    continue

                if not sponsor.isActivePaid:
                    logger.info(
                        f"Skipping matching tier {tier} for member {sponsor.memberID}: not active and paid"
                    )
                    continue

                key = (sponsor.memberID, tier)
                totals[key] = totals.get(key, Decimal("0")) + commission.amount * rates[tier - 1] / HUNDRED
                percents.setdefault(key, set()).add(rates[tier - 1])

        commissions = []
        for (sponsorId, tier), total in totals.items():
            amount = toMoney(total)
            if amount <= 0:
                continue

            rateSet = percents[(sponsorId, tier)]
            rate = next(iter(rateSet)) if len(rateSet) == 1 else None

            commissions.append(self.ledger.recordCommission(
                memberId=sponsorId,
                commissionType="matching",
                amount=amount,
                sourceEventId=event.eventId,
                sourceMemberId=event.memberId,
                level=tier,
                rate=rate,
                description=f"Matching Bonus - Level {tier}"
            ))

        return commissions

    # ------------------------------------------------------------------

    def _getMember(self, memberId: int) -> Member:
        member = self.session.get(Member, memberId)
        if not member:
            raise NotFound("Member", memberId)
        return member

    def _isEligible(self, member: Member) -> bool:
        """Active, paid, and still connected to the matrix."""
        return member.isActivePaid and self.matrixService.isConnectionActive(member.memberID)

    def _sponsorLine(self, member: Member, maxTiers: int) -> List[Tuple[Member, int]]:
        """Enrolling sponsors above a member, nearest first, as (sponsor, tier)."""
        line = []
        visited = {member.memberID}
        current = member

        for tier in range(1, maxTiers + 1):
            if current.sponsorID is None or current.sponsorID in visited:
                break
            sponsor = self.session.get(Member, current.sponsorID)
            if not sponsor:
                break

            visited.add(sponsor.memberID)
            line.append((sponsor, tier))
            current = sponsor

        return line
