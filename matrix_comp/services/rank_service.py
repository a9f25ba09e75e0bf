# matrix_comp/services/rank_service.py
"""
Rank evaluation service for the compensation engine.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import Member, MemberRank, RankHistory
from matrix_comp.config.ranks import (
    RANK_CONFIG, RANK_ORDER, DEFAULT_RANK, Gate, Rank,
    toRank, compareRanks, getNextRank, getMaxPayableLevel
)
from matrix_comp.errors import NotFound
from matrix_comp.events.event_bus import eventBus, MLMEvents
from matrix_comp.services.qualification_gates import QualificationGateProvider
from matrix_comp.utils.time_machine import timeMachine
from matrix_comp.utils.transactions import runInTransaction

logger = logging.getLogger(__name__)


@dataclass
class RankFacts:
    """Qualification facts for one member, supplied by collaborators."""
    personallyEnrolledActive: int = 0
    gates: Dict[Gate, bool] = field(default_factory=dict)

    def passes(self, gate: Gate) -> bool:
        return bool(self.gates.get(gate, False))


class RankService:
    """Service for evaluating member ranks and recording transitions."""

    def __init__(self, session: Session, gateProvider: Optional[QualificationGateProvider] = None):
        self.session = session
        self.gateProvider = gateProvider or QualificationGateProvider()

    async def evaluate(self, memberId: int, facts: Optional[RankFacts] = None) -> Rank:
        """
        Recompute a member's rank and store it if it went up.
        Never lowers a rank; demotion goes through assignRank.
        """
        outcome = await runInTransaction(
            self.session,
            lambda: self._evaluateInSession(memberId, facts),
            "evaluate"
        )
        previousRank, newRank = outcome

        if previousRank != newRank:
            await eventBus.emit(MLMEvents.RANK_ACHIEVED, {
                "memberId": memberId,
                "previousRank": previousRank.value,
                "newRank": newRank.value
            })

        return newRank

    def computeRank(self, facts: RankFacts) -> Rank:
        """Highest tier whose enrollment threshold and gates are all met."""
        for rank in reversed(RANK_ORDER):
            requirements = RANK_CONFIG[rank]

            if facts.personallyEnrolledActive < requirements["personallyEnrolledRequired"]:
                continue

            if all(facts.passes(gate) for gate in requirements["gates"]):
                return rank

        return DEFAULT_RANK

    async def collectFacts(self, memberId: int) -> RankFacts:
        """Build facts from the store and the gate provider."""
        return RankFacts(
            personallyEnrolledActive=await self.countPersonallyEnrolledActive(memberId),
            gates=await self.gateProvider.verdicts(self.session, memberId)
        )

    async def countPersonallyEnrolledActive(self, memberId: int) -> int:
        """Count direct enrollees holding an active, paid membership."""
        activeCount = self.session.query(func.count(Member.memberID)).filter(
            Member.sponsorID == memberId,
            Member.status == "active",
            Member.membershipStatus == "active"
        ).scalar() or 0

        return activeCount

    def getCurrentRank(self, memberId: int) -> Rank:
        """Stored rank, default rank if never evaluated."""
        memberRank = self.session.get(MemberRank, memberId)
        if not memberRank:
            return DEFAULT_RANK
        return toRank(memberRank.currentRank)

    def getMaxPayableLevel(self, memberId: int) -> int:
        return getMaxPayableLevel(self.getCurrentRank(memberId))

    async def progressToNext(self, memberId: int, facts: Optional[RankFacts] = None) -> Dict:
        """Progress toward the next rank, for display only."""
        self._getMember(memberId)
        facts = facts or await self.collectFacts(memberId)

        currentRank = self.getCurrentRank(memberId)
        nextRank = getNextRank(currentRank)

        if nextRank is None:
            return {
                "currentRank": currentRank.value,
                "nextRank": None,
                "current": facts.personallyEnrolledActive,
                "required": 0,
                "percentage": 100,
                "missingGates": []
            }

        requirements = RANK_CONFIG[nextRank]
        required = requirements["personallyEnrolledRequired"]
        current = min(facts.personallyEnrolledActive, required)
        percentage = round(current / required * 100) if required else 100

        return {
            "currentRank": currentRank.value,
            "nextRank": nextRank.value,
            "current": current,
            "required": required,
            "percentage": percentage,
            "missingGates": [gate.value for gate in requirements["gates"] if not facts.passes(gate)]
        }

    async def assignRank(
            self,
            memberId: int,
            newRank: Rank,
            reason: str,
            assignedBy: Optional[int] = None
    ) -> Rank:
        """
        Set a rank by administrative decision.
        The only path that may lower a rank; always recorded in history.
        """
        newRank = toRank(newRank)

        async def work():
            self._getMember(memberId)
            memberRank = self._getOrCreateMemberRank(memberId)
            previousRank = toRank(memberRank.currentRank)

            if previousRank == newRank:
                return previousRank

            self._applyRank(memberRank, previousRank, newRank, reason, "assigned", assignedBy=assignedBy)

            if compareRanks(newRank, previousRank) < 0:
                logger.warning(
                    f"Member {memberId} demoted {previousRank.value} -> {newRank.value} "
                    f"by admin {assignedBy}: {reason}"
                )
            return previousRank

        previousRank = await runInTransaction(self.session, work, "assignRank")

        if previousRank != newRank:
            await eventBus.emit(MLMEvents.RANK_ASSIGNED, {
                "memberId": memberId,
                "previousRank": previousRank.value,
                "newRank": newRank.value,
                "assignedBy": assignedBy
            })

        return newRank

    async def getRankHistory(self, memberId: int) -> List[RankHistory]:
        return self.session.query(RankHistory).filter_by(
            memberID=memberId
        ).order_by(RankHistory.createdAt.desc(), RankHistory.historyID.desc()).all()

    # ------------------------------------------------------------------

    def _getMember(self, memberId: int) -> Member:
        member = self.session.get(Member, memberId)
        if not member:
            raise NotFound("Member", memberId)
        return member

    def _getOrCreateMemberRank(self, memberId: int) -> MemberRank:
        memberRank = self.session.get(MemberRank, memberId)
        if not memberRank:
            memberRank = MemberRank(memberID=memberId, currentRank=DEFAULT_RANK.value)
            self.session.add(memberRank)
            self.session.flush()
        return memberRank

    async def _evaluateInSession(self, memberId: int, facts: Optional[RankFacts]):
        self._getMember(memberId)
        facts = facts or await self.collectFacts(memberId)

        computedRank = self.computeRank(facts)
        memberRank = self._getOrCreateMemberRank(memberId)
        storedRank = toRank(memberRank.currentRank)

        memberRank.lastEvaluatedAt = timeMachine.now

        if compareRanks(computedRank, storedRank) <= 0:
            self.session.flush()
            return storedRank, storedRank

        self._applyRank(
            memberRank,
            storedRank,
            computedRank,
            f"Qualified with {facts.personallyEnrolledActive} personally enrolled active members",
            "natural",
            personallyEnrolledActive=facts.personallyEnrolledActive
        )
        logger.info(f"Member {memberId} rank updated: {storedRank.value} -> {computedRank.value}")
        return storedRank, computedRank

    def _applyRank(
            self,
            memberRank: MemberRank,
            previousRank: Rank,
            newRank: Rank,
            reason: Optional[str],
            method: str,
            assignedBy: Optional[int] = None,
            personallyEnrolledActive: Optional[int] = None
    ):
        now = timeMachine.now
        memberRank.currentRank = newRank.value
        memberRank.rankQualifiedAt = now

        self.session.add(RankHistory(
            memberID=memberRank.memberID,
            previousRank=previousRank.value,
            newRank=newRank.value,
            reason=reason,
            personallyEnrolledActive=personallyEnrolledActive,
            qualificationMethod=method,
            assignedBy=assignedBy,
            createdAt=now
        ))
        self.session.flush()
