"""
Tests for payout requests and their settlement.
"""

from decimal import Decimal

import pytest

from init import get_session, init_tables
from models import CommissionEvent, Member, PayoutRequest
from matrix_comp.errors import (
    BelowMinimumPayout, InsufficientBalance, InvalidPayoutMethod,
    InvalidStatusTransition, NotFound, PendingRequestExists, SettlementMismatch
)
from matrix_comp.events.event_bus import eventBus, MLMEvents
from matrix_comp.services.ledger_service import LedgerService
from matrix_comp.services.payout_service import PayoutService


@pytest.fixture
def earn(session):
    """Credit pending commissions to a member, one row per amount."""
    ledger = LedgerService(session)
    counter = {"n": 0}

    def _earn(member, *amounts):
        events = []
        for amount in amounts:
            counter["n"] += 1
            events.append(ledger.recordCommission(
                memberId=member.memberID,
                commissionType="fast_start",
                amount=Decimal(str(amount)),
                sourceEventId=f"earn-{counter['n']}",
                level=1
            ))
        session.commit()
        return events

    return _earn


class TestRequestPayout:

    @pytest.mark.asyncio
    async def test_below_minimum_reports_shortfall(self, session, make_member, earn):
        member = make_member()
        earn(member, 40)
        service = PayoutService(session)

        with pytest.raises(BelowMinimumPayout) as exc:
            await service.requestPayout(member.memberID, "cashapp")

        assert str(exc.value) == "$10.00 below minimum payout of $50.00"
        assert exc.value.shortfall == Decimal("10.00")
        assert session.query(PayoutRequest).count() == 0

    @pytest.mark.asyncio
    async def test_omitted_amount_requests_full_balance(self, session, make_member, earn):
        member = make_member()
        earn(member, 25, 25, "20.50")
        service = PayoutService(session)

        request = await service.requestPayout(member.memberID, "paypal", methodDetails="me@example.com")

        assert request.amount == Decimal("70.50")
        assert request.status == "pending"
        assert request.methodDetails == "me@example.com"

    @pytest.mark.asyncio
    async def test_second_request_while_pending_is_refused(self, session, make_member, earn):
        member = make_member()
        earn(member, 120)
        service = PayoutService(session)
        first = await service.requestPayout(member.memberID, "cashapp", Decimal("60"))

        with pytest.raises(PendingRequestExists) as exc:
            await service.requestPayout(member.memberID, "cashapp", Decimal("60"))

        assert exc.value.requestId == first.requestID
        assert session.query(PayoutRequest).count() == 1

    @pytest.mark.asyncio
    async def test_amount_above_balance_is_refused(self, session, make_member, earn):
        member = make_member()
        earn(member, 120)
        service = PayoutService(session)

        with pytest.raises(InsufficientBalance) as exc:
            await service.requestPayout(member.memberID, "paypal", Decimal("200"))

        assert exc.value.available == Decimal("120.00")

    @pytest.mark.asyncio
    async def test_minimum_is_checked_before_balance(self, session, make_member, earn):
        member = make_member()
        earn(member, 10)
        service = PayoutService(session)

        with pytest.raises(BelowMinimumPayout):
            await service.requestPayout(member.memberID, "paypal", Decimal("30"))

    @pytest.mark.asyncio
    async def test_unknown_method_is_refused(self, session, make_member, earn):
        member = make_member()
        earn(member, 120)
        service = PayoutService(session)

        with pytest.raises(InvalidPayoutMethod):
            await service.requestPayout(member.memberID, "venmo")

    @pytest.mark.asyncio
    async def test_non_positive_amount_is_refused(self, session, make_member):
        member = make_member()
        service = PayoutService(session)

        with pytest.raises(ValueError):
            await service.requestPayout(member.memberID, "paypal", Decimal("0"))

    @pytest.mark.asyncio
    async def test_unknown_member_raises(self, session):
        service = PayoutService(session)

        with pytest.raises(NotFound):
            await service.requestPayout(321, "paypal")

    @pytest.mark.asyncio
    async def test_request_emits_event(self, session, make_member, earn):
        received = []
        eventBus.subscribe(MLMEvents.PAYOUT_REQUESTED, received.append)
        member = make_member()
        earn(member, 75)
        service = PayoutService(session)

        request = await service.requestPayout(member.memberID, "cashapp")

        assert received == [{
            "requestId": request.requestID,
            "memberId": member.memberID,
            "amount": Decimal("75.00"),
            "method": "cashapp"
        }]


class TestSettlement:

    @pytest.mark.asyncio
    async def test_paid_settles_oldest_commissions_first(self, session, make_member, earn):
        member = make_member()
        admin = make_member()
        oldest, middle, newest = earn(member, 30, 40, 50)
        service = PayoutService(session)
        request = await service.requestPayout(member.memberID, "paypal", Decimal("70"))

        settled = await service.markPayoutPaid(request.requestID, admin.memberID, notes="Sent")

        assert settled.status == "paid"
        assert settled.processedBy == admin.memberID
        assert settled.processedAt is not None
        paid = session.query(CommissionEvent).filter_by(status="paid").order_by(CommissionEvent.eventID).all()
        assert [e.eventID for e in paid] == [oldest.eventID, middle.eventID]
        assert all(e.payoutRequestID == request.requestID for e in paid)
        assert await service.ledger.availableBalance(member.memberID) == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_explicit_event_ids_are_settled(self, session, make_member, earn):
        member = make_member()
        first, second, third = earn(member, 30, 40, 70)
        service = PayoutService(session)
        request = await service.requestPayout(member.memberID, "paypal", Decimal("70"))

        await service.markPayoutPaid(request.requestID, 1, eventIds=[third.eventID])

        assert third.status == "paid"
        assert await service.ledger.availableBalance(member.memberID) == Decimal("70.00")

    @pytest.mark.asyncio
    async def test_uncovered_amount_is_not_marked_paid(self, session, make_member, earn):
        member = make_member()
        earn(member, 30, 30, 30)
        service = PayoutService(session)
        request = await service.requestPayout(member.memberID, "cashapp", Decimal("50"))

        with pytest.raises(SettlementMismatch) as exc:
            await service.markPayoutPaid(request.requestID, 1)

        assert exc.value.settled == Decimal("30.00")
        assert exc.value.requested == Decimal("50.00")
        assert session.get(PayoutRequest, request.requestID).status == "pending"
        assert await service.ledger.availableBalance(member.memberID) == Decimal("90.00")
        assert await service.ledger.paidTotal(member.memberID) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_payouts_never_exceed_earnings(self, session, make_member, earn):
        member = make_member()
        earn(member, 30, 30, 30)
        service = PayoutService(session)

        first = await service.requestPayout(member.memberID, "cashapp", Decimal("60"))
        await service.markPayoutPaid(first.requestID, 1)
        with pytest.raises(InsufficientBalance):
            await service.requestPayout(member.memberID, "cashapp", Decimal("60"))

        paid = sum(
            (r.amount for r in await service.getPayoutRequests(member.memberID) if r.status == "paid"),
            Decimal("0")
        )
        assert paid == Decimal("60.00")
        assert paid + await service.ledger.availableBalance(member.memberID) == Decimal("90.00")

    @pytest.mark.asyncio
    async def test_other_members_commissions_are_refused(self, session, make_member, earn):
        member = make_member()
        other = make_member()
        earn(member, 60)
        (foreign,) = earn(other, 60)
        service = PayoutService(session)
        request = await service.requestPayout(member.memberID, "paypal")

        with pytest.raises(InvalidStatusTransition):
            await service.markPayoutPaid(request.requestID, 1, eventIds=[foreign.eventID])

        assert await service.ledger.availableBalance(other.memberID) == Decimal("60.00")

    @pytest.mark.asyncio
    async def test_approved_then_paid(self, session, make_member, earn):
        member = make_member()
        earn(member, 60)
        service = PayoutService(session)
        request = await service.requestPayout(member.memberID, "cashapp")

        approved = await service.approvePayout(request.requestID, 1)
        assert approved.status == "approved"
        assert service.getPendingRequest(member.memberID) is None

        paid = await service.markPayoutPaid(request.requestID, 1)
        assert paid.status == "paid"

    @pytest.mark.asyncio
    async def test_rejection_allows_new_request(self, session, make_member, earn):
        member = make_member()
        earn(member, 80)
        service = PayoutService(session)
        request = await service.requestPayout(member.memberID, "cashapp")

        rejected = await service.rejectPayout(request.requestID, 1, notes="Cashtag not found")
        retry = await service.requestPayout(member.memberID, "paypal")

        assert rejected.notes == "Cashtag not found"
        assert retry.amount == Decimal("80.00")
        assert [r.requestID for r in await service.getPayoutRequests(member.memberID)] == [
            retry.requestID, request.requestID
        ]

    @pytest.mark.asyncio
    async def test_paid_request_is_final(self, session, make_member, earn):
        member = make_member()
        earn(member, 60)
        service = PayoutService(session)
        request = await service.requestPayout(member.memberID, "cashapp")
        await service.markPayoutPaid(request.requestID, 1)

        with pytest.raises(InvalidStatusTransition):
            await service.rejectPayout(request.requestID, 1)

    @pytest.mark.asyncio
    async def test_settlement_emits_event(self, session, make_member, earn):
        received = []
        eventBus.subscribe(MLMEvents.PAYOUT_SETTLED, received.append)
        member = make_member()
        earn(member, 60)
        service = PayoutService(session)
        request = await service.requestPayout(member.memberID, "cashapp")

        await service.rejectPayout(request.requestID, 1)

        assert received[0]["status"] == "rejected"
        assert received[0]["memberId"] == member.memberID

    @pytest.mark.asyncio
    async def test_unknown_request_raises(self, session):
        service = PayoutService(session)

        with pytest.raises(NotFound):
            await service.approvePayout(999, 1)


class TestConcurrentRequests:

    @pytest.mark.asyncio
    async def test_losing_writer_gets_pending_request_exists(self, tmp_path, monkeypatch):
        session_factory, engine = get_session(f"sqlite:///{tmp_path / 'payouts.db'}")
        init_tables(engine)

        setup = session_factory()
        member = Member(accountCategory="client", status="active", membershipStatus="active")
        setup.add(member)
        setup.commit()
        LedgerService(setup).recordCommission(member.memberID, "fast_start", Decimal("120"), "seed-1", level=1)
        setup.commit()
        memberId = member.memberID
        setup.close()

        first_session = session_factory()
        second_session = session_factory()
        first = PayoutService(first_session)
        second = PayoutService(second_session)

        # second writer checked for a pending request before the first one committed
        lookups = []
        current_pending = second.getPendingRequest

        def stale_then_current(memberId):
            lookups.append(memberId)
            return None if len(lookups) == 1 else current_pending(memberId)

        monkeypatch.setattr(second, "getPendingRequest", stale_then_current)

        try:
            winner = await first.requestPayout(memberId, "paypal", Decimal("60"))

            with pytest.raises(PendingRequestExists) as exc:
                await second.requestPayout(memberId, "paypal", Decimal("60"))

            assert exc.value.requestId == winner.requestID
            assert len(lookups) == 2
            assert second_session.query(PayoutRequest).filter_by(memberID=memberId).count() == 1
        finally:
            first_session.close()
            second_session.close()
            engine.dispose()
