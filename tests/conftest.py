"""Pytest configuration and shared fixtures for all tests."""

from datetime import datetime, timezone

import pytest

from init import get_session, init_tables
from models import Member, MatrixNode
from matrix_comp.events.event_bus import eventBus
from matrix_comp.utils.time_machine import timeMachine


@pytest.fixture
def session():
    """Fresh in-memory SQLite database per test."""
    session_factory, engine = get_session("sqlite://")
    init_tables(engine)
    session = session_factory()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture(autouse=True)
def virtual_time():
    """Pin the engine clock so timestamps and cooling-off are deterministic."""
    timeMachine.setTime(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))
    yield timeMachine
    timeMachine.resetToRealTime()


@pytest.fixture(autouse=True)
def clean_event_bus():
    yield
    eventBus.clear()


@pytest.fixture
def make_member(session):
    """Factory for members; active and paid unless told otherwise."""

    def _make(sponsor=None, category="client", status="active", membership_status="active", name=None):
        member = Member(
            sponsorID=sponsor.memberID if sponsor is not None else None,
            accountCategory=category,
            status=status,
            membershipStatus=membership_status,
            fullName=name
        )
        session.add(member)
        session.commit()
        return member

    return _make


@pytest.fixture
def place_node(session):
    """Insert a matrix node directly, bypassing placement search."""

    def _place(member, parent_member=None, position=None):
        parent = None
        if parent_member is not None:
            parent = session.query(MatrixNode).filter_by(memberID=parent_member.memberID).one()
        node = MatrixNode(
            memberID=member.memberID,
            parentNodeID=parent.nodeID if parent else None,
            position=position,
            slotGeneration=0,
            depth=parent.depth + 1 if parent else 1
        )
        session.add(node)
        session.commit()
        return node

    return _place
