"""Shared pytest fixtures: in-memory database, sessions and seed data."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from chama.config import reset_settings
from chama.models import (
    Base,
    Chama,
    ContributionType,
    CycleStatus,
    Frequency,
    Member,
    MemberRole,
)
from chama.services import create_db_engine, create_session_factory
from chama.services.cycle_service import CycleRegistry


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Fresh settings per test with no retry backoff and a known database URL."""
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("CONFLICT_BACKOFF_MS", "0")
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def chama(db_session):
    """A chama with no members yet."""
    chama = Chama(name="Umoja Savings")
    db_session.add(chama)
    db_session.commit()
    return chama


@pytest.fixture
def members(db_session, chama):
    """Three active members; the first is an admin."""
    people = [
        ("Wanjiku Kamau", MemberRole.ADMIN),
        ("Otieno Odhiambo", MemberRole.MEMBER),
        ("Achieng Atieno", MemberRole.MEMBER),
    ]
    created = []
    for name, role in people:
        member = Member(chama_id=chama.id, name=name, role=role, balance=Decimal("0.00"))
        db_session.add(member)
        created.append(member)
    db_session.commit()
    return created


@pytest.fixture
def member(members):
    """The first non-admin member."""
    return members[1]


@pytest.fixture
def monthly_type(db_session, chama):
    """Monthly contribution type with a 1000.00 default."""
    contribution_type = ContributionType(
        chama_id=chama.id,
        name="Monthly",
        default_amount=Decimal("1000.00"),
        frequency=Frequency.MONTHLY,
    )
    db_session.add(contribution_type)
    db_session.commit()
    return contribution_type


@pytest.fixture
def welfare_type(db_session, chama):
    """Welfare contribution type with a 200.00 default."""
    contribution_type = ContributionType(
        chama_id=chama.id,
        name="Welfare",
        default_amount=Decimal("200.00"),
        frequency=Frequency.MONTHLY,
    )
    db_session.add(contribution_type)
    db_session.commit()
    return contribution_type


@pytest.fixture
def make_cycle(db_session, chama):
    """Factory creating a cycle through the registry.

    Usage: make_cycle([(type_id, "1000.00")], status=CycleStatus.ACTIVE)
    """
    registry = CycleRegistry(db_session)

    def _make(types=None, status=CycleStatus.UPCOMING, cycle_date=None, due_in_days=30):
        start = cycle_date or date(2025, 1, 1)
        return registry.create_cycle(
            chama.id,
            cycle_date=start,
            due_date=start + timedelta(days=due_in_days),
            status=status,
            types=types or [],
        )

    return _make


@pytest.fixture
def active_cycle(make_cycle, monthly_type):
    """Active cycle expecting 1000.00 of the monthly type."""
    return make_cycle([(monthly_type.id, "1000.00")], status=CycleStatus.ACTIVE)
