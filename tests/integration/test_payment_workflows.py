"""Integration tests for multi-cycle payment workflows."""

from datetime import date
from decimal import Decimal

import pytest

from chama.errors import LedgerInvariantError, NotFoundError
from chama.models import (
    Contribution,
    ContributionStatus,
    CycleStatus,
    LedgerEntry,
    LedgerTransactionType,
    PaymentRecord,
)
from chama.services.allocation_service import AllocationEngine
from chama.services.balance_service import BalanceReconciler
from chama.services.contribution_service import ContributionService
from chama.services.cycle_service import CycleRegistry
from chama.services.db import transaction_scope
from chama.services.payment_service import PaymentService
from chama.services.reporting_service import ReportingService

pytestmark = pytest.mark.integration


def pay(db_session, chama, member, amount, **extra):
    """Record a payment for a member."""
    return PaymentService(db_session).record_payment(
        {"chama_id": chama.id, "member_id": member.id, "amount": amount, **extra}
    )


@pytest.fixture
def two_cycles(make_cycle, monthly_type):
    """An active January cycle and an upcoming February cycle, 1000.00 each."""
    january = make_cycle([(monthly_type.id, "1000.00")], status=CycleStatus.ACTIVE)
    february = make_cycle([(monthly_type.id, "1000.00")], cycle_date=date(2025, 2, 1))
    return january, february


def test_overpayment_rolls_into_next_cycle_and_arrears_clear(
    db_session, chama, member, two_cycles, monthly_type
):
    """A full season: rollover, cycle switch, arrears and corrections."""
    january, february = two_cycles
    reconciler = BalanceReconciler(db_session)
    registry = CycleRegistry(db_session)

    first = pay(db_session, chama, member, "1500.00", reference="JAN-1")
    assert first.applied_to_contributions == Decimal("1000.00")
    assert first.rollover_amount == Decimal("500.00")
    assert first.rollover_cycle_id == february.id
    rollover_row = (
        db_session.query(Contribution).filter_by(cycle_id=february.id, type_id=None).one()
    )
    assert rollover_row.notes == "Rolled over from cycle 1"
    assert registry.get_cycle(january.id).collected_amount == Decimal("1000.00")
    assert registry.get_cycle(february.id).collected_amount == Decimal("500.00")

    registry.activate_cycle(chama.id, february.id)
    assert registry.get_cycle(january.id).status == CycleStatus.COMPLETED

    reconciler.adjust_balance(member.id, "-700.00", "missed welfare levy", 1)
    second = pay(db_session, chama, member, "700.00", apply_to_balance=True)
    assert second.cycle_id == february.id
    assert second.balance_cleared == Decimal("200.00")
    assert second.applied_to_contributions == Decimal("500.00")
    assert reconciler.get_balance(member.id) == Decimal("0.00")
    assert registry.get_cycle(february.id).collected_amount == Decimal("1000.00")

    status = ReportingService(db_session).member_status(member.id, as_of=date(2025, 2, 10))
    assert status.total_outstanding == Decimal("500.00")
    assert status.compliance_rate == 1.0

    contributions = ContributionService(db_session)
    monthly = contributions.find(member.id, february.id, monthly_type.id)
    contributions.update_amount(monthly.id, "1000.00", actor_id=1)
    assert contributions.get_contribution(monthly.id).status == ContributionStatus.PAID
    assert reconciler.get_balance(member.id) == Decimal("500.00")
    assert registry.get_cycle(february.id).collected_amount == Decimal("1500.00")

    assert reconciler.verify_conservation(member.id)
    types = [
        entry.transaction_type
        for entry in db_session.query(LedgerEntry).order_by(LedgerEntry.id)
    ]
    assert types == [
        LedgerTransactionType.ROLLOVER,
        LedgerTransactionType.ADJUSTMENT,
        LedgerTransactionType.CONTRIBUTION,
        LedgerTransactionType.ADJUSTMENT,
    ]


def test_failure_mid_allocation_leaves_nothing(
    db_session, chama, member, active_cycle, monkeypatch
):
    """If any step fails, no part of the payment persists."""

    def broken(self, cycle_id, delta):
        raise RuntimeError("disk full")

    monkeypatch.setattr(CycleRegistry, "record_collected", broken)

    with pytest.raises(RuntimeError, match="disk full"):
        pay(db_session, chama, member, "1500.00", reference="FAIL-1")

    assert db_session.query(Contribution).count() == 0
    assert db_session.query(LedgerEntry).count() == 0
    assert db_session.query(PaymentRecord).count() == 0
    assert BalanceReconciler(db_session).get_balance(member.id) == Decimal("0.00")


def test_conservation_failure_aborts_payment(
    db_session, chama, member, active_cycle, monkeypatch
):
    """A failed conservation check rolls the whole payment back."""

    def always_fails(result):
        raise LedgerInvariantError("parts do not add up")

    monkeypatch.setattr(AllocationEngine, "_check_conservation", staticmethod(always_fails))

    with pytest.raises(LedgerInvariantError):
        pay(db_session, chama, member, "1200.00")

    assert db_session.query(Contribution).count() == 0
    assert BalanceReconciler(db_session).get_balance(member.id) == Decimal("0.00")
    assert CycleRegistry(db_session).get_cycle(active_cycle.id).collected_amount == Decimal(
        "0.00"
    )


def test_replayed_reference_after_failure_applies_once(
    db_session, chama, member, active_cycle, monkeypatch
):
    """A retried gateway callback after a failed attempt is applied exactly once."""
    original = CycleRegistry.record_collected
    calls = {"count": 0}

    def flaky(self, cycle_id, delta):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("connection reset")
        return original(self, cycle_id, delta)

    monkeypatch.setattr(CycleRegistry, "record_collected", flaky)

    with pytest.raises(RuntimeError):
        pay(db_session, chama, member, "400.00", reference="CB-9")
    first = pay(db_session, chama, member, "400.00", reference="CB-9")
    again = pay(db_session, chama, member, "400.00", reference="CB-9")

    assert first.replayed is False
    assert again.replayed is True
    assert db_session.query(PaymentRecord).count() == 1
    row = db_session.query(Contribution).one()
    assert row.amount == Decimal("400.00")


def test_collected_total_never_negative(db_session, chama, member, active_cycle):
    """Reversals larger than the stored total clamp at zero."""
    pay(db_session, chama, member, "300.00")
    registry = CycleRegistry(db_session)

    with transaction_scope(db_session):
        registry.record_collected(active_cycle.id, Decimal("-500.00"))

    assert registry.get_cycle(active_cycle.id).collected_amount == Decimal("0.00")


def test_delete_contribution_reverses_money(db_session, chama, member, active_cycle):
    """Deleting a contribution debits the member and shrinks the cycle total."""
    pay(db_session, chama, member, "600.00")
    contributions = ContributionService(db_session)
    row = db_session.query(Contribution).one()

    contributions.delete_contribution(row.id, actor_id=1)

    reconciler = BalanceReconciler(db_session)
    assert reconciler.get_balance(member.id) == Decimal("-600.00")
    assert reconciler.verify_conservation(member.id)
    assert CycleRegistry(db_session).get_cycle(active_cycle.id).collected_amount == Decimal(
        "0.00"
    )
    with pytest.raises(NotFoundError):
        contributions.get_contribution(row.id)
