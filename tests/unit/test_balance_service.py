"""Unit tests for the balance reconciler."""

from decimal import Decimal

import pytest

from chama.errors import ConcurrencyConflictError, NotFoundError, ValidationError
from chama.models import LedgerEntry, LedgerTransactionType, Member
from chama.services.balance_service import BalanceReconciler
from chama.services.db import checked_flush, transaction_scope


class TestApplyDelta:
    """Tests for the balance write primitive."""

    def test_writes_balance_and_ledger(self, db_session, member):
        """Balance change and ledger entry are written together."""
        reconciler = BalanceReconciler(db_session)

        with transaction_scope(db_session):
            new_balance = reconciler.apply_delta(
                member.id,
                Decimal("-500.00"),
                "Opening arrears",
                1,
                transaction_type=LedgerTransactionType.ADJUSTMENT,
            )

        assert new_balance == Decimal("-500.00")
        entry = db_session.query(LedgerEntry).filter_by(member_id=member.id).one()
        assert entry.amount == Decimal("-500.00")
        assert entry.balance_before == Decimal("0.00")
        assert entry.balance_after == Decimal("-500.00")
        assert entry.created_by == 1
        assert reconciler.verify_conservation(member.id)

    def test_rejects_zero(self, db_session, member):
        """A zero delta is meaningless."""
        with pytest.raises(ValidationError):
            BalanceReconciler(db_session).apply_delta(member.id, Decimal("0"), "noop", None)

    def test_unknown_member(self, db_session):
        """Missing members are NotFoundError."""
        with pytest.raises(NotFoundError):
            BalanceReconciler(db_session).apply_delta(404, Decimal("1.00"), "x", None)

    def test_stale_version_is_conflict(self, db_session, session_factory, member):
        """A write based on an outdated version is detected."""
        reconciler = BalanceReconciler(db_session)
        stale = reconciler.lock_member(member.id)

        other = session_factory()
        try:
            BalanceReconciler(other).adjust_balance(member.id, "10.00", "parallel", None)
        finally:
            other.close()

        stale.balance = stale.balance + Decimal("1.00")
        with pytest.raises(ConcurrencyConflictError):
            checked_flush(db_session)
        db_session.rollback()


class TestAdjustBalance:
    """Tests for manual adjustments."""

    def test_adjustment_commits(self, db_session, session_factory, member):
        """An adjustment is durable and returns both balances."""
        result = BalanceReconciler(db_session).adjust_balance(
            member.id, "150.25", "Opening credit", 1
        )

        assert result.previous_balance == Decimal("0.00")
        assert result.new_balance == Decimal("150.25")
        other = session_factory()
        try:
            assert other.get(Member, member.id).balance == Decimal("150.25")
        finally:
            other.close()

    def test_reason_required(self, db_session, member):
        """Adjustments need a reason."""
        with pytest.raises(ValidationError, match="reason"):
            BalanceReconciler(db_session).adjust_balance(member.id, "10.00", "  ", 1)

    def test_sequence_conserves(self, db_session, member):
        """Balance always equals the ledger sum."""
        reconciler = BalanceReconciler(db_session)
        for amount in ("100.00", "-30.10", "5.05", "-200.00"):
            reconciler.adjust_balance(member.id, amount, "correction", 1)

        assert reconciler.get_balance(member.id) == Decimal("-125.05")
        assert reconciler.ledger_total(member.id) == Decimal("-125.05")
        assert reconciler.verify_conservation(member.id)

    def test_ledger_entries_chain(self, db_session, member):
        """Each entry starts where the previous one ended."""
        reconciler = BalanceReconciler(db_session)
        for amount in ("10.00", "20.00", "-5.00"):
            reconciler.adjust_balance(member.id, amount, "chain", 1)

        entries = db_session.query(LedgerEntry).order_by(LedgerEntry.id).all()
        for previous, current in zip(entries, entries[1:]):
            assert current.balance_before == previous.balance_after
        for entry in entries:
            assert entry.balance_after == entry.balance_before + entry.amount
