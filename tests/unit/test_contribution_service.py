"""Unit tests for the contribution ledger service."""

from decimal import Decimal

import pytest

from chama.errors import NotFoundError, ValidationError
from chama.models import (
    Contribution,
    ContributionStatus,
    LedgerEntry,
    LedgerTransactionType,
    PaymentMethod,
)
from chama.services.balance_service import BalanceReconciler
from chama.services.contribution_service import ContributionService, derive_status
from chama.services.cycle_service import CycleRegistry
from chama.services.db import transaction_scope


class TestDeriveStatus:
    """Tests for the status rule."""

    @pytest.mark.parametrize(
        "amount, expected, status",
        [
            ("0.00", "1000.00", ContributionStatus.PENDING),
            ("0.01", "1000.00", ContributionStatus.PARTIAL),
            ("999.99", "1000.00", ContributionStatus.PARTIAL),
            ("1000.00", "1000.00", ContributionStatus.PAID),
            ("1000.01", "1000.00", ContributionStatus.PAID),
            ("0.00", "0.00", ContributionStatus.PENDING),
        ],
    )
    def test_boundaries(self, amount, expected, status):
        """Exact comparison at the expected amount."""
        assert derive_status(Decimal(amount), Decimal(expected)) == status

    def test_overpaid_row_is_paid(self):
        """An amount above expected is paid; there is no separate overpaid status."""
        assert derive_status(Decimal("1200.00"), Decimal("1000.00")) == ContributionStatus.PAID



class TestAccumulate:
    """Tests for the accumulation upsert."""

    def test_repeated_payments_share_one_row(self, db_session, member, active_cycle, monthly_type):
        """Two payments for the same obligation accumulate into one row."""
        service = ContributionService(db_session)
        with transaction_scope(db_session):
            first = service.accumulate(
                member.id, active_cycle.id, monthly_type.id, Decimal("300.00"), Decimal("1000.00")
            )
        assert first.status == ContributionStatus.PARTIAL

        with transaction_scope(db_session):
            second = service.accumulate(
                member.id, active_cycle.id, monthly_type.id, Decimal("700.00"), Decimal("1000.00")
            )

        assert second.id == first.id
        assert second.amount == Decimal("1000.00")
        assert second.status == ContributionStatus.PAID
        assert db_session.query(Contribution).count() == 1

    def test_rollover_row_expected_follows_amount(self, db_session, member, active_cycle):
        """Rows without a type track their own amount as expected."""
        service = ContributionService(db_session)
        with transaction_scope(db_session):
            service.accumulate(
                member.id,
                active_cycle.id,
                None,
                Decimal("50.00"),
                payment_method=PaymentMethod.ROLLOVER,
            )
            row = service.accumulate(
                member.id,
                active_cycle.id,
                None,
                Decimal("25.00"),
                payment_method=PaymentMethod.ROLLOVER,
            )

        assert row.amount == Decimal("75.00")
        assert row.expected_amount == Decimal("75.00")
        assert row.status == ContributionStatus.PAID
        assert row.type_id is None

    def test_waived_status_kept(self, db_session, member, active_cycle, monthly_type):
        """Accumulating does not overwrite an admin-set waiver."""
        service = ContributionService(db_session)
        with transaction_scope(db_session):
            row = service.accumulate(
                member.id, active_cycle.id, monthly_type.id, Decimal("10.00"), Decimal("1000.00")
            )
        service.set_status(row.id, ContributionStatus.WAIVED)
        with transaction_scope(db_session):
            row = service.accumulate(
                member.id, active_cycle.id, monthly_type.id, Decimal("990.00"), Decimal("1000.00")
            )

        assert row.status == ContributionStatus.WAIVED

    def test_rejects_non_positive_delta(self, db_session, member, active_cycle, monthly_type):
        """Accumulation only adds money."""
        with pytest.raises(ValidationError):
            ContributionService(db_session).accumulate(
                member.id, active_cycle.id, monthly_type.id, Decimal("0.00"), Decimal("1.00")
            )


class TestCorrections:
    """Tests for admin corrections."""

    def _paid_row(self, db_session, member, cycle, type_id, amount):
        service = ContributionService(db_session)
        with transaction_scope(db_session):
            row = service.accumulate(
                member.id, cycle.id, type_id, Decimal(amount), Decimal("1000.00")
            )
            CycleRegistry(db_session).record_collected(cycle.id, Decimal(amount))
        return row

    def test_update_amount_moves_balance_and_total(
        self, db_session, member, active_cycle, monthly_type
    ):
        """The amount difference flows into balance and collected total."""
        row = self._paid_row(db_session, member, active_cycle, monthly_type.id, "400.00")

        updated = ContributionService(db_session).update_amount(row.id, "1000.00", 1)

        assert updated.amount == Decimal("1000.00")
        assert updated.status == ContributionStatus.PAID
        reconciler = BalanceReconciler(db_session)
        assert reconciler.get_balance(member.id) == Decimal("600.00")
        assert reconciler.verify_conservation(member.id)
        entry = db_session.query(LedgerEntry).one()
        assert entry.transaction_type == LedgerTransactionType.ADJUSTMENT
        assert entry.contribution_id == row.id
        cycle = CycleRegistry(db_session).get_cycle(active_cycle.id)
        assert cycle.collected_amount == Decimal("1000.00")

    def test_update_amount_unchanged_is_noop(self, db_session, member, active_cycle, monthly_type):
        """Setting the same amount writes no ledger entry."""
        row = self._paid_row(db_session, member, active_cycle, monthly_type.id, "400.00")

        ContributionService(db_session).update_amount(row.id, "400.00", 1)

        assert db_session.query(LedgerEntry).count() == 0

    def test_update_amount_on_rollover_row_moves_expected(
        self, db_session, member, active_cycle
    ):
        """A row without a type keeps expecting exactly its corrected amount."""
        service = ContributionService(db_session)
        with transaction_scope(db_session):
            row = service.accumulate(
                member.id,
                active_cycle.id,
                None,
                Decimal("500.00"),
                payment_method=PaymentMethod.ROLLOVER,
            )

        updated = service.update_amount(row.id, "300.00", 1)

        assert updated.amount == Decimal("300.00")
        assert updated.expected_amount == Decimal("300.00")
        assert updated.status == ContributionStatus.PAID
        assert BalanceReconciler(db_session).get_balance(member.id) == Decimal("-200.00")

    def test_update_amount_above_expected_is_paid(
        self, db_session, member, active_cycle, monthly_type
    ):
        """Correcting a typed row above its expected amount leaves expected alone."""
        row = self._paid_row(db_session, member, active_cycle, monthly_type.id, "400.00")

        updated = ContributionService(db_session).update_amount(row.id, "1200.00", 1)

        assert updated.expected_amount == Decimal("1000.00")
        assert updated.status == ContributionStatus.PAID


    def test_set_status_moves_no_money(self, db_session, member, active_cycle, monthly_type):
        """Status changes leave balance and totals untouched."""
        row = self._paid_row(db_session, member, active_cycle, monthly_type.id, "400.00")

        changed = ContributionService(db_session).set_status(row.id, "late", actor_id=1)

        assert changed.status == ContributionStatus.LATE
        assert db_session.query(LedgerEntry).count() == 0
        with pytest.raises(ValidationError):
            ContributionService(db_session).set_status(row.id, "forgiven")

    def test_delete_reverses_amount(self, db_session, member, active_cycle, monthly_type):
        """Deleting takes the amount back out of balance and the collected total."""
        row = self._paid_row(db_session, member, active_cycle, monthly_type.id, "400.00")
        row_id = row.id

        ContributionService(db_session).delete_contribution(row_id, 1)

        with pytest.raises(NotFoundError):
            ContributionService(db_session).get_contribution(row_id)
        reconciler = BalanceReconciler(db_session)
        assert reconciler.get_balance(member.id) == Decimal("-400.00")
        assert reconciler.verify_conservation(member.id)
        entry = db_session.query(LedgerEntry).one()
        assert entry.transaction_type == LedgerTransactionType.REVERSAL
        cycle = CycleRegistry(db_session).get_cycle(active_cycle.id)
        assert cycle.collected_amount == Decimal("0.00")
