"""Contribution ledger: accumulation upsert and admin corrections."""

import logging
from decimal import Decimal
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from chama.config import get_settings
from chama.errors import NotFoundError, ValidationError
from chama.models import Contribution, ContributionStatus, LedgerTransactionType, PaymentMethod
from chama.money import ZERO, non_negative_money, positive_money
from chama.services.audit_service import AuditService
from chama.services.balance_service import BalanceReconciler
from chama.services.cycle_service import CycleRegistry
from chama.services.db import checked_flush, run_with_retry, transaction_scope

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Statuses an admin sets explicitly; payments do not overwrite them
STICKY_STATUSES = (ContributionStatus.WAIVED, ContributionStatus.CANCELLED)


def derive_status(amount: Decimal, expected: Decimal) -> ContributionStatus:
    """Payment status for ``amount`` paid against ``expected``.

    Exact Decimal comparison: nothing paid is pending, reaching the expected
    amount is paid, anything in between is partial. Paying more than expected
    also counts as paid; the excess stays on the row and is not flagged.
    """
    if amount == ZERO:
        return ContributionStatus.PENDING
    if amount >= expected:
        return ContributionStatus.PAID
    return ContributionStatus.PARTIAL


class ContributionService:
    """Service for contribution rows.

    accumulate() is the single write path used by allocation: one row per
    (member, cycle, type), repeated payments add to it. The correction
    methods run their own transaction and keep the member balance and the
    cycle's collected total in step with the edited amount.
    """

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db
        self.balances = BalanceReconciler(db)
        self.cycles = CycleRegistry(db)

    def get_contribution(self, contribution_id: int) -> Contribution:
        """Get contribution by ID.

        Raises:
            NotFoundError: If the contribution does not exist
        """
        contribution = self.db.get(Contribution, contribution_id)
        if contribution is None:
            raise NotFoundError(f"Contribution {contribution_id} not found")
        return contribution

    def find(self, member_id: int, cycle_id: int, type_id: int | None) -> Contribution | None:
        """Row for one (member, cycle, type) obligation; type None is the rollover row."""
        query = self.db.query(Contribution).filter(
            Contribution.member_id == member_id,
            Contribution.cycle_id == cycle_id,
        )
        if type_id is None:
            query = query.filter(Contribution.type_id.is_(None))
        else:
            query = query.filter(Contribution.type_id == type_id)
        return query.first()

    def list_for_member_cycle(self, member_id: int, cycle_id: int) -> list[Contribution]:
        """All of a member's rows in one cycle."""
        return (
            self.db.query(Contribution)
            .filter(Contribution.member_id == member_id, Contribution.cycle_id == cycle_id)
            .order_by(Contribution.id)
            .all()
        )

    def accumulate(
        self,
        member_id: int,
        cycle_id: int,
        type_id: int | None,
        delta: Decimal,
        expected_amount: Decimal | None = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        payment_reference: str | None = None,
        recorded_by: int | None = None,
        notes: str | None = None,
    ) -> Contribution:
        """Add ``delta`` to the obligation's row, creating it on first payment.

        Flushes inside the caller's transaction.

        Args:
            member_id: Paying member
            cycle_id: Cycle of the obligation
            type_id: Contribution type, or None for the rollover row
            delta: Positive amount to add
            expected_amount: Current expected amount; None makes the row's
                expected amount follow its paid amount (rollover rows)
            payment_method: How the money arrived
            payment_reference: Gateway reference of the latest payment
            recorded_by: Acting user
            notes: Optional note stored on the row

        Returns:
            The created or updated Contribution
        """
        delta = positive_money(delta, "delta")
        contribution = self.find(member_id, cycle_id, type_id)
        if contribution is None:
            contribution = Contribution(
                member_id=member_id,
                cycle_id=cycle_id,
                type_id=type_id,
                amount=delta,
                expected_amount=delta if expected_amount is None else expected_amount,
                status=ContributionStatus.PENDING,
                payment_method=payment_method,
                payment_reference=payment_reference,
                notes=notes,
                recorded_by=recorded_by,
            )
            self.db.add(contribution)
        else:
            contribution.amount = contribution.amount + delta
            contribution.expected_amount = (
                contribution.amount if expected_amount is None else expected_amount
            )
            contribution.payment_method = payment_method
            if payment_reference is not None:
                contribution.payment_reference = payment_reference
            if notes is not None:
                contribution.notes = notes
            contribution.recorded_by = recorded_by

        if contribution.status not in STICKY_STATUSES:
            contribution.status = derive_status(contribution.amount, contribution.expected_amount)
        checked_flush(self.db)
        return contribution

    def update_amount(
        self, contribution_id: int, new_amount: Decimal | str | int, actor_id: int | None
    ) -> Contribution:
        """Correct a contribution's paid amount.

        The difference goes through the member balance (tagged adjustment)
        and the cycle's collected total.
        """
        new_amount = non_negative_money(new_amount, "new_amount")

        def attempt() -> Contribution:
            with transaction_scope(self.db):
                contribution = self.get_contribution(contribution_id)
                delta = new_amount - contribution.amount
                if delta == ZERO:
                    return contribution
                old_amount = contribution.amount
                contribution.amount = new_amount
                if contribution.type_id is None:
                    # Rollover rows expect exactly what was carried in
                    contribution.expected_amount = new_amount
                if contribution.status not in STICKY_STATUSES:
                    contribution.status = derive_status(new_amount, contribution.expected_amount)
                checked_flush(self.db)
                self.balances.apply_delta(
                    contribution.member_id,
                    delta,
                    f"Contribution #{contribution_id} amount corrected from "
                    f"{old_amount} to {new_amount}",
                    actor_id,
                    cycle_id=contribution.cycle_id,
                    contribution_id=contribution_id,
                    transaction_type=LedgerTransactionType.ADJUSTMENT,
                )
                self.cycles.record_collected(contribution.cycle_id, delta)
            return contribution

        contribution = self._with_retry(attempt, f"update_amount(contribution={contribution_id})")
        logger.info("Contribution %d amount set to %s by %s", contribution_id, new_amount, actor_id)
        return contribution

    def set_status(
        self,
        contribution_id: int,
        status: ContributionStatus | str,
        actor_id: int | None = None,
    ) -> Contribution:
        """Set status explicitly (waive, mark late, cancel). Moves no money."""
        try:
            status = ContributionStatus(status)
        except ValueError as e:
            raise ValidationError(f"Invalid contribution status: {status}") from e

        with transaction_scope(self.db):
            contribution = self.get_contribution(contribution_id)
            previous = contribution.status
            contribution.status = status
            AuditService.log(
                self.db,
                "contribution",
                contribution_id,
                "set_status",
                actor_id,
                {"from": previous.value, "to": status.value},
            )
        return contribution

    def delete_contribution(self, contribution_id: int, actor_id: int | None) -> None:
        """Remove a contribution and take its amount back out of the member balance.

        The cycle's collected total shrinks by the same amount (never below zero).
        """

        def attempt() -> Decimal:
            with transaction_scope(self.db):
                contribution = self.get_contribution(contribution_id)
                amount = contribution.amount
                member_id = contribution.member_id
                cycle_id = contribution.cycle_id
                if amount != ZERO:
                    self.balances.apply_delta(
                        member_id,
                        -amount,
                        f"Contribution #{contribution_id} deleted",
                        actor_id,
                        cycle_id=cycle_id,
                        contribution_id=contribution_id,
                        transaction_type=LedgerTransactionType.REVERSAL,
                    )
                    self.cycles.record_collected(cycle_id, -amount)
                self.db.delete(contribution)
                AuditService.log(
                    self.db,
                    "contribution",
                    contribution_id,
                    "delete",
                    actor_id,
                    {"amount": str(amount), "member_id": member_id, "cycle_id": cycle_id},
                )
            return amount

        amount = self._with_retry(attempt, f"delete_contribution({contribution_id})")
        logger.info("Deleted contribution %d (reversed %s)", contribution_id, amount)

    @staticmethod
    def _with_retry(operation: Callable[[], T], label: str) -> T:
        settings = get_settings()
        return run_with_retry(
            operation,
            attempts=settings.max_conflict_retries,
            backoff_ms=settings.conflict_backoff_ms,
            label=label,
        )


__all__ = ["ContributionService", "derive_status", "STICKY_STATUSES"]
