"""Contribution cycle registry: lifecycle, composition and collected totals."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from chama.errors import (
    InvalidTransitionError,
    NoActiveCycleError,
    NotFoundError,
    ValidationError,
)
from chama.models import (
    Chama,
    Contribution,
    ContributionCycle,
    ContributionType,
    CycleStatus,
    CycleType,
    PaymentRecord,
    Payout,
)
from chama.money import ZERO, non_negative_money, to_money
from chama.services.audit_service import AuditService
from chama.services.db import transaction_scope

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (CycleStatus.COMPLETED, CycleStatus.CANCELLED)
ROLLOVER_TARGET_STATUSES = (CycleStatus.UPCOMING, CycleStatus.ACTIVE)


@dataclass
class ExpectedShare:
    """Expected amount of one contribution type in a cycle."""

    type_id: int
    expected_amount: Decimal
    type_name: str | None = None


class CycleRegistry:
    """Service for contribution cycle operations.

    Lifecycle operations (create, activate, complete, cancel, delete) commit
    their own transaction. The lookup and record_collected() primitives only
    flush, so the allocation engine can use them inside a payment transaction.
    """

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    # Lookups

    def get_cycle(self, cycle_id: int) -> ContributionCycle:
        """Get cycle by ID.

        Raises:
            NotFoundError: If the cycle does not exist
        """
        cycle = self.db.get(ContributionCycle, cycle_id)
        if cycle is None:
            raise NotFoundError(f"Cycle {cycle_id} not found")
        return cycle

    def get_active_cycle(self, chama_id: int) -> ContributionCycle:
        """Get the chama's active cycle.

        Raises:
            NoActiveCycleError: If no cycle is active
        """
        cycle = (
            self.db.query(ContributionCycle)
            .filter(
                ContributionCycle.chama_id == chama_id,
                ContributionCycle.status == CycleStatus.ACTIVE,
            )
            .first()
        )
        if cycle is None:
            raise NoActiveCycleError(f"Chama {chama_id} has no active cycle")
        return cycle

    def list_cycles(
        self, chama_id: int, status: CycleStatus | str | None = None
    ) -> list[ContributionCycle]:
        """List a chama's cycles by cycle number, optionally filtered by status."""
        query = self.db.query(ContributionCycle).filter(ContributionCycle.chama_id == chama_id)
        if status is not None:
            query = query.filter(ContributionCycle.status == self._validate_status(status))
        return query.order_by(ContributionCycle.cycle_number).all()

    def expected_composition(self, cycle_id: int) -> list[ExpectedShare]:
        """Expected amount per contribution type, in allocation priority order.

        The shares sum to the cycle's total expected amount.
        """
        rows = (
            self.db.query(CycleType.type_id, CycleType.expected_amount, ContributionType.name)
            .join(ContributionType, ContributionType.id == CycleType.type_id)
            .filter(CycleType.cycle_id == cycle_id)
            .order_by(CycleType.position, CycleType.id)
            .all()
        )
        return [
            ExpectedShare(type_id=type_id, expected_amount=expected, type_name=name)
            for type_id, expected, name in rows
        ]

    def next_cycle(self, cycle: ContributionCycle) -> ContributionCycle | None:
        """Rollover target for ``cycle``.

        Lowest cycle_number above the given one in the same chama whose
        status is upcoming or active.
        """
        return (
            self.db.query(ContributionCycle)
            .filter(
                ContributionCycle.chama_id == cycle.chama_id,
                ContributionCycle.cycle_number > cycle.cycle_number,
                ContributionCycle.status.in_(ROLLOVER_TARGET_STATUSES),
            )
            .order_by(ContributionCycle.cycle_number)
            .first()
        )

    def record_collected(self, cycle_id: int, delta: Decimal) -> None:
        """Add ``delta`` (may be negative) to the cycle's collected amount.

        Runs as a single UPDATE so concurrent increments never lose each
        other; the stored total is clamped at zero.
        """
        delta = to_money(delta, "delta")
        cycle = self.get_cycle(cycle_id)
        new_total = ContributionCycle.collected_amount + delta
        self.db.execute(
            update(ContributionCycle)
            .where(ContributionCycle.id == cycle_id)
            .values(collected_amount=case((new_total < 0, ZERO), else_=new_total))
            .execution_options(synchronize_session=False)
        )
        self.db.expire(cycle, ["collected_amount"])

    # Lifecycle

    def create_cycle(
        self,
        chama_id: int,
        cycle_date: date,
        due_date: date,
        name: str | None = None,
        status: CycleStatus | str = CycleStatus.UPCOMING,
        types: Iterable[tuple[int, Decimal | str | int]] | None = None,
        notes: str | None = None,
        actor_id: int | None = None,
    ) -> ContributionCycle:
        """Create the chama's next cycle.

        Args:
            chama_id: Owning chama
            cycle_date: Start of the cycle
            due_date: Payment deadline, not before cycle_date
            name: Display name (default "Cycle <number>")
            status: upcoming or active; active goes through activation
            types: (type_id, expected_amount) pairs in allocation order
            notes: Free text
            actor_id: Acting admin

        Returns:
            Created ContributionCycle

        Raises:
            ValidationError: On bad dates, status or amounts
            NotFoundError: If the chama or a type does not exist
        """
        if not isinstance(cycle_date, date) or not isinstance(due_date, date):
            raise ValidationError("cycle_date and due_date are required dates")
        if due_date < cycle_date:
            raise ValidationError("due_date must not be before cycle_date")
        status = self._validate_status(status)
        if status in TERMINAL_STATUSES:
            raise ValidationError(f"A cycle cannot be created as {status.value}")
        composition = self._normalize_types(types or [])

        with transaction_scope(self.db):
            self._lock_chama(chama_id)
            last_number = (
                self.db.query(func.max(ContributionCycle.cycle_number))
                .filter(ContributionCycle.chama_id == chama_id)
                .scalar()
            )
            cycle_number = (last_number or 0) + 1
            cycle = ContributionCycle(
                chama_id=chama_id,
                cycle_number=cycle_number,
                name=(name or "").strip() or f"Cycle {cycle_number}",
                cycle_date=cycle_date,
                due_date=due_date,
                status=CycleStatus.UPCOMING,
                collected_amount=ZERO,
                notes=notes,
            )
            self.db.add(cycle)
            self.db.flush()
            self._replace_types(cycle, composition)
            AuditService.log(
                self.db,
                "cycle",
                cycle.id,
                "create",
                actor_id,
                {"cycle_number": cycle_number, "status": status.value},
            )
            if status == CycleStatus.ACTIVE:
                self._activate(cycle, actor_id)

        logger.info(
            "Created cycle: id=%d, chama_id=%d, number=%d, status=%s",
            cycle.id,
            chama_id,
            cycle_number,
            cycle.status.value,
        )
        return cycle

    def set_cycle_types(
        self,
        cycle_id: int,
        types: Iterable[tuple[int, Decimal | str | int]],
        actor_id: int | None = None,
    ) -> list[ExpectedShare]:
        """Replace the cycle's composition, preserving the given order.

        Raises:
            InvalidTransitionError: If the cycle is completed or cancelled
            NotFoundError: If a type is missing or belongs to another chama
        """
        composition = self._normalize_types(types)
        with transaction_scope(self.db):
            cycle = self.get_cycle(cycle_id)
            if cycle.status in TERMINAL_STATUSES:
                raise InvalidTransitionError(
                    f"Cannot change types of a {cycle.status.value} cycle"
                )
            self._replace_types(cycle, composition)
            AuditService.log(
                self.db,
                "cycle",
                cycle.id,
                "set_types",
                actor_id,
                {"types": [[type_id, str(amount)] for type_id, amount in composition]},
            )
        return self.expected_composition(cycle_id)

    def activate_cycle(
        self, chama_id: int, cycle_id: int, actor_id: int | None = None
    ) -> ContributionCycle:
        """Make ``cycle_id`` the chama's only active cycle.

        Any other active cycle of the chama is completed in the same
        transaction. Activating the already-active cycle is a no-op.

        Raises:
            NotFoundError: If the cycle does not exist in this chama
            InvalidTransitionError: If the cycle is completed or cancelled
        """
        with transaction_scope(self.db):
            self._lock_chama(chama_id)
            cycle = self.db.get(ContributionCycle, cycle_id)
            if cycle is None or cycle.chama_id != chama_id:
                raise NotFoundError(f"Cycle {cycle_id} not found in chama {chama_id}")
            if cycle.status == CycleStatus.ACTIVE:
                return cycle
            if cycle.status in TERMINAL_STATUSES:
                raise InvalidTransitionError(f"Cannot activate a {cycle.status.value} cycle")
            self._activate(cycle, actor_id)

        logger.info("Activated cycle %d in chama %d", cycle_id, chama_id)
        return cycle

    def complete_cycle(self, cycle_id: int, actor_id: int | None = None) -> ContributionCycle:
        """Close an active cycle.

        Raises:
            InvalidTransitionError: If the cycle is upcoming or cancelled
        """
        with transaction_scope(self.db):
            cycle = self.get_cycle(cycle_id)
            if cycle.status == CycleStatus.COMPLETED:
                return cycle
            if cycle.status != CycleStatus.ACTIVE:
                raise InvalidTransitionError(f"Cannot complete a {cycle.status.value} cycle")
            cycle.status = CycleStatus.COMPLETED
            AuditService.log(self.db, "cycle", cycle.id, "complete", actor_id)

        logger.info("Completed cycle %d", cycle_id)
        return cycle

    def cancel_cycle(self, cycle_id: int, actor_id: int | None = None) -> ContributionCycle:
        """Cancel an upcoming or active cycle.

        Raises:
            InvalidTransitionError: If the cycle is already terminal
        """
        with transaction_scope(self.db):
            cycle = self.get_cycle(cycle_id)
            self._cancel(cycle, actor_id)

        logger.info("Cancelled cycle %d", cycle_id)
        return cycle

    def delete_cycle(self, cycle_id: int, actor_id: int | None = None) -> bool:
        """Delete a cycle nothing refers to, otherwise cancel it.

        Returns:
            True if the row was deleted, False if it was cancelled

        Raises:
            InvalidTransitionError: If the cycle has activity and is already terminal
        """
        with transaction_scope(self.db):
            cycle = self.get_cycle(cycle_id)
            if self._has_activity(cycle_id):
                self._cancel(cycle, actor_id)
                deleted = False
            else:
                self.db.delete(cycle)
                AuditService.log(self.db, "cycle", cycle_id, "delete", actor_id)
                deleted = True

        logger.info("Cycle %d %s", cycle_id, "deleted" if deleted else "cancelled (has activity)")
        return deleted

    # Internals

    def _lock_chama(self, chama_id: int) -> Chama:
        chama = self.db.get(Chama, chama_id, with_for_update=True)
        if chama is None:
            raise NotFoundError(f"Chama {chama_id} not found")
        return chama

    def _activate(self, cycle: ContributionCycle, actor_id: int | None) -> None:
        # Demote first: the single-active index rejects two active rows
        others = (
            self.db.query(ContributionCycle)
            .filter(
                ContributionCycle.chama_id == cycle.chama_id,
                ContributionCycle.status == CycleStatus.ACTIVE,
                ContributionCycle.id != cycle.id,
            )
            .all()
        )
        for other in others:
            other.status = CycleStatus.COMPLETED
            AuditService.log(
                self.db, "cycle", other.id, "complete", actor_id, {"superseded_by": cycle.id}
            )
        self.db.flush()

        cycle.status = CycleStatus.ACTIVE
        AuditService.log(self.db, "cycle", cycle.id, "activate", actor_id)
        self.db.flush()

    def _cancel(self, cycle: ContributionCycle, actor_id: int | None) -> None:
        if cycle.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"Cannot cancel a {cycle.status.value} cycle")
        cycle.status = CycleStatus.CANCELLED
        AuditService.log(self.db, "cycle", cycle.id, "cancel", actor_id)

    def _has_activity(self, cycle_id: int) -> bool:
        for model in (Contribution, PaymentRecord, Payout):
            found = self.db.query(model.id).filter(model.cycle_id == cycle_id).first()
            if found is not None:
                return True
        return False

    def _replace_types(
        self, cycle: ContributionCycle, composition: list[tuple[int, Decimal]]
    ) -> None:
        type_ids = [type_id for type_id, _ in composition]
        if type_ids:
            known = {
                type_id
                for (type_id,) in self.db.query(ContributionType.id).filter(
                    ContributionType.id.in_(type_ids),
                    ContributionType.chama_id == cycle.chama_id,
                )
            }
            missing = [type_id for type_id in type_ids if type_id not in known]
            if missing:
                raise NotFoundError(
                    f"Contribution types not found in chama {cycle.chama_id}: {missing}"
                )

        cycle.cycle_types.clear()
        self.db.flush()
        for position, (type_id, amount) in enumerate(composition):
            cycle.cycle_types.append(
                CycleType(type_id=type_id, expected_amount=amount, position=position)
            )
        self.db.flush()

    @staticmethod
    def _normalize_types(
        types: Iterable[tuple[int, Decimal | str | int]],
    ) -> list[tuple[int, Decimal]]:
        composition = []
        seen = set()
        for entry in types:
            try:
                type_id, amount = entry
            except (TypeError, ValueError) as e:
                raise ValidationError("Cycle types must be (type_id, amount) pairs") from e
            if type_id in seen:
                raise ValidationError(f"Contribution type {type_id} listed twice")
            seen.add(type_id)
            composition.append((type_id, non_negative_money(amount, "expected_amount")))
        return composition

    @staticmethod
    def _validate_status(status: CycleStatus | str) -> CycleStatus:
        try:
            return CycleStatus(status)
        except ValueError as e:
            raise ValidationError(f"Invalid cycle status: {status}") from e


__all__ = ["CycleRegistry", "ExpectedShare"]
