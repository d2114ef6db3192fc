"""Payout service for rotating-savings disbursements."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from chama.errors import (
    DuplicateError,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from chama.models import (
    Chama,
    Contribution,
    ContributionCycle,
    ContributionStatus,
    Member,
    Payout,
    PayoutStatus,
)
from chama.money import positive_money
from chama.services.audit_service import AuditService
from chama.services.cycle_service import CycleRegistry
from chama.services.db import checked_flush, transaction_scope
from chama.services.notification_service import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    dispatch_safely,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PayoutStatus.PENDING: (PayoutStatus.PAID, PayoutStatus.CANCELLED),
    PayoutStatus.PAID: (),
    PayoutStatus.CANCELLED: (),
}


class PayoutService:
    """Service for payout operations.

    One non-cancelled payout per member per cycle; a payout never exceeds
    the chama's available funds.
    """

    def __init__(self, db: Session, notifier: NotificationDispatcher | None = None):
        """Initialize with database session and optional notification dispatcher."""
        self.db = db
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.cycles = CycleRegistry(db)

    def get_payout(self, payout_id: int) -> Payout:
        """Get payout by ID.

        Raises:
            NotFoundError: If the payout does not exist
        """
        payout = self.db.get(Payout, payout_id)
        if payout is None:
            raise NotFoundError(f"Payout {payout_id} not found")
        return payout

    def available_funds(self, chama_id: int) -> Decimal:
        """Contributions collected (not cancelled) minus non-cancelled payouts."""
        contributed = (
            self.db.query(func.coalesce(func.sum(Contribution.amount), 0))
            .join(ContributionCycle, ContributionCycle.id == Contribution.cycle_id)
            .filter(
                ContributionCycle.chama_id == chama_id,
                Contribution.status != ContributionStatus.CANCELLED,
            )
            .scalar()
        )
        paid_out = (
            self.db.query(func.coalesce(func.sum(Payout.amount), 0))
            .filter(Payout.chama_id == chama_id, Payout.status != PayoutStatus.CANCELLED)
            .scalar()
        )
        return (Decimal(str(contributed)) - Decimal(str(paid_out))).quantize(Decimal("0.01"))

    def create_payout(
        self,
        chama_id: int,
        member_id: int,
        amount: Decimal | str | int,
        payout_date: date | None = None,
        notes: str | None = None,
        actor_id: int | None = None,
    ) -> Payout:
        """Create a pending payout for a member in the active cycle.

        Raises:
            ValidationError: Bad amount or inactive member
            NotFoundError: Unknown chama or member
            NoActiveCycleError: The chama has no active cycle
            DuplicateError: The member already has a payout in this cycle
            InsufficientFundsError: The amount exceeds available funds
        """
        amount = positive_money(amount)

        with transaction_scope(self.db):
            if self.db.get(Chama, chama_id, with_for_update=True) is None:
                raise NotFoundError(f"Chama {chama_id} not found")
            member = self.db.get(Member, member_id)
            if member is None or member.chama_id != chama_id:
                raise NotFoundError(f"Member {member_id} not found in chama {chama_id}")
            if not member.is_active:
                raise ValidationError(f"Member {member_id} is not active")

            cycle = self.cycles.get_active_cycle(chama_id)
            existing = (
                self.db.query(Payout.id)
                .filter(
                    Payout.member_id == member_id,
                    Payout.cycle_id == cycle.id,
                    Payout.status != PayoutStatus.CANCELLED,
                )
                .first()
            )
            if existing is not None:
                raise DuplicateError(
                    f"Member {member_id} already has a payout in cycle {cycle.cycle_number}"
                )

            available = self.available_funds(chama_id)
            if amount > available:
                raise InsufficientFundsError(
                    f"Payout of {amount} exceeds available funds of {available}"
                )

            payout = Payout(
                chama_id=chama_id,
                member_id=member_id,
                cycle_id=cycle.id,
                amount=amount,
                payout_date=payout_date or date.today(),
                status=PayoutStatus.PENDING,
                notes=notes,
                created_by=actor_id,
            )
            self.db.add(payout)
            checked_flush(self.db)
            AuditService.log(
                self.db, "payout", payout.id, "create", actor_id, {"amount": str(amount)}
            )

        logger.info(
            "Created payout: id=%d, chama_id=%d, member_id=%d, cycle_id=%d, amount=%s",
            payout.id,
            chama_id,
            member_id,
            cycle.id,
            amount,
        )
        dispatch_safely(self.notifier.payout_updated, payout)
        return payout

    def update_status(
        self, payout_id: int, status: PayoutStatus | str, actor_id: int | None = None
    ) -> Payout:
        """Move a pending payout to paid or cancelled.

        Raises:
            InvalidTransitionError: If the payout is no longer pending
        """
        try:
            status = PayoutStatus(status)
        except ValueError as e:
            raise ValidationError(f"Invalid payout status: {status}") from e

        with transaction_scope(self.db):
            payout = self.get_payout(payout_id)
            if payout.status == status:
                return payout
            if status not in ALLOWED_TRANSITIONS[payout.status]:
                raise InvalidTransitionError(
                    f"Cannot change payout from {payout.status.value} to {status.value}"
                )
            previous = payout.status
            payout.status = status
            AuditService.log(
                self.db,
                "payout",
                payout_id,
                "update_status",
                actor_id,
                {"from": previous.value, "to": status.value},
            )

        logger.info("Payout %d is now %s", payout_id, status.value)
        dispatch_safely(self.notifier.payout_updated, payout)
        return payout

    def next_payout_member(self, chama_id: int) -> Member | None:
        """Suggest who should receive the next payout in the active cycle.

        Among active members without a payout in the active cycle: fewest
        paid payouts first, then the longest since their last one, then
        lowest member id.
        """
        cycle = self.cycles.get_active_cycle(chama_id)
        already = {
            member_id
            for (member_id,) in self.db.query(Payout.member_id).filter(
                Payout.cycle_id == cycle.id, Payout.status != PayoutStatus.CANCELLED
            )
        }
        history = {
            member_id: (count, last_date)
            for member_id, count, last_date in self.db.query(
                Payout.member_id, func.count(Payout.id), func.max(Payout.payout_date)
            )
            .filter(Payout.chama_id == chama_id, Payout.status == PayoutStatus.PAID)
            .group_by(Payout.member_id)
        }
        candidates = [
            member
            for member in self.db.query(Member)
            .filter(Member.chama_id == chama_id, Member.is_active.is_(True))
            .order_by(Member.id)
            if member.id not in already
        ]
        if not candidates:
            return None

        def rotation_key(member: Member):
            count, last_date = history.get(member.id, (0, None))
            return (count, last_date or date.min, member.id)

        return min(candidates, key=rotation_key)

    def list_payouts(
        self,
        chama_id: int,
        cycle_id: int | None = None,
        member_id: int | None = None,
        status: PayoutStatus | str | None = None,
    ) -> list[Payout]:
        """List payouts, newest first, with optional filters."""
        query = self.db.query(Payout).filter(Payout.chama_id == chama_id)
        if cycle_id is not None:
            query = query.filter(Payout.cycle_id == cycle_id)
        if member_id is not None:
            query = query.filter(Payout.member_id == member_id)
        if status is not None:
            try:
                query = query.filter(Payout.status == PayoutStatus(status))
            except ValueError as e:
                raise ValidationError(f"Invalid payout status: {status}") from e
        return query.order_by(Payout.payout_date.desc(), Payout.id.desc()).all()


__all__ = ["PayoutService"]
