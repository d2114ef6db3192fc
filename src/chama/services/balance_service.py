"""Balance reconciler - the only writer of Member.balance."""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from chama.config import get_settings
from chama.errors import NotFoundError, ValidationError
from chama.models import LedgerEntry, LedgerTransactionType, Member
from chama.money import ZERO, to_money
from chama.services.db import checked_flush, run_with_retry, transaction_scope

logger = logging.getLogger(__name__)


@dataclass
class BalanceAdjustment:
    """Outcome of a standalone admin balance adjustment."""

    member_id: int
    amount: Decimal
    previous_balance: Decimal
    new_balance: Decimal


class BalanceReconciler:
    """Keeps Member.balance and the ledger in step.

    Every balance change appends a LedgerEntry in the same transaction, so
    ``balance == sum(ledger amounts)`` holds whenever a transaction commits.
    Lost races surface as ConcurrencyConflictError through the optimistic
    version check on Member.
    """

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def lock_member(self, member_id: int) -> Member:
        """Load the member with its latest committed balance and version.

        Uses SELECT ... FOR UPDATE where the database supports it.

        Raises:
            NotFoundError: If the member does not exist
        """
        member = self.db.get(Member, member_id, with_for_update=True, populate_existing=True)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found")
        return member

    def get_balance(self, member_id: int) -> Decimal:
        """Current balance of a member."""
        member = self.db.get(Member, member_id, populate_existing=True)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found")
        return member.balance

    def apply_delta(
        self,
        member_id: int,
        amount: Decimal,
        description: str,
        acting_user_id: int | None,
        cycle_id: int | None = None,
        contribution_id: int | None = None,
        transaction_type: LedgerTransactionType = LedgerTransactionType.ADJUSTMENT,
    ) -> Decimal:
        """Add ``amount`` to the member balance and append the ledger entry.

        Runs inside the caller's transaction and only flushes; the caller
        commits or rolls back.

        Args:
            member_id: Member whose balance changes
            amount: Signed non-zero delta
            description: Human-readable reason stored on the entry
            acting_user_id: Who caused the change
            cycle_id: Related cycle, if any
            contribution_id: Related contribution, if any
            transaction_type: Ledger tag

        Returns:
            New balance

        Raises:
            ValidationError: If amount is zero or malformed
            NotFoundError: If the member does not exist
            ConcurrencyConflictError: If another writer changed the member first
        """
        amount = to_money(amount)
        if amount == ZERO:
            raise ValidationError("Balance delta must not be zero")

        member = self.lock_member(member_id)
        before = member.balance
        after = before + amount
        member.balance = after
        self.db.add(
            LedgerEntry(
                member_id=member_id,
                amount=amount,
                balance_before=before,
                balance_after=after,
                transaction_type=transaction_type,
                description=description,
                cycle_id=cycle_id,
                contribution_id=contribution_id,
                created_by=acting_user_id,
            )
        )
        checked_flush(self.db)

        logger.debug(
            "Balance change: member=%d, %s %s -> %s (%s)",
            member_id,
            transaction_type.value,
            before,
            after,
            amount,
        )
        return after

    def adjust_balance(
        self,
        member_id: int,
        amount: Decimal | str | int,
        reason: str,
        acting_user_id: int | None,
        max_retries: int | None = None,
    ) -> BalanceAdjustment:
        """Apply a manual adjustment in its own transaction.

        Retried from scratch on concurrency conflicts.

        Raises:
            ValidationError: If the reason is empty or the amount is zero
        """
        amount = to_money(amount)
        if amount == ZERO:
            raise ValidationError("Adjustment amount must not be zero")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Adjustment reason is required")

        settings = get_settings()

        def attempt() -> BalanceAdjustment:
            with transaction_scope(self.db):
                new_balance = self.apply_delta(
                    member_id,
                    amount,
                    f"Manual adjustment: {reason}",
                    acting_user_id,
                    transaction_type=LedgerTransactionType.ADJUSTMENT,
                )
            return BalanceAdjustment(
                member_id=member_id,
                amount=amount,
                previous_balance=new_balance - amount,
                new_balance=new_balance,
            )

        result = run_with_retry(
            attempt,
            attempts=max_retries or settings.max_conflict_retries,
            backoff_ms=settings.conflict_backoff_ms,
            label=f"adjust_balance(member={member_id})",
        )
        logger.info(
            "Adjusted balance: member=%d, amount=%s, new_balance=%s, by=%s",
            member_id,
            amount,
            result.new_balance,
            acting_user_id,
        )
        return result

    def ledger_total(self, member_id: int) -> Decimal:
        """Sum of every ledger amount recorded for the member."""
        amounts = self.db.query(LedgerEntry.amount).filter(LedgerEntry.member_id == member_id)
        return sum((amount for (amount,) in amounts), ZERO)

    def verify_conservation(self, member_id: int) -> bool:
        """True if the stored balance equals the sum of the member's ledger."""
        balance = self.get_balance(member_id)
        total = self.ledger_total(member_id)
        if balance != total:
            logger.error(
                "Ledger mismatch for member %d: balance=%s, ledger=%s", member_id, balance, total
            )
            return False
        return True


__all__ = ["BalanceAdjustment", "BalanceReconciler"]
