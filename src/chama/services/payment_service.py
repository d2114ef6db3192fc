"""Payment service - entry point for recording member payments."""

import logging
from decimal import Decimal
from typing import Any, Iterable

import pydantic
from sqlalchemy.orm import Session

from chama.config import get_settings
from chama.errors import (
    ChamaError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from chama.models import (
    ContributionCycle,
    CycleStatus,
    LedgerTransactionType,
    Member,
    PaymentMethod,
    PaymentRecord,
)
from chama.money import ZERO
from chama.schemas.payments import (
    AllocationResult,
    BulkEntryResult,
    BulkPaymentResult,
    PaymentRequest,
    ScheduledDebitResult,
)
from chama.services.allocation_service import AllocationEngine
from chama.services.balance_service import BalanceReconciler
from chama.services.contribution_service import STICKY_STATUSES, ContributionService
from chama.services.cycle_service import CycleRegistry
from chama.services.db import checked_flush, run_with_retry, transaction_scope
from chama.services.notification_service import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    dispatch_safely,
)

logger = logging.getLogger(__name__)


def parse_payment_request(data: PaymentRequest | dict[str, Any]) -> PaymentRequest:
    """Validate raw payment input.

    Raises:
        ValidationError: With every field problem joined into one message
    """
    if isinstance(data, PaymentRequest):
        return data
    try:
        return PaymentRequest.model_validate(data)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'request'}: {error['msg']}"
            for error in e.errors()
        )
        raise ValidationError(f"Invalid payment: {problems}") from e


class PaymentService:
    """Service for recording payments.

    Each payment is validated before any storage access, then applied in a
    single transaction: the allocation, every balance and total change and
    the PaymentRecord commit together or not at all. Lost concurrency races
    are retried from scratch; notifications go out only after commit.
    """

    def __init__(self, db: Session, notifier: NotificationDispatcher | None = None):
        """Initialize with database session and optional notification dispatcher."""
        self.db = db
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.engine = AllocationEngine(db)
        self.cycles = CycleRegistry(db)
        self.contributions = ContributionService(db)
        self.balances = BalanceReconciler(db)

    def record_payment(
        self,
        request: PaymentRequest | dict[str, Any],
        max_retries: int | None = None,
    ) -> AllocationResult:
        """Apply one payment.

        A payment whose reference was already applied returns the stored
        breakdown (``replayed=True``) without moving money again.

        Args:
            request: PaymentRequest or raw dict
            max_retries: Override for the configured conflict retry limit

        Returns:
            AllocationResult breakdown

        Raises:
            ValidationError: Malformed input or a reference reused for a different payment
            NotFoundError: Unknown member, cycle or type
            NoActiveCycleError: No cycle given and none active
            ConcurrencyConflictError: Still conflicting after all retries
        """
        request = parse_payment_request(request)
        settings = get_settings()
        result = run_with_retry(
            lambda: self._record_once(request),
            attempts=max_retries or settings.max_conflict_retries,
            backoff_ms=settings.conflict_backoff_ms,
            label=f"record_payment(member={request.member_id}, ref={request.reference})",
        )
        if not result.replayed:
            dispatch_safely(self.notifier.payment_recorded, result)
        return result

    def record_bulk(
        self,
        chama_id: int,
        entries: Iterable[PaymentRequest | dict[str, Any]],
        recorded_by: int | None = None,
    ) -> BulkPaymentResult:
        """Record several payments independently.

        A failing entry does not affect the others.
        """
        summary = BulkPaymentResult()
        for index, entry in enumerate(entries):
            member_id = None
            try:
                if isinstance(entry, dict):
                    entry = {"chama_id": chama_id, "recorded_by": recorded_by, **entry}
                request = parse_payment_request(entry)
                member_id = request.member_id
                if request.chama_id != chama_id:
                    raise ValidationError(f"Entry belongs to chama {request.chama_id}")
                result = self.record_payment(request)
            except ChamaError as e:
                summary.failed += 1
                summary.entries.append(
                    BulkEntryResult(
                        index=index,
                        member_id=member_id,
                        success=False,
                        error=e.message,
                        error_code=e.code,
                    )
                )
                logger.warning("Bulk payment entry %d failed: %s", index, e.message)
                continue
            summary.succeeded += 1
            summary.entries.append(
                BulkEntryResult(index=index, member_id=member_id, success=True, result=result)
            )

        logger.info(
            "Bulk payments for chama %d: %d succeeded, %d failed",
            chama_id,
            summary.succeeded,
            summary.failed,
        )
        return summary

    def process_scheduled(self, chama_id: int, actor_id: int | None = None) -> ScheduledDebitResult:
        """Pay the active cycle's dues from members' credit balances.

        A member is debited only when their credit covers every remaining
        shortfall; each member is processed in its own transaction.
        """
        cycle = self.cycles.get_active_cycle(chama_id)
        cycle_id = cycle.id
        member_ids = [
            member_id
            for (member_id,) in self.db.query(Member.id)
            .filter(
                Member.chama_id == chama_id,
                Member.is_active.is_(True),
                Member.balance > 0,
            )
            .order_by(Member.id)
        ]

        settings = get_settings()
        summary = ScheduledDebitResult(cycle_id=cycle_id)
        for member_id in member_ids:
            try:
                debited = run_with_retry(
                    lambda: self._auto_debit(member_id, cycle_id, actor_id),
                    attempts=settings.max_conflict_retries,
                    backoff_ms=settings.conflict_backoff_ms,
                    label=f"auto_debit(member={member_id})",
                )
            except ChamaError as e:
                summary.failed_members.append(member_id)
                logger.error("Auto-debit failed for member %d: %s", member_id, e.message)
                continue
            if debited == ZERO:
                summary.skipped_members.append(member_id)
            else:
                summary.processed_members.append(member_id)
                summary.total_debited += debited

        logger.info(
            "Scheduled debits for chama %d cycle %d: processed=%d, skipped=%d, failed=%d, total=%s",
            chama_id,
            cycle_id,
            len(summary.processed_members),
            len(summary.skipped_members),
            len(summary.failed_members),
            summary.total_debited,
        )
        return summary

    def get_payment(self, reference: str) -> PaymentRecord:
        """Stored payment record for a reference."""
        record = self._find_record(reference)
        if record is None:
            raise NotFoundError(f"Payment {reference} not found")
        return record

    def _record_once(self, request: PaymentRequest) -> AllocationResult:
        with transaction_scope(self.db):
            if request.reference is not None:
                stored = self._find_record(request.reference)
                if stored is not None:
                    return self._replay(stored, request)

            member = self.balances.lock_member(request.member_id)
            if member.chama_id != request.chama_id:
                raise NotFoundError(
                    f"Member {request.member_id} not found in chama {request.chama_id}"
                )
            if not member.is_active:
                raise ValidationError(f"Member {request.member_id} is not active")

            cycle = self._resolve_cycle(request)
            result = self.engine.allocate(
                request.member_id,
                cycle,
                request.amount,
                type_id=request.type_id,
                apply_to_balance=request.apply_to_balance,
                payment_method=request.payment_method,
                reference=request.reference,
                recorded_by=request.recorded_by,
            )
            self.db.add(
                PaymentRecord(
                    reference=request.reference,
                    chama_id=request.chama_id,
                    member_id=request.member_id,
                    cycle_id=cycle.id,
                    amount=request.amount,
                    allocation=result.model_dump(mode="json"),
                    recorded_by=request.recorded_by,
                )
            )
            checked_flush(self.db)
        return result

    def _resolve_cycle(self, request: PaymentRequest) -> ContributionCycle:
        if request.cycle_id is None:
            return self.cycles.get_active_cycle(request.chama_id)
        cycle = self.cycles.get_cycle(request.cycle_id)
        if cycle.chama_id != request.chama_id:
            raise NotFoundError(
                f"Cycle {request.cycle_id} not found in chama {request.chama_id}"
            )
        if cycle.status == CycleStatus.CANCELLED:
            raise InvalidTransitionError(f"Cycle {cycle.id} is cancelled")
        return cycle

    def _find_record(self, reference: str) -> PaymentRecord | None:
        return self.db.query(PaymentRecord).filter(PaymentRecord.reference == reference).first()

    @staticmethod
    def _replay(record: PaymentRecord, request: PaymentRequest) -> AllocationResult:
        if record.member_id != request.member_id or record.amount != request.amount:
            raise ValidationError(
                f"Reference {request.reference} was already used for a different payment"
            )
        logger.info("Payment %s already applied, returning stored result", request.reference)
        stored = AllocationResult.model_validate(record.allocation)
        return stored.model_copy(update={"replayed": True})

    def _auto_debit(self, member_id: int, cycle_id: int, actor_id: int | None) -> Decimal:
        with transaction_scope(self.db):
            member = self.balances.lock_member(member_id)
            shortfalls = []
            for share in self.cycles.expected_composition(cycle_id):
                existing = self.contributions.find(member_id, cycle_id, share.type_id)
                if existing is not None and existing.status in STICKY_STATUSES:
                    continue
                paid = existing.amount if existing is not None else ZERO
                outstanding = share.expected_amount - paid
                if outstanding > ZERO:
                    shortfalls.append((share, outstanding))

            total_due = sum((outstanding for _, outstanding in shortfalls), ZERO)
            if total_due == ZERO or member.balance < total_due:
                return ZERO

            self.balances.apply_delta(
                member_id,
                -total_due,
                "Scheduled payment from balance",
                actor_id,
                cycle_id=cycle_id,
                transaction_type=LedgerTransactionType.AUTO_DEBIT,
            )
            for share, outstanding in shortfalls:
                self.contributions.accumulate(
                    member_id,
                    cycle_id,
                    share.type_id,
                    outstanding,
                    expected_amount=share.expected_amount,
                    payment_method=PaymentMethod.BALANCE,
                    recorded_by=actor_id,
                )
            self.cycles.record_collected(cycle_id, total_due)
        return total_due


__all__ = ["PaymentService", "parse_payment_request"]
