"""Allocation engine for distributing one payment across a member's obligations.

Allocation order:
1. TARGETED_TYPE: the requested contribution type, up to its outstanding amount
2. BALANCE_CLEARANCE: arrears (negative balance), when requested
3. CYCLE_TYPE: every cycle type in composition order
4. ROLLOVER or CREDIT: the surplus goes to the next cycle if there is one,
   otherwise it stays on the member balance

Ensures: total paid == sum of all parts (zero money loss/creation)
"""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from chama.errors import LedgerInvariantError, NotFoundError
from chama.models import ContributionCycle, LedgerTransactionType, PaymentMethod
from chama.money import ZERO, positive_money
from chama.schemas.payments import AllocationLine, AllocationResult, AllocationStep
from chama.services.balance_service import BalanceReconciler
from chama.services.contribution_service import STICKY_STATUSES, ContributionService
from chama.services.cycle_service import CycleRegistry, ExpectedShare

logger = logging.getLogger(__name__)


class AllocationEngine:
    """Deterministic payment allocation.

    Runs inside the caller's transaction: every write only flushes, and the
    caller commits once the whole payment has been placed.
    """

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db
        self.cycles = CycleRegistry(db)
        self.contributions = ContributionService(db)
        self.balances = BalanceReconciler(db)

    def allocate(
        self,
        member_id: int,
        cycle: ContributionCycle,
        amount: Decimal,
        type_id: int | None = None,
        apply_to_balance: bool = False,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        reference: str | None = None,
        recorded_by: int | None = None,
    ) -> AllocationResult:
        """Distribute ``amount`` for ``member_id`` paying into ``cycle``.

        Args:
            member_id: Paying member
            cycle: Cycle the payment is made in
            amount: Positive payment amount
            type_id: Contribution type to fill first
            apply_to_balance: Clear arrears before the cycle types
            payment_method: Method stored on the touched contributions
            reference: Payment reference stored on the touched contributions
            recorded_by: Acting user

        Returns:
            AllocationResult with one line per placed slice

        Raises:
            NotFoundError: If type_id is not part of the cycle
            LedgerInvariantError: If the parts do not add up to the payment
        """
        amount = positive_money(amount)
        composition = self.cycles.expected_composition(cycle.id)
        shares = {share.type_id: share for share in composition}
        if type_id is not None and type_id not in shares:
            raise NotFoundError(f"Contribution type {type_id} is not part of cycle {cycle.id}")

        result = AllocationResult(
            reference=reference,
            member_id=member_id,
            cycle_id=cycle.id,
            total_paid=amount,
            new_balance=ZERO,
        )
        remaining = amount

        # Step 1: targeted type
        if type_id is not None and not apply_to_balance:
            remaining -= self._pay_share(
                result,
                AllocationStep.TARGETED_TYPE,
                member_id,
                cycle,
                shares[type_id],
                remaining,
                payment_method,
                reference,
                recorded_by,
            )

        # Step 2: arrears
        if apply_to_balance and remaining > ZERO:
            balance = self.balances.lock_member(member_id).balance
            if balance < ZERO:
                cleared = min(remaining, -balance)
                self.balances.apply_delta(
                    member_id,
                    cleared,
                    self._describe("Arrears cleared", reference),
                    recorded_by,
                    cycle_id=cycle.id,
                    transaction_type=LedgerTransactionType.CONTRIBUTION,
                )
                result.balance_cleared = cleared
                result.allocations.append(
                    AllocationLine(
                        step=AllocationStep.BALANCE_CLEARANCE, amount=cleared, cycle_id=cycle.id
                    )
                )
                remaining -= cleared

        # Step 3: remaining cycle types in composition order
        for share in composition:
            if remaining == ZERO:
                break
            remaining -= self._pay_share(
                result,
                AllocationStep.CYCLE_TYPE,
                member_id,
                cycle,
                share,
                remaining,
                payment_method,
                reference,
                recorded_by,
            )

        if result.applied_to_contributions > ZERO:
            self.cycles.record_collected(cycle.id, result.applied_to_contributions)

        # Step 4: surplus
        if remaining > ZERO:
            self._place_surplus(result, member_id, cycle, remaining, reference, recorded_by)
            remaining = ZERO

        result.new_balance = self.balances.get_balance(member_id)
        self._check_conservation(result)

        logger.info(
            "Allocated payment: member=%d, cycle=%d, amount=%s, contributions=%s, "
            "cleared=%s, rollover=%s, credit=%s",
            member_id,
            cycle.id,
            amount,
            result.applied_to_contributions,
            result.balance_cleared,
            result.rollover_amount,
            result.credit_amount,
        )
        return result

    def _pay_share(
        self,
        result: AllocationResult,
        step: AllocationStep,
        member_id: int,
        cycle: ContributionCycle,
        share: ExpectedShare,
        available: Decimal,
        payment_method: PaymentMethod,
        reference: str | None,
        recorded_by: int | None,
    ) -> Decimal:
        """Put up to the share's outstanding amount into its contribution row.

        Returns:
            Amount placed (may be zero)
        """
        existing = self.contributions.find(member_id, cycle.id, share.type_id)
        if existing is not None and existing.status in STICKY_STATUSES:
            return ZERO
        paid = existing.amount if existing is not None else ZERO
        outstanding = max(ZERO, share.expected_amount - paid)
        placed = min(available, outstanding)
        if placed == ZERO:
            return ZERO

        contribution = self.contributions.accumulate(
            member_id,
            cycle.id,
            share.type_id,
            placed,
            expected_amount=share.expected_amount,
            payment_method=payment_method,
            payment_reference=reference,
            recorded_by=recorded_by,
        )
        result.applied_to_contributions += placed
        result.allocations.append(
            AllocationLine(
                step=step,
                amount=placed,
                cycle_id=cycle.id,
                type_id=share.type_id,
                contribution_id=contribution.id,
                status=contribution.status,
            )
        )
        return placed

    def _place_surplus(
        self,
        result: AllocationResult,
        member_id: int,
        cycle: ContributionCycle,
        surplus: Decimal,
        reference: str | None,
        recorded_by: int | None,
    ) -> None:
        target = self.cycles.next_cycle(cycle)
        if target is not None:
            contribution = self.contributions.accumulate(
                member_id,
                target.id,
                None,
                surplus,
                expected_amount=None,
                payment_method=PaymentMethod.ROLLOVER,
                payment_reference=reference,
                recorded_by=recorded_by,
                notes=f"Rolled over from cycle {cycle.cycle_number}",
            )
            self.balances.apply_delta(
                member_id,
                surplus,
                self._describe(f"Rollover to cycle {target.cycle_number}", reference),
                recorded_by,
                cycle_id=target.id,
                contribution_id=contribution.id,
                transaction_type=LedgerTransactionType.ROLLOVER,
            )
            self.cycles.record_collected(target.id, surplus)
            result.rollover_amount = surplus
            result.rollover_cycle_id = target.id
            result.allocations.append(
                AllocationLine(
                    step=AllocationStep.ROLLOVER,
                    amount=surplus,
                    cycle_id=target.id,
                    contribution_id=contribution.id,
                    status=contribution.status,
                )
            )
        else:
            self.balances.apply_delta(
                member_id,
                surplus,
                self._describe("Overpayment credit", reference),
                recorded_by,
                transaction_type=LedgerTransactionType.OVERPAYMENT,
            )
            result.credit_amount = surplus
            result.allocations.append(AllocationLine(step=AllocationStep.CREDIT, amount=surplus))

    @staticmethod
    def _check_conservation(result: AllocationResult) -> None:
        lines_total = sum((line.amount for line in result.allocations), ZERO)
        if result.allocated_total != result.total_paid or lines_total != result.total_paid:
            raise LedgerInvariantError(
                f"Allocation of {result.total_paid} for member {result.member_id} "
                f"placed {result.allocated_total} (lines {lines_total})"
            )

    @staticmethod
    def _describe(text: str, reference: str | None) -> str:
        return f"{text} (ref {reference})" if reference else text


__all__ = ["AllocationEngine"]
