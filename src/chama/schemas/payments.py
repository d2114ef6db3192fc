"""Payment request and allocation result schemas."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chama.errors import ValidationError
from chama.models import ContributionStatus, PaymentMethod
from chama.money import ZERO, positive_money, to_money

# Internal methods; a payment event never arrives with these
INTERNAL_PAYMENT_METHODS = (PaymentMethod.BALANCE, PaymentMethod.ROLLOVER)


class AllocationStep(str, Enum):
    """Where a slice of a payment went."""

    TARGETED_TYPE = "targeted_type"
    BALANCE_CLEARANCE = "balance_clearance"
    CYCLE_TYPE = "cycle_type"
    ROLLOVER = "rollover"
    CREDIT = "credit"


class PaymentRequest(BaseModel):
    """Incoming payment event."""

    chama_id: int
    member_id: int
    amount: Decimal
    cycle_id: int | None = None
    """Cycle to pay into; the chama's active cycle when omitted."""

    type_id: int | None = None
    """Contribution type to pay first."""

    apply_to_balance: bool = False
    """Clear arrears before paying cycle types."""

    payment_method: PaymentMethod = PaymentMethod.CASH
    reference: str | None = Field(default=None, max_length=100)
    """Gateway reference; replays with the same reference are idempotent."""

    notes: str | None = None
    recorded_by: int | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        """Require a positive amount with at most two decimal places."""
        try:
            return positive_money(value)
        except ValidationError as e:
            raise ValueError(e.message) from e

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, value: PaymentMethod) -> PaymentMethod:
        """Reject methods reserved for internal transfers."""
        if value in INTERNAL_PAYMENT_METHODS:
            raise ValueError(f"payment_method {value.value} is reserved for internal transfers")
        return value

    @field_validator("reference")
    @classmethod
    def normalize_reference(cls, value: str | None) -> str | None:
        """Blank references mean no reference."""
        if value is None:
            return None
        value = value.strip()
        return value or None


class AllocationLine(BaseModel):
    """One slice of an allocated payment."""

    model_config = ConfigDict(from_attributes=True)

    step: AllocationStep
    amount: Decimal
    cycle_id: int | None = None
    type_id: int | None = None
    contribution_id: int | None = None
    status: ContributionStatus | None = None
    """Resulting contribution status for contribution lines."""


class AllocationResult(BaseModel):
    """Breakdown of where one payment went."""

    reference: str | None = None
    member_id: int
    cycle_id: int
    total_paid: Decimal
    applied_to_contributions: Decimal = ZERO
    balance_cleared: Decimal = ZERO
    credit_amount: Decimal = ZERO
    rollover_amount: Decimal = ZERO
    rollover_cycle_id: int | None = None
    new_balance: Decimal
    allocations: list[AllocationLine] = Field(default_factory=list)
    replayed: bool = False
    """True when returned from a stored earlier application of the same reference."""

    @property
    def allocated_total(self) -> Decimal:
        """Sum of all parts; equals total_paid for a conserved allocation."""
        return (
            self.applied_to_contributions
            + self.balance_cleared
            + self.credit_amount
            + self.rollover_amount
        )


class BalanceAdjustRequest(BaseModel):
    """Manual balance adjustment by an admin."""

    amount: Decimal
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        """Require a non-zero amount with at most two decimal places."""
        try:
            amount = to_money(value)
        except ValidationError as e:
            raise ValueError(e.message) from e
        if amount == ZERO:
            raise ValueError("amount must not be zero")
        return amount


class BulkEntryResult(BaseModel):
    """Outcome of one entry of a bulk payment upload."""

    index: int
    member_id: int | None = None
    success: bool
    result: AllocationResult | None = None
    error: str | None = None
    error_code: str | None = None


class BulkPaymentResult(BaseModel):
    """Summary of a bulk payment upload."""

    succeeded: int = 0
    failed: int = 0
    entries: list[BulkEntryResult] = Field(default_factory=list)


class ScheduledDebitResult(BaseModel):
    """Summary of one scheduled auto-debit run."""

    cycle_id: int
    processed_members: list[int] = Field(default_factory=list)
    skipped_members: list[int] = Field(default_factory=list)
    failed_members: list[int] = Field(default_factory=list)
    total_debited: Decimal = ZERO


__all__ = [
    "AllocationLine",
    "AllocationResult",
    "AllocationStep",
    "BalanceAdjustRequest",
    "BulkEntryResult",
    "BulkPaymentResult",
    "PaymentRequest",
    "ScheduledDebitResult",
]
