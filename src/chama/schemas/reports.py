"""Read-only report schemas."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from chama.models import (
    ContributionStatus,
    CycleStatus,
    LedgerTransactionType,
    MemberRole,
    PaymentMethod,
)
from chama.money import ZERO


class TypeBreakdown(BaseModel):
    """One contribution type of a member's cycle obligations."""

    type_id: int
    type_name: str | None = None
    expected: Decimal
    paid: Decimal
    remaining: Decimal
    """Expected minus paid, floored at zero; zero when waived."""

    status: ContributionStatus


class MemberStatus(BaseModel):
    """Balance position and active-cycle progress of one member."""

    member_id: int
    member_name: str
    balance: Decimal
    classification: str
    """Either credit (balance >= 0) or arrears."""

    total_credit: Decimal = ZERO
    total_arrears: Decimal = ZERO
    cycle_id: int | None = None
    cycle_name: str | None = None
    due_date: date | None = None
    breakdown: list[TypeBreakdown] = Field(default_factory=list)
    total_expected: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_outstanding: Decimal = ZERO
    is_overdue: bool = False
    days_remaining: int | None = None
    compliance_rate: float = 0.0


class ChamaReportRow(BaseModel):
    """Per-member line of the chama report."""

    member_id: int
    member_name: str
    balance: Decimal
    classification: str
    total_paid: Decimal = ZERO
    total_outstanding: Decimal = ZERO


class ChamaReport(BaseModel):
    """Balance overview of a whole chama."""

    chama_id: int
    cycle_id: int | None = None
    members: list[ChamaReportRow] = Field(default_factory=list)
    members_in_arrears: int = 0
    members_with_credit: int = 0
    total_arrears: Decimal = ZERO
    total_credit: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_outstanding: Decimal = ZERO


class CycleSummaryRow(BaseModel):
    """One member's position in a cycle."""

    member_id: int
    member_name: str
    expected: Decimal
    paid: Decimal
    outstanding: Decimal
    fully_paid: bool


class CycleSummary(BaseModel):
    """Collection progress of one cycle."""

    cycle_id: int
    cycle_number: int
    name: str
    status: CycleStatus
    due_date: date
    expected_per_member: Decimal
    member_count: int
    members_fully_paid: int
    collected_amount: Decimal
    rows: list[CycleSummaryRow] = Field(default_factory=list)


class BalanceHistoryEntry(BaseModel):
    """Ledger entry with the running balance after it."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    transaction_type: LedgerTransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    running_balance: Decimal
    description: str | None = None
    cycle_id: int | None = None


class StatementLine(BaseModel):
    """A contribution or payout on a member statement."""

    kind: str
    """Either contribution or payout."""

    id: int
    cycle_id: int
    cycle_number: int
    amount: Decimal
    status: str
    recorded_at: datetime
    type_name: str | None = None
    payment_method: PaymentMethod | None = None


class MemberStatement(BaseModel):
    """Everything a member has put in and taken out, newest first."""

    member_id: int
    member_name: str
    phone: str | None = None
    role: MemberRole
    is_active: bool
    balance: Decimal
    classification: str
    total_contributed: Decimal = ZERO
    """Sum of contribution amounts except cancelled rows."""

    total_paid_out: Decimal = ZERO
    """Sum of payouts marked paid."""

    pending_payouts: Decimal = ZERO
    net_position: Decimal = ZERO
    """total_contributed minus total_paid_out."""

    contribution_percentage: float = 0.0
    """Compliance rate as a percentage, two decimals."""

    transactions: list[StatementLine] = Field(default_factory=list)


class FinancialMemberRow(BaseModel):
    """Contributions against payouts for one member."""

    member_id: int
    member_name: str
    contributions_count: int = 0
    total_contributed: Decimal = ZERO
    payouts_count: int = 0
    total_paid_out: Decimal = ZERO
    net_position: Decimal = ZERO


class FinancialCycleRow(BaseModel):
    """Contributions against payouts for one cycle."""

    cycle_id: int
    cycle_number: int
    name: str
    status: CycleStatus
    due_date: date
    expected_total: Decimal
    """Expected per member times the number of active members."""

    collected_amount: Decimal
    members_contributed: int = 0
    total_paid_out: Decimal = ZERO
    members_paid_out: int = 0


class FinancialReport(BaseModel):
    """Money in and out of a chama, by member, by cycle and by payment method."""

    chama_id: int
    chama_name: str
    total_contributed: Decimal = ZERO
    total_paid_out: Decimal = ZERO
    pending_payouts: Decimal = ZERO
    available_funds: Decimal = ZERO
    """Contributed minus paid and pending payouts."""

    by_payment_method: dict[str, Decimal] = Field(default_factory=dict)
    members: list[FinancialMemberRow] = Field(default_factory=list)
    cycles: list[FinancialCycleRow] = Field(default_factory=list)


__all__ = [
    "BalanceHistoryEntry",
    "ChamaReport",
    "ChamaReportRow",
    "CycleSummary",
    "CycleSummaryRow",
    "FinancialCycleRow",
    "FinancialMemberRow",
    "FinancialReport",
    "MemberStatement",
    "MemberStatus",
    "StatementLine",
    "TypeBreakdown",
]
