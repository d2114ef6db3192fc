"""Ledger entry ORM model - append-only record of every balance change."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import ForeignKey, Index, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column

from chama.models import Base, BaseModel, str_enum


class LedgerTransactionType(str, Enum):
    """Why a member balance changed."""

    CONTRIBUTION = "contribution"
    """Payment applied to clear arrears."""

    ROLLOVER = "rollover"
    """Surplus carried into the next cycle."""

    OVERPAYMENT = "overpayment"
    """Surplus kept as credit when no next cycle exists."""

    ADJUSTMENT = "adjustment"
    """Manual admin correction or contribution amount edit."""

    REVERSAL = "reversal"
    """Deleted contribution taken back out of the balance."""

    AUTO_DEBIT = "auto_debit"
    """Credit consumed to pay cycle dues automatically."""


class LedgerEntry(Base, BaseModel):
    """One signed balance delta for one member.

    Rows are never updated or deleted. For every member
    ``Member.balance == sum(LedgerEntry.amount)`` and each row's
    ``balance_after == balance_before + amount``.
    """

    __tablename__ = "ledger_entries"

    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    transaction_type: Mapped[LedgerTransactionType] = mapped_column(
        str_enum(LedgerTransactionType),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cycle_id: Mapped[int | None] = mapped_column(
        ForeignKey("contribution_cycles.id"), nullable=True, index=True
    )
    # Plain column: the referenced contribution may later be deleted
    contribution_id: Mapped[int | None] = mapped_column(nullable=True)
    created_by: Mapped[int | None] = mapped_column(nullable=True)

    __table_args__ = (Index("idx_ledger_member_id", "member_id", "id"),)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(id={self.id}, member_id={self.member_id}, amount={self.amount}, "
            f"type={self.transaction_type})>"
        )


__all__ = ["LedgerEntry", "LedgerTransactionType"]
