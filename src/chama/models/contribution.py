"""Contribution ORM model - accumulated payments toward one obligation."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chama.models import Base, BaseModel, str_enum


class ContributionStatus(str, Enum):
    """Payment state of a contribution row."""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    LATE = "late"
    WAIVED = "waived"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """How the money reached the chama."""

    CASH = "cash"
    MPESA = "mpesa"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    OTHER = "other"
    BALANCE = "balance"
    ROLLOVER = "rollover"


class Contribution(Base, BaseModel):
    """Money a member has paid toward one (cycle, type) obligation.

    Exactly one row exists per (member_id, cycle_id, type_id); repeated
    payments accumulate into ``amount``. Rollover rows carry ``type_id=None``.

    Attributes:
        amount: Paid so far
        expected_amount: What the obligation asks for in this cycle
        status: Derived from amount vs expected unless set by an admin
            (late, waived, cancelled)
    """

    __tablename__ = "contributions"

    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False, index=True)
    cycle_id: Mapped[int] = mapped_column(
        ForeignKey("contribution_cycles.id"), nullable=False, index=True
    )
    type_id: Mapped[int | None] = mapped_column(
        ForeignKey("contribution_types.id"), nullable=True, index=True
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    expected_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    status: Mapped[ContributionStatus] = mapped_column(
        str_enum(ContributionStatus),
        nullable=False,
        default=ContributionStatus.PENDING,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        str_enum(PaymentMethod),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[int | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    cycle: Mapped["ContributionCycle"] = relationship("ContributionCycle")  # noqa: F821
    contribution_type: Mapped["ContributionType | None"] = relationship(  # noqa: F821
        "ContributionType"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("member_id", "cycle_id", "type_id", name="uq_contribution_obligation"),
        Index("idx_contribution_cycle_status", "cycle_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Contribution(id={self.id}, member_id={self.member_id}, cycle_id={self.cycle_id}, "
            f"type_id={self.type_id}, amount={self.amount}, status={self.status})>"
        )


__all__ = ["Contribution", "ContributionStatus", "PaymentMethod"]
