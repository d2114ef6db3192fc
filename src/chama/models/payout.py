"""Payout ORM model for rotating-savings disbursements."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column

from chama.models import Base, BaseModel, str_enum


class PayoutStatus(str, Enum):
    """Payout lifecycle: pending -> paid | cancelled."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class Payout(Base, BaseModel):
    """Disbursement of pooled funds to one member in one cycle."""

    __tablename__ = "payouts"

    chama_id: Mapped[int] = mapped_column(ForeignKey("chamas.id"), nullable=False, index=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False, index=True)
    cycle_id: Mapped[int] = mapped_column(
        ForeignKey("contribution_cycles.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payout_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PayoutStatus] = mapped_column(
        str_enum(PayoutStatus),
        nullable=False,
        default=PayoutStatus.PENDING,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(nullable=True)

    __table_args__ = (Index("idx_payout_member_cycle", "member_id", "cycle_id"),)

    def __repr__(self) -> str:
        return (
            f"<Payout(id={self.id}, member_id={self.member_id}, cycle_id={self.cycle_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


__all__ = ["Payout", "PayoutStatus"]
