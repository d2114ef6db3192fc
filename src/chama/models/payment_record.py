"""Payment record ORM model - one row per applied payment event."""

from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from chama.models import Base, BaseModel


class PaymentRecord(Base, BaseModel):
    """Applied payment with its allocation breakdown.

    ``reference`` is the gateway's unique payment reference; a second event
    with the same reference replays ``allocation`` instead of moving money
    again. Payments recorded by hand may have no reference.
    """

    __tablename__ = "payment_records"

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    chama_id: Mapped[int] = mapped_column(ForeignKey("chamas.id"), nullable=False, index=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False, index=True)
    cycle_id: Mapped[int] = mapped_column(ForeignKey("contribution_cycles.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    allocation: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    recorded_by: Mapped[int | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord(id={self.id}, reference={self.reference!r}, "
            f"member_id={self.member_id}, amount={self.amount})>"
        )


__all__ = ["PaymentRecord"]
