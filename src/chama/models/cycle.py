"""Contribution cycle ORM models."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chama.models import Base, BaseModel, str_enum


class CycleStatus(str, Enum):
    """Lifecycle of a contribution cycle.

    upcoming -> active -> completed; cancelled is reachable from upcoming and
    active. completed and cancelled are terminal.
    """

    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ContributionCycle(Base, BaseModel):
    """A bounded contribution period with its own due date.

    ``collected_amount`` is a denormalized cache of money placed into this
    cycle's contributions; it is changed only through
    CycleRegistry.record_collected() and never goes below zero.
    """

    __tablename__ = "contribution_cycles"

    chama_id: Mapped[int] = mapped_column(ForeignKey("chamas.id"), nullable=False, index=True)
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    cycle_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[CycleStatus] = mapped_column(
        str_enum(CycleStatus),
        nullable=False,
        default=CycleStatus.UPCOMING,
    )
    collected_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    cycle_types: Mapped[list["CycleType"]] = relationship(
        "CycleType",
        back_populates="cycle",
        order_by="CycleType.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("chama_id", "cycle_number", name="uq_cycle_number"),
        Index("idx_cycle_chama_status", "chama_id", "status"),
        # At most one active cycle per chama.
        Index(
            "uq_cycle_single_active",
            "chama_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    @property
    def total_expected(self) -> Decimal:
        """Sum of the expected amounts of every type in this cycle."""
        return sum((ct.expected_amount for ct in self.cycle_types), Decimal("0.00"))

    def __repr__(self) -> str:
        return (
            f"<ContributionCycle(id={self.id}, chama_id={self.chama_id}, "
            f"number={self.cycle_number}, status={self.status})>"
        )


class CycleType(Base, BaseModel):
    """Expected amount of one contribution type within one cycle.

    ``position`` preserves insertion order, which is the allocation priority.
    """

    __tablename__ = "cycle_types"

    cycle_id: Mapped[int] = mapped_column(
        ForeignKey("contribution_cycles.id"), nullable=False, index=True
    )
    type_id: Mapped[int] = mapped_column(
        ForeignKey("contribution_types.id"), nullable=False, index=True
    )
    expected_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    cycle: Mapped["ContributionCycle"] = relationship(
        "ContributionCycle", back_populates="cycle_types"
    )
    contribution_type: Mapped["ContributionType"] = relationship(  # noqa: F821
        "ContributionType"
    )

    __table_args__ = (UniqueConstraint("cycle_id", "type_id", name="uq_cycle_type"),)

    def __repr__(self) -> str:
        return (
            f"<CycleType(cycle_id={self.cycle_id}, type_id={self.type_id}, "
            f"expected={self.expected_amount})>"
        )


__all__ = ["ContributionCycle", "CycleStatus", "CycleType"]
