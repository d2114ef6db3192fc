"""Contribution type ORM model."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from chama.models import Base, BaseModel, str_enum


class Frequency(str, Enum):
    """How often a contribution type is normally due."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class ContributionType(Base, BaseModel):
    """A named obligation inside a chama (e.g. "monthly dues", "emergency fund").

    Cycles reference types through CycleType with a cycle-specific expected
    amount; ``default_amount`` only seeds that value. Once referenced by a
    cycle the type is deactivated instead of deleted.
    """

    __tablename__ = "contribution_types"

    chama_id: Mapped[int] = mapped_column(ForeignKey("chamas.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    default_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    frequency: Mapped[Frequency] = mapped_column(
        str_enum(Frequency),
        nullable=False,
        default=Frequency.MONTHLY,
    )
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("chama_id", "name", name="uq_contribution_type_name"),)

    def __repr__(self) -> str:
        return f"<ContributionType(id={self.id}, name={self.name!r}, active={self.is_active})>"


__all__ = ["ContributionType", "Frequency"]
