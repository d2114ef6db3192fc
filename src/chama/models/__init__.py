"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


def str_enum(enum_cls: type[Enum]) -> SQLEnum:
    """Column type storing a str Enum by value ("active"), not by member name."""
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from chama.models.audit_log import AuditLog  # noqa: E402
from chama.models.chama import Chama, Member, MemberRole  # noqa: E402
from chama.models.contribution import (  # noqa: E402
    Contribution,
    ContributionStatus,
    PaymentMethod,
)
from chama.models.contribution_type import ContributionType, Frequency  # noqa: E402
from chama.models.cycle import ContributionCycle, CycleStatus, CycleType  # noqa: E402
from chama.models.ledger_entry import LedgerEntry, LedgerTransactionType  # noqa: E402
from chama.models.payment_record import PaymentRecord  # noqa: E402
from chama.models.payout import Payout, PayoutStatus  # noqa: E402

__all__ = [
    "Base",
    "BaseModel",
    "str_enum",
    "AuditLog",
    "Chama",
    "Member",
    "MemberRole",
    "Contribution",
    "ContributionStatus",
    "PaymentMethod",
    "ContributionType",
    "Frequency",
    "ContributionCycle",
    "CycleStatus",
    "CycleType",
    "LedgerEntry",
    "LedgerTransactionType",
    "PaymentRecord",
    "Payout",
    "PayoutStatus",
]
