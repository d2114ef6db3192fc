"""Chama and Member ORM models."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chama.models import Base, BaseModel, str_enum


class MemberRole(str, Enum):
    """Role of a member inside their chama."""

    ADMIN = "admin"
    MEMBER = "member"


class Chama(Base, BaseModel):
    """A savings group owning members, contribution types and cycles."""

    __tablename__ = "chamas"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Group name",
    )

    members: Mapped[list["Member"]] = relationship(
        "Member",
        back_populates="chama",
        order_by="Member.id",
    )

    def __repr__(self) -> str:
        return f"<Chama(id={self.id}, name={self.name!r})>"


class Member(Base, BaseModel):
    """Membership of one person in one chama.

    ``balance`` is signed: negative means arrears, positive means credit. It is
    written only by BalanceReconciler, which appends a LedgerEntry in the same
    transaction. ``version`` is the optimistic-lock counter; the ORM adds it to
    every UPDATE's WHERE clause so a concurrent writer is detected instead of
    silently overwritten.
    """

    __tablename__ = "members"

    chama_id: Mapped[int] = mapped_column(
        ForeignKey("chamas.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    role: Mapped[MemberRole] = mapped_column(
        str_enum(MemberRole),
        nullable=False,
        default=MemberRole.MEMBER,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="False once membership is removed (soft lifecycle)",
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Running contribution balance (negative = arrears)",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    chama: Mapped["Chama"] = relationship("Chama", back_populates="members")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("idx_member_chama_active", "chama_id", "is_active"),)

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, chama_id={self.chama_id}, balance={self.balance})>"


__all__ = ["Chama", "Member", "MemberRole"]
