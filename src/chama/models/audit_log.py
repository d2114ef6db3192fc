"""Audit log model for tracking cycle, type and payout lifecycle events."""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from chama.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for administrative changes.

    Records who (actor_id) did what (action) to which entity (entity_type,
    entity_id) with an optional snapshot of the changed fields. Money
    movements are not audited here; they live in the ledger.
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(index=False)
    """Entity type being audited: "cycle", "contribution_type", "payout"."""

    entity_id: Mapped[int] = mapped_column(index=False)
    """Primary key of the entity being audited."""

    action: Mapped[str] = mapped_column(index=False)
    """Action performed: "create", "activate", "cancel", "deactivate", etc."""

    actor_id: Mapped[int | None] = mapped_column(nullable=True, index=False)
    """Acting user supplied by the auth layer. None for system actions."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot of changed fields: {"status": "completed"}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor_id={self.actor_id})>"
        )


__all__ = ["AuditLog"]
