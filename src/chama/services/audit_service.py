"""Audit trail for administrative changes to cycles, types, contributions, payouts and members."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from chama.models.audit_log import AuditLog


def jsonable(value: Any) -> Any:
    """Convert money, enums and dates inside ``value`` to JSON-safe values."""
    if isinstance(value, dict):
        return {str(key): jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    return value


class AuditService:
    """Append-only audit entries.

    Entries are added to the caller's session and commit or roll back with
    the change they describe. Money movements are recorded in the ledger,
    not here.
    """

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: int | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Record that ``actor_id`` performed ``action`` on an entity.

        Args:
            db: Database session
            entity_type: "cycle", "contribution_type", "contribution", "payout" or "member"
            entity_id: Primary key of the entity
            action: "create", "activate", "set_status", "delete", ...
            actor_id: Acting user, None for system actions
            changes: Changed fields; Decimal, enum and date values are stored as strings
        """
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=jsonable(changes) if changes else None,
        )
        db.add(entry)
        return entry

    @staticmethod
    def history(
        db: Session, entity_type: str, entity_id: int, action: str | None = None
    ) -> list[AuditLog]:
        """Entries for one entity, oldest first, optionally for one action."""
        stmt = select(AuditLog).where(
            AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id
        )
        if action is not None:
            stmt = stmt.where(AuditLog.action == action)
        return list(db.scalars(stmt.order_by(AuditLog.id)))


__all__ = ["AuditService", "jsonable"]
