"""Contribution type catalogue operations."""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chama.errors import DuplicateError, NotFoundError, ValidationError
from chama.models import Chama, ContributionType, CycleType, Frequency
from chama.money import non_negative_money
from chama.services.audit_service import AuditService
from chama.services.db import transaction_scope

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500


class ContributionTypeService:
    """CRUD for the named obligations a chama can put into its cycles."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def get_type(self, type_id: int) -> ContributionType:
        """Get contribution type by ID.

        Raises:
            NotFoundError: If the type does not exist
        """
        contribution_type = self.db.get(ContributionType, type_id)
        if contribution_type is None:
            raise NotFoundError(f"Contribution type {type_id} not found")
        return contribution_type

    def list_types(self, chama_id: int, active_only: bool = False) -> list[ContributionType]:
        """List a chama's contribution types ordered by name."""
        stmt = select(ContributionType).where(ContributionType.chama_id == chama_id)
        if active_only:
            stmt = stmt.where(ContributionType.is_active.is_(True))
        return list(self.db.scalars(stmt.order_by(ContributionType.name)))

    def create_type(
        self,
        chama_id: int,
        name: str,
        default_amount: Decimal | str | int = Decimal("0.00"),
        frequency: Frequency | str = Frequency.MONTHLY,
        description: str | None = None,
        is_required: bool = True,
        actor_id: int | None = None,
    ) -> ContributionType:
        """Create a new contribution type.

        Raises:
            ValidationError: On empty/oversized name or negative amount
            NotFoundError: If the chama does not exist
            DuplicateError: If the chama already has a type with this name
        """
        name = self._validate_name(name)
        amount = non_negative_money(default_amount, "default_amount")
        frequency = self._validate_frequency(frequency)
        self._validate_description(description)

        with transaction_scope(self.db):
            if self.db.get(Chama, chama_id) is None:
                raise NotFoundError(f"Chama {chama_id} not found")
            self._ensure_unique_name(chama_id, name)

            contribution_type = ContributionType(
                chama_id=chama_id,
                name=name,
                description=description,
                default_amount=amount,
                frequency=frequency,
                is_required=is_required,
                is_active=True,
            )
            self.db.add(contribution_type)
            self.db.flush()
            AuditService.log(self.db, "contribution_type", contribution_type.id, "create", actor_id)

        logger.info(
            "Created contribution type: id=%d, chama_id=%d, name=%s, default=%s",
            contribution_type.id,
            chama_id,
            name,
            amount,
        )
        return contribution_type

    def update_type(self, type_id: int, actor_id: int | None = None, **fields) -> ContributionType:
        """Update name, description, default_amount, frequency, is_required or is_active.

        Raises:
            ValidationError: If no known field is given or a value is invalid
            DuplicateError: If the new name clashes with another type
        """
        allowed = {"name", "description", "default_amount", "frequency", "is_required", "is_active"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown contribution type fields: {', '.join(sorted(unknown))}")
        if not fields:
            raise ValidationError("No fields to update")

        with transaction_scope(self.db):
            contribution_type = self.get_type(type_id)
            changes = {}
            if "name" in fields:
                name = self._validate_name(fields["name"])
                if name != contribution_type.name:
                    self._ensure_unique_name(contribution_type.chama_id, name, exclude_id=type_id)
                contribution_type.name = name
                changes["name"] = name
            if "description" in fields:
                self._validate_description(fields["description"])
                contribution_type.description = fields["description"]
            if "default_amount" in fields:
                contribution_type.default_amount = non_negative_money(
                    fields["default_amount"], "default_amount"
                )
                changes["default_amount"] = str(contribution_type.default_amount)
            if "frequency" in fields:
                contribution_type.frequency = self._validate_frequency(fields["frequency"])
                changes["frequency"] = contribution_type.frequency.value
            if "is_required" in fields:
                contribution_type.is_required = bool(fields["is_required"])
            if "is_active" in fields:
                contribution_type.is_active = bool(fields["is_active"])
                changes["is_active"] = contribution_type.is_active
            AuditService.log(self.db, "contribution_type", type_id, "update", actor_id, changes)

        return contribution_type

    def delete_type(self, type_id: int, actor_id: int | None = None) -> bool:
        """Delete a type, or deactivate it when any cycle references it.

        Returns:
            True if the row was deleted, False if it was only deactivated
        """
        with transaction_scope(self.db):
            contribution_type = self.get_type(type_id)
            usage = self.db.scalar(
                select(func.count()).select_from(CycleType).where(CycleType.type_id == type_id)
            )
            if usage:
                contribution_type.is_active = False
                AuditService.log(self.db, "contribution_type", type_id, "deactivate", actor_id)
                deleted = False
            else:
                self.db.delete(contribution_type)
                AuditService.log(self.db, "contribution_type", type_id, "delete", actor_id)
                deleted = True

        logger.info(
            "Contribution type %d %s", type_id, "deleted" if deleted else "deactivated (in use)"
        )
        return deleted

    def _ensure_unique_name(self, chama_id: int, name: str, exclude_id: int | None = None) -> None:
        stmt = select(ContributionType.id).where(
            ContributionType.chama_id == chama_id, ContributionType.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(ContributionType.id != exclude_id)
        if self.db.scalar(stmt) is not None:
            raise DuplicateError(f"Contribution type '{name}' already exists")

    @staticmethod
    def _validate_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Type name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Type name must be at most {MAX_NAME_LENGTH} characters")
        return name

    @staticmethod
    def _validate_description(description: str | None) -> None:
        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
            )

    @staticmethod
    def _validate_frequency(frequency: Frequency | str) -> Frequency:
        try:
            return Frequency(frequency)
        except ValueError as e:
            raise ValidationError(f"Invalid frequency: {frequency}") from e


__all__ = ["ContributionTypeService"]
