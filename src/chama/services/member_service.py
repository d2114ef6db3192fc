"""Chama membership: joining and leaving a group."""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from chama.errors import DuplicateError, NotFoundError, ValidationError
from chama.models import Chama, Member, MemberRole
from chama.money import ZERO
from chama.services.audit_service import AuditService
from chama.services.db import checked_flush, transaction_scope

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
MAX_PHONE_LENGTH = 50


class MemberService:
    """Service for the membership lifecycle.

    Members are never deleted. Removal only clears ``is_active`` so the
    contribution rows, ledger entries and payouts that reference the member
    stay intact; inactive members cannot pay and drop out of reports.
    """

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def get_member(self, member_id: int) -> Member:
        """Get member by ID.

        Raises:
            NotFoundError: If the member does not exist
        """
        member = self.db.get(Member, member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found")
        return member

    def list_members(self, chama_id: int, active_only: bool = True) -> list[Member]:
        """List a chama's members in joining order."""
        stmt = select(Member).where(Member.chama_id == chama_id)
        if active_only:
            stmt = stmt.where(Member.is_active.is_(True))
        return list(self.db.scalars(stmt.order_by(Member.id)))

    def add_member(
        self,
        chama_id: int,
        name: str,
        phone: str | None = None,
        role: MemberRole | str = MemberRole.MEMBER,
        actor_id: int | None = None,
    ) -> Member:
        """Add a member with a zero balance.

        Raises:
            ValidationError: On empty/oversized name or phone, or unknown role
            NotFoundError: If the chama does not exist
            DuplicateError: If an active member already uses this phone number
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Member name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Member name must be at most {MAX_NAME_LENGTH} characters")
        if phone is not None:
            phone = phone.strip() or None
        if phone is not None and len(phone) > MAX_PHONE_LENGTH:
            raise ValidationError(f"Phone must be at most {MAX_PHONE_LENGTH} characters")
        try:
            role = MemberRole(role)
        except ValueError as e:
            raise ValidationError(f"Invalid member role: {role}") from e

        with transaction_scope(self.db):
            if self.db.get(Chama, chama_id) is None:
                raise NotFoundError(f"Chama {chama_id} not found")
            if phone is not None:
                existing = self.db.scalar(
                    select(Member.id).where(
                        Member.chama_id == chama_id,
                        Member.phone == phone,
                        Member.is_active.is_(True),
                    )
                )
                if existing is not None:
                    raise DuplicateError(f"Phone {phone} already belongs to member {existing}")

            member = Member(
                chama_id=chama_id,
                name=name,
                phone=phone,
                role=role,
                is_active=True,
                balance=ZERO,
            )
            self.db.add(member)
            checked_flush(self.db)
            AuditService.log(
                self.db, "member", member.id, "create", actor_id, {"role": role, "name": name}
            )

        logger.info("Added member: id=%d, chama_id=%d, role=%s", member.id, chama_id, role.value)
        return member

    def remove_member(self, member_id: int, actor_id: int | None = None) -> Member:
        """Deactivate a member, keeping the row and its history.

        The balance is left as it is, so arrears stay visible on the member
        statement. Removing an already inactive member changes nothing.
        """
        with transaction_scope(self.db):
            member = self.get_member(member_id)
            if not member.is_active:
                return member
            member.is_active = False
            checked_flush(self.db)
            AuditService.log(
                self.db,
                "member",
                member_id,
                "remove",
                actor_id,
                {"balance": member.balance},
            )

        logger.info("Removed member %d (balance %s kept)", member_id, member.balance)
        return member

    def reinstate_member(self, member_id: int, actor_id: int | None = None) -> Member:
        """Reactivate a removed member with their balance unchanged.

        Raises:
            DuplicateError: If another active member now uses the same phone
        """
        with transaction_scope(self.db):
            member = self.get_member(member_id)
            if member.is_active:
                return member
            if member.phone is not None:
                clash = self.db.scalar(
                    select(Member.id).where(
                        Member.chama_id == member.chama_id,
                        Member.phone == member.phone,
                        Member.is_active.is_(True),
                    )
                )
                if clash is not None:
                    raise DuplicateError(
                        f"Phone {member.phone} already belongs to member {clash}"
                    )
            member.is_active = True
            checked_flush(self.db)
            AuditService.log(self.db, "member", member_id, "reinstate", actor_id)

        logger.info("Reinstated member %d", member_id)
        return member


__all__ = ["MemberService"]
