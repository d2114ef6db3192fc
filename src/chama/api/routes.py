"""Ledger API endpoints."""

import logging
import time
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

import pydantic
from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from chama.api.errors import error_response
from chama.errors import ChamaError, NotFoundError, ValidationError
from chama.models import CycleStatus, MemberRole
from chama.schemas.payments import AllocationResult, BalanceAdjustRequest
from chama.schemas.reports import (
    BalanceHistoryEntry,
    ChamaReport,
    FinancialReport,
    MemberStatement,
    MemberStatus,
)
from chama.services import get_db
from chama.services.balance_service import BalanceReconciler
from chama.services.cycle_service import CycleRegistry
from chama.services.member_service import MemberService
from chama.services.payment_service import PaymentService
from chama.services.reporting_service import ReportingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["ledger"])

RequestT = TypeVar("RequestT", bound=BaseModel)


def _log_debug(endpoint: str, start_time: float, user_id: int | None, **kwargs: Any) -> None:
    """Log API request with timing at DEBUG level."""
    duration_ms = int((time.time() - start_time) * 1000)
    extra = " ".join(f"{k}={v}" for k, v in kwargs.items())
    logger.debug(
        "api.%s: user_id=%s %sduration_ms=%d",
        endpoint,
        user_id,
        f"{extra} " if extra else "",
        duration_ms,
    )


# Response schemas
class BalanceAdjustmentResponse(BaseModel):
    """Response for a manual balance adjustment."""

    member_id: int
    amount: Decimal
    previous_balance: Decimal
    new_balance: Decimal

    model_config = ConfigDict(from_attributes=True)


class CycleResponse(BaseModel):
    """Response schema for a contribution cycle."""

    id: int
    chama_id: int
    cycle_number: int
    name: str
    status: CycleStatus
    cycle_date: date
    due_date: date
    collected_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class MemberResponse(BaseModel):
    """Response schema for a chama member."""

    id: int
    chama_id: int
    name: str
    phone: str | None = None
    role: MemberRole
    is_active: bool
    balance: Decimal

    model_config = ConfigDict(from_attributes=True)


class MemberCreateRequest(BaseModel):
    """New member of a chama."""

    name: str = Field(min_length=1, max_length=255)
    phone: str | None = Field(None, max_length=50)
    role: MemberRole = MemberRole.MEMBER


def _parse(model: type[RequestT], payload: dict[str, Any], label: str) -> RequestT:
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise ValidationError(f"Invalid {label}: {problems}") from e


@router.post("/payments", response_model=AllocationResult, status_code=201)
def record_payment(
    payload: dict[str, Any] = Body(...),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
    x_user_id: int | None = Header(None, alias="X-User-Id"),  # noqa: B008
) -> AllocationResult:
    """Apply an incoming payment and return its allocation breakdown."""
    start_time = time.time()
    try:
        request = {"recorded_by": x_user_id, **payload}
        result = PaymentService(db).record_payment(request)
        _log_debug(
            "payments",
            start_time,
            x_user_id,
            member_id=result.member_id,
            amount=result.total_paid,
            replayed=result.replayed,
        )
        return result
    except ChamaError as e:
        raise error_response(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in /api/payments: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error") from e


@router.post("/members/{member_id}/balance/adjust", response_model=BalanceAdjustmentResponse)
def adjust_balance(
    member_id: int,
    payload: dict[str, Any] = Body(...),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
    x_user_id: int | None = Header(None, alias="X-User-Id"),  # noqa: B008
) -> BalanceAdjustmentResponse:
    """Apply a manual balance adjustment with a mandatory reason."""
    start_time = time.time()
    try:
        request = _parse(BalanceAdjustRequest, payload, "adjustment")
        adjustment = BalanceReconciler(db).adjust_balance(
            member_id, request.amount, request.reason, x_user_id
        )
        _log_debug("adjust", start_time, x_user_id, member_id=member_id, amount=request.amount)
        return BalanceAdjustmentResponse.model_validate(adjustment)
    except ChamaError as e:
        raise error_response(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in /api/members/{member_id}/balance/adjust: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error") from e


@router.get("/members/{member_id}/status", response_model=MemberStatus)
def member_status(
    member_id: int,
    as_of: date | None = None,
    db: Session = Depends(get_db),  # noqa: B008
) -> MemberStatus:
    """Balance classification and active-cycle breakdown for a member."""
    try:
        return ReportingService(db).member_status(member_id, as_of=as_of)
    except ChamaError as e:
        raise error_response(e) from e


@router.get("/members/{member_id}/balance/history", response_model=list[BalanceHistoryEntry])
def balance_history(
    member_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),  # noqa: B008
) -> list[BalanceHistoryEntry]:
    """Latest ledger entries of a member, oldest first, with running balance."""
    try:
        return ReportingService(db).balance_history(member_id, limit=limit)
    except ChamaError as e:
        raise error_response(e) from e


@router.post("/cycles/{cycle_id}/activate", response_model=CycleResponse)
def activate_cycle(
    cycle_id: int,
    chama_id: int | None = None,
    db: Session = Depends(get_db),  # noqa: B008
    x_user_id: int | None = Header(None, alias="X-User-Id"),  # noqa: B008
) -> CycleResponse:
    """Activate a cycle, completing the chama's previously active one."""
    try:
        registry = CycleRegistry(db)
        if chama_id is None:
            chama_id = registry.get_cycle(cycle_id).chama_id
        cycle = registry.activate_cycle(chama_id, cycle_id, actor_id=x_user_id)
        return CycleResponse.model_validate(cycle)
    except ChamaError as e:
        raise error_response(e) from e


@router.get("/chamas/{chama_id}/report", response_model=ChamaReport)
def chama_report(
    chama_id: int,
    db: Session = Depends(get_db),  # noqa: B008
) -> ChamaReport:
    """Per-member balances and totals for a chama."""
    try:
        return ReportingService(db).chama_report(chama_id)
    except ChamaError as e:
        raise error_response(e) from e


@router.get("/members/{member_id}/statement", response_model=MemberStatement)
def member_statement(
    member_id: int,
    db: Session = Depends(get_db),  # noqa: B008
) -> MemberStatement:
    """Contributions and payouts of a member with net position."""
    try:
        return ReportingService(db).member_statement(member_id)
    except ChamaError as e:
        raise error_response(e) from e


@router.get("/chamas/{chama_id}/financial-report", response_model=FinancialReport)
def financial_report(
    chama_id: int,
    db: Session = Depends(get_db),  # noqa: B008
) -> FinancialReport:
    """Contributions against payouts per member and per cycle."""
    try:
        return ReportingService(db).financial_report(chama_id)
    except ChamaError as e:
        raise error_response(e) from e


@router.post("/chamas/{chama_id}/members", response_model=MemberResponse, status_code=201)
def add_member(
    chama_id: int,
    payload: dict[str, Any] = Body(...),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
    x_user_id: int | None = Header(None, alias="X-User-Id"),  # noqa: B008
) -> MemberResponse:
    """Add a member with a zero balance."""
    start_time = time.time()
    try:
        request = _parse(MemberCreateRequest, payload, "member")
        member = MemberService(db).add_member(
            chama_id, request.name, phone=request.phone, role=request.role, actor_id=x_user_id
        )
        _log_debug("add_member", start_time, x_user_id, chama_id=chama_id, member_id=member.id)
        return MemberResponse.model_validate(member)
    except ChamaError as e:
        raise error_response(e) from e


@router.delete("/chamas/{chama_id}/members/{member_id}", response_model=MemberResponse)
def remove_member(
    chama_id: int,
    member_id: int,
    db: Session = Depends(get_db),  # noqa: B008
    x_user_id: int | None = Header(None, alias="X-User-Id"),  # noqa: B008
) -> MemberResponse:
    """Deactivate a member; the row and its history are kept."""
    try:
        service = MemberService(db)
        if service.get_member(member_id).chama_id != chama_id:
            raise NotFoundError(f"Member {member_id} not found in chama {chama_id}")
        member = service.remove_member(member_id, actor_id=x_user_id)
        return MemberResponse.model_validate(member)
    except ChamaError as e:
        raise error_response(e) from e


__all__ = ["router"]
