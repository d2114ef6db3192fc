"""Translation of domain errors into HTTP responses."""

import logging

from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict

from chama.errors import ChamaError

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "validation_error": 400,
    "not_found": 404,
    "no_active_cycle": 409,
    "invalid_transition": 409,
    "duplicate": 409,
    "insufficient_funds": 409,
    "concurrency_conflict": 409,
    "storage_error": 500,
    "ledger_invariant": 500,
}


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None

    model_config = ConfigDict(from_attributes=True)


def error_response(error: ChamaError) -> HTTPException:
    """Build the HTTPException for a domain error.

    The body is ``{"detail": {"error": <code>, "detail": <message>}}``.
    """
    status_code = STATUS_BY_CODE.get(error.code, 500)
    if status_code >= 500:
        logger.error("Request failed with %s: %s", error.code, error.message)
    else:
        logger.debug("Request rejected with %s: %s", error.code, error.message)
    body = ErrorResponse(error=error.code, detail=error.message)
    return HTTPException(status_code=status_code, detail=body.model_dump())


__all__ = ["ErrorResponse", "STATUS_BY_CODE", "error_response"]
