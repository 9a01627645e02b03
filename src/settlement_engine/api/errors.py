"""Mapping of service exceptions to HTTP errors."""

from typing import Any

from fastapi import status

from settlement_engine.calculators.types import ErrorCode, SettlementError
from settlement_engine.services import (
    ConcurrentModificationError,
    InvalidTransitionError,
    JobNotFoundError,
    ObligationNotFoundError,
    OrderingViolationError,
    PayeeNotFoundError,
    SettlementNotFoundError,
)


class APIError(Exception):
    """Error surfaced to clients as an ErrorResponse body."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        code: str,
        context: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        self.detail = detail
        self.code = code
        self.context = context
        super().__init__(detail)


NOT_FOUND_ERRORS = (
    PayeeNotFoundError,
    JobNotFoundError,
    ObligationNotFoundError,
    SettlementNotFoundError,
)

REJECTION_STATUS = {
    ErrorCode.PAYEE_MISMATCH: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.JOB_ALREADY_SETTLED: status.HTTP_409_CONFLICT,
}


def from_exception(exc: Exception) -> APIError:
    """Translate a known service exception into an APIError."""
    if isinstance(exc, NOT_FOUND_ERRORS):
        return APIError(status.HTTP_404_NOT_FOUND, str(exc), "NOT_FOUND")
    if isinstance(exc, OrderingViolationError):
        return APIError(
            status.HTTP_409_CONFLICT,
            str(exc),
            "ORDERING_VIOLATION",
            {
                "conflicting_settlement_id": str(exc.conflicting_settlement_id),
                "obligation_id": str(exc.obligation_id),
            },
        )
    if isinstance(exc, ConcurrentModificationError):
        return APIError(
            status.HTTP_409_CONFLICT,
            str(exc),
            "CONCURRENT_MODIFICATION",
            {"entity": exc.entity, "entity_id": str(exc.entity_id)},
        )
    if isinstance(exc, InvalidTransitionError):
        return APIError(
            status.HTTP_409_CONFLICT,
            str(exc),
            "INVALID_TRANSITION",
            {"from_status": exc.from_status, "to_status": exc.to_status},
        )
    raise exc


def from_rejection(error: SettlementError) -> APIError:
    """Translate a rejected settlement build into an APIError."""
    return APIError(
        REJECTION_STATUS.get(error.code, status.HTTP_422_UNPROCESSABLE_ENTITY),
        error.message,
        error.code.value,
        {"job_ids": [str(j) for j in error.job_ids]},
    )


# Exceptions routes translate with from_exception
SERVICE_ERRORS = NOT_FOUND_ERRORS + (
    OrderingViolationError,
    ConcurrentModificationError,
    InvalidTransitionError,
)
