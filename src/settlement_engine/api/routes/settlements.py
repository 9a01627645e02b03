"""Settlement API endpoints."""

from datetime import datetime, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Response, status

from settlement_engine.api.dependencies import AppSettings, DbSession
from settlement_engine.api.errors import SERVICE_ERRORS, from_exception, from_rejection
from settlement_engine.api.schemas import (
    CommitResponse,
    ErrorResponse,
    ReverseRequest,
    SettlementPreviewResponse,
    SettlementRequest,
    SettlementResponse,
)
from settlement_engine.services.settlement_service import SettlementService

router = APIRouter(prefix="/settlements", tags=["settlements"])


@router.post(
    "/preview",
    response_model=SettlementPreviewResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def preview_settlement(
    db: DbSession,
    settings: AppSettings,
    payload: SettlementRequest,
) -> SettlementPreviewResponse:
    """Compute a draft settlement without persisting anything."""
    service = SettlementService(db, settings)
    try:
        result = await service.preview(
            payload.payee_id,
            payload.job_ids,
            manual_deductions=[d.to_domain() for d in payload.manual_deductions],
            apply_withholding=payload.apply_withholding,
            other_earnings=[e.to_domain() for e in payload.other_earnings],
        )
    except SERVICE_ERRORS as e:
        raise from_exception(e)
    finally:
        await db.rollback()

    if result.error is not None:
        raise from_rejection(result.error)
    return SettlementPreviewResponse.from_draft(result.draft, datetime.now(timezone.utc))


@router.post(
    "",
    response_model=CommitResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def create_settlement(
    db: DbSession,
    settings: AppSettings,
    payload: SettlementRequest,
    response: Response,
) -> CommitResponse:
    """Build and commit a settlement. Idempotent for identical inputs."""
    service = SettlementService(db, settings)
    try:
        result = await service.create_settlement(
            payload.payee_id,
            payload.job_ids,
            manual_deductions=[d.to_domain() for d in payload.manual_deductions],
            apply_withholding=payload.apply_withholding,
            other_earnings=[e.to_domain() for e in payload.other_earnings],
        )
    except SERVICE_ERRORS as e:
        await db.rollback()
        raise from_exception(e)

    if result.error is not None:
        raise from_rejection(result.error)

    if not result.is_new:
        response.status_code = status.HTTP_200_OK
    return CommitResponse(
        settlement=SettlementResponse.from_model(result.settlement),
        created=result.is_new,
        attempts=result.attempts,
    )


@router.get(
    "/{settlement_id}",
    response_model=SettlementResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_settlement(
    db: DbSession,
    settings: AppSettings,
    settlement_id: Annotated[UUID, Path()],
) -> SettlementResponse:
    """Get a settlement with its lines and obligation allocations."""
    service = SettlementService(db, settings)
    try:
        settlement = await service.get_settlement(settlement_id)
    except SERVICE_ERRORS as e:
        raise from_exception(e)
    return SettlementResponse.from_model(settlement)


@router.post(
    "/{settlement_id}/reverse",
    response_model=SettlementResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reverse_settlement(
    db: DbSession,
    settings: AppSettings,
    settlement_id: Annotated[UUID, Path()],
    payload: ReverseRequest | None = None,
) -> SettlementResponse:
    """Void a settlement and restore the obligation balances it recovered."""
    service = SettlementService(db, settings)
    try:
        settlement = await service.reverse_settlement(
            settlement_id,
            reason=payload.reason if payload else None,
        )
    except SERVICE_ERRORS as e:
        await db.rollback()
        raise from_exception(e)
    return SettlementResponse.from_model(settlement)
