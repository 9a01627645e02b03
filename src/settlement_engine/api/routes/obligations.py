"""Obligation ledger endpoints."""

from typing import Annotated
from uuid import UUID, uuid4

from fastapi import APIRouter, Path, status

from settlement_engine.api.dependencies import DbSession
from settlement_engine.api.errors import SERVICE_ERRORS, APIError, from_exception
from settlement_engine.api.schemas import ErrorResponse, ObligationCreate, ObligationResponse
from settlement_engine.calculators.types import CostRecord
from settlement_engine.services.ledger_service import LedgerService
from settlement_engine.services.repositories import SnapshotLoader

router = APIRouter(prefix="/obligations", tags=["obligations"])


@router.post(
    "",
    response_model=ObligationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def open_obligation(
    db: DbSession,
    payload: ObligationCreate,
) -> ObligationResponse:
    """Open a recoverable obligation from an employer-paid cost record."""
    try:
        await SnapshotLoader(db).load_payee(payload.payee_id)
    except SERVICE_ERRORS as e:
        raise from_exception(e)

    record = CostRecord(
        record_id=payload.record_id or uuid4(),
        cost_type=payload.cost_type,
        amount=payload.amount,
        paid_by=payload.paid_by,
        incurred_at=payload.incurred_at,
        payee_id=payload.payee_id,
        job_id=payload.job_id,
        description=payload.description,
    )
    obligation = await LedgerService(db).open_obligation(record)
    if obligation is None:
        await db.rollback()
        raise APIError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Cost record {record.record_id} was not paid by the employer; nothing to recover",
            "NOT_REIMBURSABLE",
        )

    await db.commit()
    return ObligationResponse.model_validate(obligation)


@router.post(
    "/{obligation_id}/cancel",
    response_model=ObligationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_obligation(
    db: DbSession,
    obligation_id: Annotated[UUID, Path()],
) -> ObligationResponse:
    """Cancel an obligation nothing has been recovered against."""
    try:
        obligation = await LedgerService(db).cancel_obligation(obligation_id)
    except SERVICE_ERRORS as e:
        await db.rollback()
        raise from_exception(e)

    await db.commit()
    return ObligationResponse.model_validate(obligation)
