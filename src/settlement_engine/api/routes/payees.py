"""Payee-scoped read endpoints: obligations, settlements and eligible jobs."""

from datetime import datetime, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query

from settlement_engine.api.dependencies import AppSettings, DbSession
from settlement_engine.api.errors import SERVICE_ERRORS, from_exception
from settlement_engine.api.schemas import (
    ErrorResponse,
    JobListResponse,
    JobResponse,
    ObligationListResponse,
    ObligationResponse,
    SettlementListResponse,
    SettlementResponse,
    SettlementSummaryResponse,
)
from settlement_engine.calculators.aggregator import eligible_jobs, summarize_settlements
from settlement_engine.services.ledger_service import LedgerService
from settlement_engine.services.repositories import SnapshotLoader
from settlement_engine.services.settlement_service import SettlementService

router = APIRouter(prefix="/payees", tags=["payees"])


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.get(
    "/{payee_id}/obligations",
    response_model=ObligationListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_obligations(
    db: DbSession,
    payee_id: Annotated[UUID, Path()],
    include_closed: Annotated[bool, Query()] = False,
) -> ObligationListResponse:
    """List a payee's obligations, oldest first, with the outstanding balance."""
    ledger = LedgerService(db)
    try:
        await SnapshotLoader(db).load_payee(payee_id)
        _, outstanding = await ledger.outstanding(payee_id)
    except SERVICE_ERRORS as e:
        raise from_exception(e)

    rows = await ledger.repository.list_for_payee(payee_id, include_closed=include_closed)
    return ObligationListResponse(
        payee_id=payee_id,
        outstanding_balance=outstanding,
        items=[ObligationResponse.model_validate(row) for row in rows],
    )


@router.get(
    "/{payee_id}/settlements",
    response_model=SettlementListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_settlements(
    db: DbSession,
    settings: AppSettings,
    payee_id: Annotated[UUID, Path()],
) -> SettlementListResponse:
    """List a payee's settlements with totals over the non-void ones."""
    try:
        await SnapshotLoader(db).load_payee(payee_id)
    except SERVICE_ERRORS as e:
        raise from_exception(e)

    settlements = await SettlementService(db, settings).list_settlements(payee_id)
    summary = summarize_settlements(settlements)
    return SettlementListResponse(
        items=[SettlementResponse.from_model(s) for s in settlements],
        summary=SettlementSummaryResponse(
            count=summary.count,
            total_gross=summary.total_gross,
            total_deductions=summary.total_deductions,
            total_net=summary.total_net,
            total_carried_debt=summary.total_carried_debt,
            average_net=summary.average_net,
        ),
    )


@router.get(
    "/{payee_id}/eligible-jobs",
    response_model=JobListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_eligible_jobs(
    db: DbSession,
    payee_id: Annotated[UUID, Path()],
    period_start: Annotated[datetime, Query()],
    period_end: Annotated[datetime, Query()],
) -> JobListResponse:
    """Jobs completed in the period that no active settlement has paid yet."""
    period_start, period_end = _as_utc(period_start), _as_utc(period_end)
    loader = SnapshotLoader(db)
    try:
        await loader.load_payee(payee_id)
    except SERVICE_ERRORS as e:
        raise from_exception(e)

    jobs = await loader.load_jobs_for_period(payee_id, period_start, period_end)
    selected = eligible_jobs(jobs, payee_id, period_start, period_end)
    return JobListResponse(
        items=[JobResponse.model_validate(j, from_attributes=True) for j in selected],
        total=len(selected),
    )
