"""Pydantic schemas for API request/response models.

Money is Decimal throughout and serializes to JSON as a decimal string.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from settlement_engine.calculators.types import (
    DeductionCategory,
    LineType,
    ManualDeduction,
    ManualDeductionKind,
    ObligationStatus,
    OtherEarning,
    PaidBy,
    SettlementDraft,
)
from settlement_engine.models import Settlement


# ============================================================================
# Settlement requests
# ============================================================================


class ManualDeductionIn(BaseModel):
    """Advance or third-party fee to deduct from this settlement."""

    kind: ManualDeductionKind
    amount: Decimal = Field(ge=0, decimal_places=2)
    description: str | None = None

    def to_domain(self) -> ManualDeduction:
        return ManualDeduction(kind=self.kind, amount=self.amount, description=self.description)


class OtherEarningIn(BaseModel):
    """Bonus or other non-job earning."""

    description: str
    amount: Decimal = Field(ge=0, decimal_places=2)

    def to_domain(self) -> OtherEarning:
        return OtherEarning(description=self.description, amount=self.amount)


class SettlementRequest(BaseModel):
    """Schema for previewing or creating a settlement."""

    payee_id: UUID
    job_ids: list[UUID] = []
    manual_deductions: list[ManualDeductionIn] = []
    other_earnings: list[OtherEarningIn] = []
    apply_withholding: bool | None = None


class ReverseRequest(BaseModel):
    """Schema for reversing a settlement."""

    reason: str | None = None


# ============================================================================
# Settlement responses
# ============================================================================


class LineItemResponse(BaseModel):
    """One signed settlement line."""

    model_config = ConfigDict(from_attributes=True)

    line_number: int | None = None
    line_type: LineType
    amount: Decimal
    job_id: UUID | None = None
    obligation_id: UUID | None = None
    category: str | None = None
    quantity: Decimal | None = None
    rate: Decimal | None = None
    explanation: str | None = None


class AllocationResponse(BaseModel):
    """Amount of one obligation recovered by a settlement."""

    model_config = ConfigDict(from_attributes=True)

    obligation_id: UUID
    category: DeductionCategory
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    status_after: ObligationStatus
    reversed_at: datetime | None = None


class WarningResponse(BaseModel):
    """Non-fatal calculation warning."""

    code: str
    message: str
    job_id: UUID | None = None


class SettlementTotals(BaseModel):
    """Amounts shared by previews and stored settlements."""

    payee_id: UUID
    calculation_id: UUID
    job_ids: list[UUID]
    gross_pay: Decimal
    other_earnings_total: Decimal
    advances: Decimal
    third_party_fees: Decimal
    recoveries: dict[str, Decimal]
    withholding: dict[str, Decimal]
    total_deductions: Decimal
    net_payable: Decimal
    carried_debt: Decimal
    total_distance: Decimal
    lines: list[LineItemResponse]
    allocations: list[AllocationResponse]
    warnings: list[WarningResponse]


class SettlementPreviewResponse(SettlementTotals):
    """Schema for a draft settlement (nothing persisted)."""

    effective_rate: Decimal
    computed_at: datetime

    @classmethod
    def from_draft(cls, draft: SettlementDraft, computed_at: datetime) -> "SettlementPreviewResponse":
        deductions = draft.deductions
        return cls(
            payee_id=draft.payee_id,
            calculation_id=draft.calculation_id,
            job_ids=draft.job_ids,
            gross_pay=draft.gross_pay,
            other_earnings_total=draft.other_earnings_total,
            advances=deductions.advances,
            third_party_fees=deductions.third_party_fees,
            recoveries={c.value: a for c, a in deductions.recoveries.items() if a > 0},
            withholding=dict(deductions.withholding),
            total_deductions=draft.total_deductions,
            net_payable=draft.net_payable,
            carried_debt=draft.carried_debt,
            total_distance=draft.total_distance,
            effective_rate=draft.effective_rate,
            lines=[
                LineItemResponse.model_validate(line, from_attributes=True)
                for line in draft.lines
            ],
            allocations=[
                AllocationResponse.model_validate(a, from_attributes=True)
                for a in draft.obligation_deltas
            ],
            warnings=[
                WarningResponse(code=w.code.value, message=w.message, job_id=w.job_id)
                for w in draft.warnings
            ],
            computed_at=computed_at,
        )


class SettlementResponse(SettlementTotals):
    """Schema for a stored settlement."""

    settlement_id: UUID
    settlement_number: str
    status: str
    finalized_at: datetime
    voided_at: datetime | None = None
    void_reason: str | None = None

    @classmethod
    def from_model(cls, settlement: Settlement) -> "SettlementResponse":
        return cls(
            settlement_id=settlement.settlement_id,
            settlement_number=settlement.settlement_number,
            status=settlement.status,
            payee_id=settlement.payee_id,
            calculation_id=settlement.calculation_id,
            job_ids=settlement.job_ids,
            gross_pay=settlement.gross_pay,
            other_earnings_total=settlement.other_earnings_total,
            advances=settlement.advances,
            third_party_fees=settlement.third_party_fees,
            recoveries={k: Decimal(v) for k, v in settlement.recoveries_json.items()},
            withholding={k: Decimal(v) for k, v in settlement.withholding_json.items()},
            total_deductions=settlement.total_deductions,
            net_payable=settlement.net_payable,
            carried_debt=settlement.carried_debt,
            total_distance=settlement.total_distance,
            lines=[LineItemResponse.model_validate(line) for line in settlement.lines],
            allocations=[AllocationResponse.model_validate(a) for a in settlement.allocations],
            warnings=[WarningResponse(**w) for w in settlement.warnings_json],
            finalized_at=settlement.finalized_at,
            voided_at=settlement.voided_at,
            void_reason=settlement.void_reason,
        )


class CommitResponse(BaseModel):
    """Schema for a create-settlement result."""

    settlement: SettlementResponse
    created: bool
    attempts: int


class SettlementSummaryResponse(BaseModel):
    """Totals over a payee's non-void settlements."""

    count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    total_carried_debt: Decimal
    average_net: Decimal


class SettlementListResponse(BaseModel):
    """Schema for listing a payee's settlements."""

    items: list[SettlementResponse]
    summary: SettlementSummaryResponse


# ============================================================================
# Job schemas
# ============================================================================


class JobResponse(BaseModel):
    """Schema for a job eligible for settlement."""

    model_config = ConfigDict(from_attributes=True)

    job_id: UUID
    payee_id: UUID
    reference: str | None = None
    linehaul_rate: Decimal
    distance: Decimal
    completed_at: datetime


class JobListResponse(BaseModel):
    items: list[JobResponse]
    total: int


# ============================================================================
# Obligation schemas
# ============================================================================


class ObligationCreate(BaseModel):
    """Cost record to open as a recoverable obligation."""

    record_id: UUID | None = None
    payee_id: UUID
    cost_type: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, decimal_places=2)
    paid_by: PaidBy = PaidBy.EMPLOYER
    incurred_at: datetime
    job_id: UUID | None = None
    description: str | None = None


class ObligationResponse(BaseModel):
    """Schema for an obligation ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    obligation_id: UUID
    payee_id: UUID
    job_id: UUID | None = None
    category: DeductionCategory
    cost_type: str | None = None
    description: str | None = None
    total_amount: Decimal
    amount_recovered: Decimal
    remaining_balance: Decimal
    status: ObligationStatus
    employer_paid: bool
    originated_at: datetime
    settlement_id: UUID | None = None
    version: int


class ObligationListResponse(BaseModel):
    """Schema for a payee's obligations and what is still recoverable."""

    payee_id: UUID
    outstanding_balance: Decimal
    items: list[ObligationResponse]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
