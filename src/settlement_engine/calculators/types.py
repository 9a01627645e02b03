"""Type definitions for the settlement calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ZERO = Decimal("0.00")
CENTS = Decimal("0.01")


class PayType(str, Enum):
    """How a payee's base pay is derived from a job."""

    PERCENTAGE = "percentage"
    PER_DISTANCE = "per_distance"
    FLAT_RATE = "flat_rate"


class PayeeClassification(str, Enum):
    """Employment classification of a payee."""

    CONTRACTOR = "contractor"
    STATUTORY_EMPLOYEE = "statutory_employee"


class ObligationStatus(str, Enum):
    """Ledger status of an obligation."""

    ACTIVE = "active"
    PAID = "paid"
    CANCELLED = "cancelled"


class DeductionCategory(str, Enum):
    """Fixed deduction categories."""

    FUEL = "fuel"
    INSURANCE = "insurance"
    MAINTENANCE = "maintenance"
    OTHER = "other"


class PaidBy(str, Enum):
    """Who paid a cost up front."""

    EMPLOYER = "employer"
    PAYEE = "payee"


class ManualDeductionKind(str, Enum):
    """Deductions entered per settlement rather than tracked on the ledger."""

    ADVANCE = "advance"
    THIRD_PARTY_FEE = "third_party_fee"


class LineType(str, Enum):
    """Settlement line item types."""

    EARNING = "EARNING"
    ACCESSORIAL = "ACCESSORIAL"
    OTHER_EARNING = "OTHER_EARNING"
    RECOVERY = "RECOVERY"
    DEDUCTION = "DEDUCTION"
    WITHHOLDING = "WITHHOLDING"


class WarningCode(str, Enum):
    """Non-fatal conditions surfaced on a draft."""

    CONFIGURATION_MISSING = "CONFIGURATION_MISSING"


class ErrorCode(str, Enum):
    """Conditions that prevent a settlement from being computed."""

    PAYEE_MISMATCH = "PAYEE_MISMATCH"
    JOB_ALREADY_SETTLED = "JOB_ALREADY_SETTLED"


# ===== Inputs =====


@dataclass(frozen=True)
class Accessorials:
    """Payee-owed accessorial amounts on a job. None means absent."""

    detention: Decimal | None = None
    layover: Decimal | None = None
    lumper: Decimal | None = None
    tonu: Decimal | None = None

    def items(self) -> list[tuple[str, Decimal]]:
        """Present, positive accessorials in a stable order."""
        pairs = [
            ("detention", self.detention),
            ("layover", self.layover),
            ("lumper", self.lumper),
            ("tonu", self.tonu),
        ]
        return [(name, amount) for name, amount in pairs if amount is not None and amount > 0]


@dataclass(frozen=True)
class Job:
    """One completed movement, as read from the job source."""

    job_id: UUID
    payee_id: UUID
    linehaul_rate: Decimal
    distance: Decimal
    completed_at: datetime
    accessorials: Accessorials = field(default_factory=Accessorials)
    reference: str | None = None
    settlement_id: UUID | None = None  # Active settlement referencing this job


@dataclass(frozen=True)
class PayProfile:
    """Pay configuration of a payee."""

    pay_type: PayType
    rate: Decimal | None = None


@dataclass(frozen=True)
class Payee:
    """A driver or contracted carrier."""

    payee_id: UUID
    name: str
    classification: PayeeClassification = PayeeClassification.CONTRACTOR
    pay_profile: PayProfile | None = None

    @property
    def is_statutory_employee(self) -> bool:
        return self.classification == PayeeClassification.STATUTORY_EMPLOYEE


@dataclass(frozen=True)
class CostRecord:
    """A raw cost incurred on behalf of a payee."""

    record_id: UUID
    cost_type: str
    amount: Decimal
    paid_by: PaidBy
    incurred_at: datetime
    payee_id: UUID | None = None
    job_id: UUID | None = None
    description: str | None = None


@dataclass(frozen=True)
class ManualDeduction:
    """A per-settlement deduction not modeled as an obligation."""

    kind: ManualDeductionKind
    amount: Decimal
    description: str | None = None


@dataclass(frozen=True)
class OtherEarning:
    """Non-job earning added to gross pay (bonus, reimbursement)."""

    description: str
    amount: Decimal


@dataclass(frozen=True)
class WithholdingComponent:
    """One percentage-of-gross statutory withholding component."""

    name: str
    rate: Decimal  # As a fraction, e.g. 0.062


# ===== Ledger =====


@dataclass(frozen=True)
class Obligation:
    """A recoverable cost owed back to the employer by a payee.

    Floating obligations have no job_id; allocation treats both kinds alike.
    """

    obligation_id: UUID
    payee_id: UUID
    total_amount: Decimal
    originated_at: datetime
    category: DeductionCategory
    amount_recovered: Decimal = ZERO
    status: ObligationStatus = ObligationStatus.ACTIVE
    employer_paid: bool = True
    job_id: UUID | None = None
    settlement_id: UUID | None = None  # Finalized settlement this obligation is locked to
    version: int = 1

    def __post_init__(self) -> None:
        """Reject sub-cent amounts so every recovery lands on whole cents."""
        for name in ("total_amount", "amount_recovered"):
            amount = getattr(self, name)
            if amount != amount.quantize(CENTS):
                raise ValueError(f"{name} must be whole cents, got {amount}")

    @property
    def remaining_balance(self) -> Decimal:
        return self.total_amount - self.amount_recovered

    @property
    def is_floating(self) -> bool:
        return self.job_id is None


@dataclass(frozen=True)
class LedgerSnapshot:
    """Versioned read of a payee's outstanding obligations."""

    payee_id: UUID
    obligations: tuple[Obligation, ...] = ()
    read_at: datetime | None = None

    @property
    def versions(self) -> dict[UUID, int]:
        """Version token per obligation, threaded through to commit."""
        return {o.obligation_id: o.version for o in self.obligations}


@dataclass(frozen=True)
class ObligationAllocation:
    """Recovery of part of one obligation by one settlement."""

    obligation_id: UUID
    category: DeductionCategory
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    status_after: ObligationStatus
    expected_version: int

    @property
    def new_version(self) -> int:
        return self.expected_version + 1


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of allocating available pay against a ledger snapshot."""

    total_allocated: Decimal
    allocations: tuple[ObligationAllocation, ...]
    breakdown_by_category: dict[DeductionCategory, Decimal]
    remaining_available: Decimal


# ===== Outputs =====


@dataclass(frozen=True)
class PayWarning:
    """Non-fatal condition surfaced during calculation."""

    code: WarningCode
    message: str
    payee_id: UUID | None = None
    job_id: UUID | None = None


@dataclass(frozen=True)
class JobPay:
    """Pay computed for one job."""

    job_id: UUID
    base_pay: Decimal
    accessorial_pay: Decimal
    warnings: tuple[PayWarning, ...] = ()

    @property
    def total(self) -> Decimal:
        return self.base_pay + self.accessorial_pay


@dataclass(frozen=True)
class WithholdingLine:
    """Amount withheld for one statutory component."""

    name: str
    rate: Decimal
    amount: Decimal


@dataclass
class LineCandidate:
    """A candidate settlement line before persistence."""

    line_type: LineType
    amount: Decimal  # Signed: earnings positive, deductions negative

    job_id: UUID | None = None
    obligation_id: UUID | None = None
    category: str | None = None
    quantity: Decimal | None = None
    rate: Decimal | None = None
    explanation: str | None = None

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "line_type": self.line_type.value,
            "job_id": str(self.job_id) if self.job_id else None,
            "obligation_id": str(self.obligation_id) if self.obligation_id else None,
            "category": self.category,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "rate": str(self.rate) if self.rate is not None else None,
            "amount": str(self.amount),
        }


@dataclass
class DeductionBreakdown:
    """Itemized deductions of one settlement."""

    advances: Decimal = ZERO
    third_party_fees: Decimal = ZERO
    recoveries: dict[DeductionCategory, Decimal] = field(
        default_factory=lambda: {c: ZERO for c in DeductionCategory}
    )
    withholding: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_manual(self) -> Decimal:
        return self.advances + self.third_party_fees

    @property
    def total_recoveries(self) -> Decimal:
        return sum(self.recoveries.values(), ZERO)

    @property
    def total_withholding(self) -> Decimal:
        return sum(self.withholding.values(), ZERO)

    @property
    def total(self) -> Decimal:
        return self.total_recoveries + self.total_manual + self.total_withholding


@dataclass
class SettlementDraft:
    """Computed, uncommitted settlement plus the ledger mutations it depends on."""

    calculation_id: UUID
    payee_id: UUID
    job_ids: list[UUID]
    job_pay: list[JobPay]
    gross_pay: Decimal
    other_earnings_total: Decimal
    deductions: DeductionBreakdown
    allocation: AllocationResult
    withholding_lines: list[WithholdingLine]
    net_payable: Decimal
    carried_debt: Decimal
    total_distance: Decimal
    lines: list[LineCandidate]
    snapshot_versions: dict[UUID, int]
    warnings: list[PayWarning] = field(default_factory=list)

    @property
    def total_deductions(self) -> Decimal:
        return self.deductions.total

    @property
    def obligation_deltas(self) -> tuple[ObligationAllocation, ...]:
        return self.allocation.allocations

    @property
    def effective_rate(self) -> Decimal:
        """Gross pay per unit distance (0 when no distance)."""
        if self.total_distance <= 0:
            return ZERO
        return (self.gross_pay / self.total_distance).quantize(Decimal("0.0001"))


@dataclass(frozen=True)
class SettlementError:
    """Why a settlement could not be computed."""

    code: ErrorCode
    message: str
    job_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class SettlementResult:
    """Typed outcome of build_settlement: either a draft or an error."""

    draft: SettlementDraft | None = None
    error: SettlementError | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.draft is not None
