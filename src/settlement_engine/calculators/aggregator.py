"""Settlement aggregator - main orchestrator of the pure calculation."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID

from settlement_engine.calculators.ledger_allocator import ExpenseLedgerAllocator
from settlement_engine.calculators.line_builder import LineItemBuilder
from settlement_engine.calculators.pay_calculator import DriverPayCalculator
from settlement_engine.calculators.types import (
    ZERO,
    AllocationResult,
    DeductionBreakdown,
    DeductionCategory,
    ErrorCode,
    Job,
    JobPay,
    LedgerSnapshot,
    LineCandidate,
    ManualDeduction,
    ManualDeductionKind,
    OtherEarning,
    Payee,
    PayType,
    PayWarning,
    SettlementDraft,
    SettlementError,
    SettlementResult,
    WithholdingComponent,
    WithholdingLine,
)
from settlement_engine.calculators.withholding import WithholdingCalculator
from settlement_engine.config import Settings, get_settings


@dataclass(frozen=True)
class SettlementSummary:
    """Totals over a set of settlements."""

    count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    total_carried_debt: Decimal
    average_net: Decimal


class SettlementAggregator:
    """Builds a draft settlement for one payee over a batch of jobs.

    Calculation pipeline (stable order):
    1) Reject the batch if any job belongs to another payee or is already
       referenced by an active settlement
    2) Gross pay = Σ job pay (base + pass-through accessorials) + other earnings
    3) Statutory withholding, percentage-of-gross per configured component
    4) Obligation recoveries, oldest first, from gross pay
    5) Manual deductions (advances, third-party fees)
    6) net payable = max(0, gross - deductions); carried debt = max(0, deductions - gross)
    7) Validate Σ(lines) = gross - deductions

    Pure: no I/O; the returned draft carries the obligation deltas that the
    caller commits together with the settlement.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        pay_calculator: DriverPayCalculator | None = None,
        allocator: ExpenseLedgerAllocator | None = None,
        withholding_calculator: WithholdingCalculator | None = None,
    ):
        self.settings = settings or get_settings()
        self.pay_calculator = pay_calculator or DriverPayCalculator()
        self.allocator = allocator or ExpenseLedgerAllocator()
        self.withholding_calculator = withholding_calculator or WithholdingCalculator(
            WithholdingComponent(name=name, rate=rate)
            for name, rate in self.settings.withholding_components
        )

    def build_settlement(
        self,
        payee: Payee,
        jobs: Sequence[Job],
        snapshot: LedgerSnapshot,
        manual_deductions: Iterable[ManualDeduction] = (),
        apply_withholding: bool | None = None,
        other_earnings: Iterable[OtherEarning] = (),
    ) -> SettlementResult:
        """Compute a draft settlement. Failures come back as a typed error."""
        manual = list(manual_deductions)
        extras = list(other_earnings)
        self._validate_amounts(manual, extras)

        # 1) Batch validation
        error = self._validate_jobs(payee, jobs)
        if error is not None:
            return SettlementResult(error=error)

        if snapshot.payee_id != payee.payee_id:
            raise ValueError(
                f"Ledger snapshot is for payee {snapshot.payee_id}, not {payee.payee_id}"
            )

        ordered_jobs = sorted(jobs, key=lambda j: (j.completed_at, str(j.job_id)))
        warnings: list[PayWarning] = []
        lines: list[LineCandidate] = []

        # 2) Gross pay
        job_pay: list[JobPay] = []
        for job in ordered_jobs:
            pay = self.pay_calculator.compute_job_pay(job, payee.pay_profile)
            job_pay.append(pay)
            warnings.extend(pay.warnings)
            lines.extend(self._job_lines(job, pay, payee))

        other_total = ZERO
        for earning in extras:
            line = LineItemBuilder.create_other_earning_line(earning.amount, earning.description)
            other_total += line.amount
            lines.append(line)

        gross_pay = sum((p.total for p in job_pay), ZERO) + other_total

        # 3) Withholding
        withholding_applies = (
            payee.is_statutory_employee if apply_withholding is None else apply_withholding
        )
        withholding_lines: list[WithholdingLine] = []
        if withholding_applies:
            withholding_lines, withholding_warnings = self.withholding_calculator.calculate(
                gross_pay, payee.payee_id
            )
            warnings.extend(withholding_warnings)

        # 4) Obligation recoveries
        if withholding_applies and not self.settings.recover_obligations_with_withholding:
            allocation = AllocationResult(
                total_allocated=ZERO,
                allocations=(),
                breakdown_by_category={c: ZERO for c in DeductionCategory},
                remaining_available=gross_pay,
            )
        else:
            allocation = self.allocator.allocate(snapshot, gross_pay)

        for alloc in allocation.allocations:
            lines.append(
                LineItemBuilder.create_recovery_line(
                    alloc.obligation_id, alloc.category.value, alloc.amount
                )
            )

        # 5) Manual deductions
        deductions = DeductionBreakdown(
            recoveries=dict(allocation.breakdown_by_category),
            withholding={w.name: w.amount for w in withholding_lines},
        )
        for deduction in manual:
            line = LineItemBuilder.create_deduction_line(
                deduction.kind.value, deduction.amount, deduction.description
            )
            if deduction.kind == ManualDeductionKind.ADVANCE:
                deductions.advances += -line.amount
            else:
                deductions.third_party_fees += -line.amount
            lines.append(line)

        for w in withholding_lines:
            lines.append(LineItemBuilder.create_withholding_line(w.name, w.rate, w.amount))

        # 6) Net payable and carried debt from the same unclamped difference
        difference = gross_pay - deductions.total
        net_payable = max(ZERO, difference)
        carried_debt = max(ZERO, -difference)

        # 7) Line integrity
        sign_errors = LineItemBuilder.validate_line_signs(lines)
        if sign_errors:
            raise ValueError("; ".join(sign_errors))
        line_balance = LineItemBuilder.calculate_balance_from_lines(lines)
        if line_balance != difference:
            raise ValueError(
                f"Settlement lines sum to {line_balance}, expected {difference}"
            )

        total_distance = sum((j.distance for j in ordered_jobs), Decimal("0"))
        calculation_id = self._generate_calculation_id(
            payee.payee_id,
            self._compute_inputs_fingerprint(
                self._inputs_data(payee, ordered_jobs, snapshot, manual, extras, withholding_applies)
            ),
            self._compute_rules_fingerprint(
                [f"{w.name}={w.rate}" for w in self.withholding_calculator.components]
                + [
                    "recover_obligations_with_withholding="
                    f"{self.settings.recover_obligations_with_withholding}"
                ]
            ),
        )

        draft = SettlementDraft(
            calculation_id=calculation_id,
            payee_id=payee.payee_id,
            job_ids=[j.job_id for j in ordered_jobs],
            job_pay=job_pay,
            gross_pay=gross_pay,
            other_earnings_total=other_total,
            deductions=deductions,
            allocation=allocation,
            withholding_lines=withholding_lines,
            net_payable=net_payable,
            carried_debt=carried_debt,
            total_distance=total_distance,
            lines=lines,
            snapshot_versions=snapshot.versions,
            warnings=warnings,
        )
        return SettlementResult(draft=draft)

    # === Validation ===

    @staticmethod
    def _validate_jobs(payee: Payee, jobs: Sequence[Job]) -> SettlementError | None:
        foreign = tuple(j.job_id for j in jobs if j.payee_id != payee.payee_id)
        if foreign:
            return SettlementError(
                code=ErrorCode.PAYEE_MISMATCH,
                message=(
                    f"{len(foreign)} job(s) belong to a payee other than {payee.payee_id}; "
                    "batch rejected"
                ),
                job_ids=foreign,
            )

        settled = tuple(j.job_id for j in jobs if j.settlement_id is not None)
        if settled:
            return SettlementError(
                code=ErrorCode.JOB_ALREADY_SETTLED,
                message=f"{len(settled)} job(s) are already referenced by an active settlement",
                job_ids=settled,
            )
        return None

    @staticmethod
    def _validate_amounts(manual: list[ManualDeduction], extras: list[OtherEarning]) -> None:
        for deduction in manual:
            if deduction.amount < 0:
                raise ValueError(f"Manual deduction amount must not be negative: {deduction.amount}")
        for earning in extras:
            if earning.amount < 0:
                raise ValueError(f"Other earning amount must not be negative: {earning.amount}")

    # === Lines ===

    @staticmethod
    def _job_lines(job: Job, pay: JobPay, payee: Payee) -> list[LineCandidate]:
        lines: list[LineCandidate] = []
        profile = payee.pay_profile
        label = job.reference or str(job.job_id)

        if pay.base_pay > 0 and profile is not None:
            if profile.pay_type == PayType.PER_DISTANCE:
                quantity = job.distance
            elif profile.pay_type == PayType.PERCENTAGE:
                quantity = job.linehaul_rate
            else:
                quantity = None
            lines.append(
                LineItemBuilder.create_earning_line(
                    job_id=job.job_id,
                    amount=pay.base_pay,
                    quantity=quantity,
                    rate=profile.rate,
                    explanation=f"{label}: {profile.pay_type.value} @ {profile.rate}",
                )
            )

        for name, amount in job.accessorials.items():
            lines.append(LineItemBuilder.create_accessorial_line(job.job_id, name, amount))
        return lines

    # === Fingerprints ===

    @staticmethod
    def _inputs_data(
        payee: Payee,
        jobs: Sequence[Job],
        snapshot: LedgerSnapshot,
        manual: list[ManualDeduction],
        extras: list[OtherEarning],
        withholding_applies: bool,
    ) -> dict[str, Any]:
        profile = payee.pay_profile
        return {
            "profile": (
                {"pay_type": profile.pay_type.value, "rate": str(profile.rate)}
                if profile
                else None
            ),
            "jobs": [
                {
                    "id": str(j.job_id),
                    "linehaul_rate": str(j.linehaul_rate),
                    "distance": str(j.distance),
                    "accessorials": {name: str(amount) for name, amount in j.accessorials.items()},
                }
                for j in jobs
            ],
            "obligations": sorted(
                f"{obligation_id}:{version}"
                for obligation_id, version in snapshot.versions.items()
            ),
            "manual": [{"kind": d.kind.value, "amount": str(d.amount)} for d in manual],
            "other": [{"description": e.description, "amount": str(e.amount)} for e in extras],
            "withholding": withholding_applies,
        }

    def _generate_calculation_id(
        self,
        payee_id: UUID,
        inputs_fingerprint: str,
        rules_fingerprint: str,
    ) -> UUID:
        """Generate deterministic calculation ID."""
        data = {
            "payee_id": str(payee_id),
            "engine_version": self.settings.engine_version,
            "inputs_fingerprint": inputs_fingerprint,
            "rules_fingerprint": rules_fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])

    def _compute_inputs_fingerprint(self, inputs_data: dict[str, Any]) -> str:
        """Compute fingerprint of all inputs used in calculation."""
        json_str = json.dumps(inputs_data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    def _compute_rules_fingerprint(self, rules: list[str]) -> str:
        """Compute fingerprint of the withholding and recovery policy used."""
        json_str = json.dumps(sorted(rules))
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]


def eligible_jobs(
    jobs: Iterable[Job],
    payee_id: UUID,
    period_start: datetime,
    period_end: datetime,
) -> list[Job]:
    """Jobs of a payee completed within the period and not yet settled."""
    selected = [
        j
        for j in jobs
        if j.payee_id == payee_id
        and j.settlement_id is None
        and period_start <= j.completed_at <= period_end
    ]
    return sorted(selected, key=lambda j: (j.completed_at, str(j.job_id)))


def summarize_settlements(settlements: Iterable[Any]) -> SettlementSummary:
    """Summarize settlements (drafts or stored rows); void ones are skipped.

    Accepts any object exposing gross_pay, total_deductions, net_payable and
    carried_debt, plus an optional status.
    """
    count = 0
    gross = deductions = net = debt = ZERO
    for s in settlements:
        if getattr(s, "status", None) == "void":
            continue
        count += 1
        gross += s.gross_pay
        deductions += s.total_deductions
        net += s.net_payable
        debt += s.carried_debt

    average = LineItemBuilder.round_to_cents(net / count) if count else ZERO
    return SettlementSummary(
        count=count,
        total_gross=gross,
        total_deductions=deductions,
        total_net=net,
        total_carried_debt=debt,
        average_net=average,
    )
