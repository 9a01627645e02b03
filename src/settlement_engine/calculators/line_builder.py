"""Settlement line item builder with idempotent hashing."""

from __future__ import annotations

import hashlib
import json
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from settlement_engine.calculators.types import LineCandidate, LineType

POSITIVE_TYPES = (LineType.EARNING, LineType.ACCESSORIAL, LineType.OTHER_EARNING)
NEGATIVE_TYPES = (LineType.RECOVERY, LineType.DEDUCTION, LineType.WITHHOLDING)


class LineItemBuilder:
    """Builds settlement lines with deterministic hashing.

    Sign conventions (non-negotiable):
    - EARNING, ACCESSORIAL, OTHER_EARNING: positive
    - RECOVERY, DEDUCTION, WITHHOLDING: negative

    Rounding:
    - USD to 2 decimals, half-up
    - Σ(lines) == gross - total deductions, with no rounding line needed
      because every component is rounded before it is summed
    """

    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (cents)."""
        return amount.quantize(LineItemBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def compute_line_hash(line: LineCandidate) -> str:
        """Compute deterministic hash for a line item."""
        canonical = line.to_canonical_dict()
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def create_earning_line(
        job_id: UUID,
        amount: Decimal,
        quantity: Decimal | None = None,
        rate: Decimal | None = None,
        explanation: str | None = None,
    ) -> LineCandidate:
        """Create a base pay line for a job (positive amount)."""
        return LineCandidate(
            line_type=LineType.EARNING,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            job_id=job_id,
            quantity=quantity,
            rate=rate,
            explanation=explanation,
        )

    @staticmethod
    def create_accessorial_line(
        job_id: UUID,
        name: str,
        amount: Decimal,
    ) -> LineCandidate:
        """Create a pass-through accessorial line (positive amount)."""
        return LineCandidate(
            line_type=LineType.ACCESSORIAL,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            job_id=job_id,
            category=name,
            explanation=f"Accessorial: {name}",
        )

    @staticmethod
    def create_other_earning_line(amount: Decimal, explanation: str) -> LineCandidate:
        """Create a non-job earning line (positive amount)."""
        return LineCandidate(
            line_type=LineType.OTHER_EARNING,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            explanation=explanation,
        )

    @staticmethod
    def create_recovery_line(
        obligation_id: UUID,
        category: str,
        amount: Decimal,
    ) -> LineCandidate:
        """Create an obligation recovery line (negative amount)."""
        return LineCandidate(
            line_type=LineType.RECOVERY,
            amount=-LineItemBuilder.round_to_cents(abs(amount)),
            obligation_id=obligation_id,
            category=category,
            explanation=f"Recovery: {category}",
        )

    @staticmethod
    def create_deduction_line(
        kind: str,
        amount: Decimal,
        explanation: str | None = None,
    ) -> LineCandidate:
        """Create a manual deduction line (negative amount)."""
        return LineCandidate(
            line_type=LineType.DEDUCTION,
            amount=-LineItemBuilder.round_to_cents(abs(amount)),
            category=kind,
            explanation=explanation,
        )

    @staticmethod
    def create_withholding_line(
        name: str,
        rate: Decimal,
        amount: Decimal,
    ) -> LineCandidate:
        """Create a statutory withholding line (negative amount)."""
        return LineCandidate(
            line_type=LineType.WITHHOLDING,
            amount=-LineItemBuilder.round_to_cents(abs(amount)),
            category=name,
            rate=rate,
            explanation=f"Withholding: {name}",
        )

    @staticmethod
    def calculate_balance_from_lines(lines: list[LineCandidate]) -> Decimal:
        """Signed sum of all lines: gross pay minus total deductions.

        Unlike net payable this is not clamped; a negative result is the
        carried debt of the settlement.
        """
        total = Decimal("0")
        for line in lines:
            total += line.amount
        return LineItemBuilder.round_to_cents(total)

    @staticmethod
    def calculate_gross_from_lines(lines: list[LineCandidate]) -> Decimal:
        """GROSS = Σ(EARNING) + Σ(ACCESSORIAL) + Σ(OTHER_EARNING)"""
        gross = Decimal("0")
        for line in lines:
            if line.line_type in POSITIVE_TYPES:
                gross += line.amount
        return LineItemBuilder.round_to_cents(gross)

    @staticmethod
    def validate_line_signs(lines: list[LineCandidate]) -> list[str]:
        """Validate that all line items have correct signs.

        Returns list of error messages (empty if all valid).
        """
        errors: list[str] = []

        for i, line in enumerate(lines):
            if line.line_type in POSITIVE_TYPES and line.amount < 0:
                errors.append(
                    f"Line {i} ({line.line_type.value}) has negative amount {line.amount}, expected positive"
                )
            elif line.line_type in NEGATIVE_TYPES and line.amount > 0:
                errors.append(
                    f"Line {i} ({line.line_type.value}) has positive amount {line.amount}, expected negative"
                )

        return errors

    @staticmethod
    def sum_by_type(lines: list[LineCandidate]) -> dict[LineType, Decimal]:
        """Sum line amounts by type."""
        totals: dict[LineType, Decimal] = {lt: Decimal("0") for lt in LineType}
        for line in lines:
            totals[line.line_type] += line.amount
        return totals
