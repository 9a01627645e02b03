"""Deduction taxonomy: classify raw cost records into fixed categories."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from settlement_engine.calculators.types import (
    CostRecord,
    DeductionCategory,
    Obligation,
    ObligationStatus,
    PaidBy,
)

# First match wins; order matters ("fuel insurance" is FUEL).
CATEGORY_KEYWORDS: tuple[tuple[DeductionCategory, tuple[str, ...]], ...] = (
    (DeductionCategory.FUEL, ("fuel",)),
    (DeductionCategory.INSURANCE, ("insurance",)),
    (DeductionCategory.MAINTENANCE, ("maintenance", "repair")),
)


@dataclass(frozen=True)
class Classification:
    """Category and reimbursability of a cost record."""

    category: DeductionCategory
    is_payee_reimbursable: bool


class DeductionTaxonomyResolver:
    """Total, side-effect free classification of cost records."""

    @staticmethod
    def categorize(cost_type: str | None) -> DeductionCategory:
        text = (cost_type or "").lower()
        for category, keywords in CATEGORY_KEYWORDS:
            if any(keyword in text for keyword in keywords):
                return category
        return DeductionCategory.OTHER

    @classmethod
    def classify(cls, record: CostRecord) -> Classification:
        """Classify a cost record. Never raises."""
        return Classification(
            category=cls.categorize(record.cost_type),
            is_payee_reimbursable=record.paid_by == PaidBy.EMPLOYER,
        )

    @classmethod
    def open_obligation(cls, record: CostRecord) -> Obligation | None:
        """Initialize a ledger-backed obligation from a cost record.

        Only employer-paid costs with a payee and a positive amount become
        obligations; anything else returns None.
        """
        classification = cls.classify(record)
        if not classification.is_payee_reimbursable:
            return None
        if record.payee_id is None or record.amount <= Decimal("0"):
            return None

        return Obligation(
            obligation_id=record.record_id,
            payee_id=record.payee_id,
            total_amount=record.amount,
            originated_at=record.incurred_at,
            category=classification.category,
            amount_recovered=Decimal("0.00"),
            status=ObligationStatus.ACTIVE,
            employer_paid=True,
            job_id=record.job_id,
        )
