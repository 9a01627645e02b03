"""Statutory withholding as configured percentage-of-gross components."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable
from uuid import UUID

from settlement_engine.calculators.types import (
    PayWarning,
    WarningCode,
    WithholdingComponent,
    WithholdingLine,
)

logger = logging.getLogger(__name__)


class WithholdingCalculator:
    """Applies each withholding component to gross pay.

    Rates are policy and come from configuration (see
    ``Settings.withholding_components``); nothing is hardcoded here.
    Each component is rounded to cents independently.
    """

    def __init__(self, components: Iterable[WithholdingComponent] = ()):
        self.components = tuple(components)

    def calculate(
        self, gross_pay: Decimal, payee_id: UUID | None = None
    ) -> tuple[list[WithholdingLine], list[PayWarning]]:
        """Return withholding lines for gross pay, plus any warnings."""
        if not self.components:
            message = f"No withholding components configured; withholding for payee {payee_id} = 0"
            logger.warning(message)
            return [], [
                PayWarning(
                    code=WarningCode.CONFIGURATION_MISSING,
                    message=message,
                    payee_id=payee_id,
                )
            ]

        lines: list[WithholdingLine] = []
        for component in self.components:
            lines.append(
                WithholdingLine(
                    name=component.name,
                    rate=component.rate,
                    amount=self._calculate_flat(gross_pay, component.rate),
                )
            )
        return lines, []

    @staticmethod
    def _calculate_flat(gross_pay: Decimal, rate: Decimal) -> Decimal:
        if gross_pay <= 0 or rate <= 0:
            return Decimal("0.00")
        return (gross_pay * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
