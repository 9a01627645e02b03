"""Per-job driver pay from a payee's pay profile."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from settlement_engine.calculators.types import (
    Job,
    JobPay,
    PayProfile,
    PayType,
    PayWarning,
    WarningCode,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class DriverPayCalculator:
    """Computes base pay and pass-through accessorial pay for a job.

    Base pay by profile type:
    - percentage: linehaul rate x normalized rate (65 -> 0.65)
    - per_distance: job distance x per-unit rate
    - flat_rate: the flat amount, regardless of job size

    Accessorials (detention, layover, lumper, TONU) pass through at 100%
    and are never subject to the percentage split.

    A missing profile or a zero/missing rate yields zero base pay and a
    CONFIGURATION_MISSING warning. There is no fallback rate.
    """

    @staticmethod
    def normalize_percentage(rate: Decimal) -> Decimal:
        """Treat rates above 1 as whole percentages."""
        if rate > 1:
            return rate / Decimal("100")
        return rate

    def resolve_rate(self, profile: PayProfile | None) -> Decimal | None:
        """Return the effective rate, or None when unusable."""
        if profile is None or profile.rate is None or profile.rate <= 0:
            return None
        if profile.pay_type == PayType.PERCENTAGE:
            return self.normalize_percentage(profile.rate)
        return profile.rate

    def compute_job_pay(self, job: Job, profile: PayProfile | None) -> JobPay:
        """Compute pay for one job. Never raises for configuration gaps."""
        warnings: list[PayWarning] = []
        accessorial_pay = sum(
            (self.round_to_cents(amount) for _, amount in job.accessorials.items()),
            Decimal("0.00"),
        )

        rate = self.resolve_rate(profile)
        if rate is None:
            message = self._missing_message(job, profile)
            logger.warning(message)
            warnings.append(
                PayWarning(
                    code=WarningCode.CONFIGURATION_MISSING,
                    message=message,
                    payee_id=job.payee_id,
                    job_id=job.job_id,
                )
            )
            base_pay = Decimal("0.00")
        else:
            base_pay = self._base_pay(job, profile.pay_type, rate)  # type: ignore[union-attr]

        return JobPay(
            job_id=job.job_id,
            base_pay=base_pay,
            accessorial_pay=accessorial_pay,
            warnings=tuple(warnings),
        )

    def _base_pay(self, job: Job, pay_type: PayType, rate: Decimal) -> Decimal:
        if pay_type == PayType.PERCENTAGE:
            amount = job.linehaul_rate * rate
        elif pay_type == PayType.PER_DISTANCE:
            amount = job.distance * rate
        else:
            amount = rate
        return self.round_to_cents(amount)

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)

    @staticmethod
    def _missing_message(job: Job, profile: PayProfile | None) -> str:
        if profile is None:
            return f"Payee {job.payee_id} has no pay profile; job {job.job_id} base pay = 0"
        return (
            f"Payee {job.payee_id} has no {profile.pay_type.value} rate configured; "
            f"job {job.job_id} base pay = 0"
        )
