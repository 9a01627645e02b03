"""Obligation ledger models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_engine.calculators.types import (
    DeductionCategory,
    Obligation as ObligationData,
    ObligationStatus,
)
from settlement_engine.models.base import Base, Money, TimestampMixin


class Obligation(Base, TimestampMixin):
    """Recoverable cost incurred on a payee's behalf.

    remaining_balance is derived (total - recovered) so the two can never
    drift apart. ``version`` is the optimistic-concurrency token: every
    allocation, reversal or cancellation bumps it by compare-and-swap.
    """

    __tablename__ = "obligation"

    obligation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payee_id: Mapped[UUID] = mapped_column(
        ForeignKey("payee.payee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    job_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("job.job_id", ondelete="SET NULL"),
        nullable=True,
    )
    total_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    amount_recovered: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0.00")
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=ObligationStatus.ACTIVE.value
    )
    category: Mapped[str] = mapped_column(
        String, nullable=False, default=DeductionCategory.OTHER.value
    )
    cost_type: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    employer_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    originated_at: Mapped[datetime] = mapped_column(nullable=False)
    settlement_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("settlement.settlement_id", ondelete="SET NULL"),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="obligation_total_positive"),
        CheckConstraint(
            "amount_recovered >= 0 AND amount_recovered <= total_amount",
            name="obligation_recovered_bounds",
        ),
        CheckConstraint(
            "status IN ('active', 'paid', 'cancelled')",
            name="obligation_status_check",
        ),
        Index("obligation_payee_status_idx", "payee_id", "status"),
    )

    @property
    def remaining_balance(self) -> Decimal:
        return self.total_amount - self.amount_recovered

    def to_domain(self) -> ObligationData:
        return ObligationData(
            obligation_id=self.obligation_id,
            payee_id=self.payee_id,
            total_amount=self.total_amount,
            originated_at=self.originated_at,
            category=DeductionCategory(self.category),
            amount_recovered=self.amount_recovered,
            status=ObligationStatus(self.status),
            employer_paid=self.employer_paid,
            job_id=self.job_id,
            settlement_id=self.settlement_id,
            version=self.version,
        )


class ObligationAllocation(Base, TimestampMixin):
    """Amount of one obligation recovered by one settlement."""

    __tablename__ = "obligation_allocation"

    obligation_allocation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    settlement_id: Mapped[UUID] = mapped_column(
        ForeignKey("settlement.settlement_id", ondelete="RESTRICT"),
        nullable=False,
    )
    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("obligation.obligation_id", ondelete="RESTRICT"),
        nullable=False,
    )
    category: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    status_after: Mapped[str] = mapped_column(String, nullable=False)
    version_before: Mapped[int] = mapped_column(Integer, nullable=False)
    version_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reversed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="obligation_allocation_amount_positive"),
        CheckConstraint(
            "balance_after = balance_before - amount",
            name="obligation_allocation_balance_check",
        ),
        Index("obligation_allocation_obligation_idx", "obligation_id", "version_after"),
    )
