"""Payee and job models (read-side collaborators of the settlement core)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_engine.calculators.types import (
    Accessorials,
    Job as JobData,
    Payee as PayeeData,
    PayeeClassification,
    PayProfile,
    PayType,
)
from settlement_engine.models.base import Base, ExactDecimal, Money, TimestampMixin


class Payee(Base, TimestampMixin):
    """Driver or contracted carrier with its pay profile."""

    __tablename__ = "payee"

    payee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    classification: Mapped[str] = mapped_column(
        String, nullable=False, default=PayeeClassification.CONTRACTOR.value
    )
    pay_type: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_rate: Mapped[Decimal | None] = mapped_column(ExactDecimal(), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "classification IN ('contractor', 'statutory_employee')",
            name="payee_classification_check",
        ),
        CheckConstraint(
            "pay_type IS NULL OR pay_type IN ('percentage', 'per_distance', 'flat_rate')",
            name="payee_pay_type_check",
        ),
    )

    def to_domain(self) -> PayeeData:
        profile = None
        if self.pay_type is not None:
            profile = PayProfile(pay_type=PayType(self.pay_type), rate=self.pay_rate)
        return PayeeData(
            payee_id=self.payee_id,
            name=self.name,
            classification=PayeeClassification(self.classification),
            pay_profile=profile,
        )


class Job(Base, TimestampMixin):
    """Completed movement. Financial fields are locked once delivered."""

    __tablename__ = "job"

    job_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payee_id: Mapped[UUID] = mapped_column(
        ForeignKey("payee.payee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    reference: Mapped[str | None] = mapped_column(String, nullable=True)
    linehaul_rate: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    distance: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False, default=Decimal("0"))
    detention_pay: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    layover_pay: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    lumper_pay: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    tonu_pay: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(nullable=False)
    settlement_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("settlement.settlement_id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        Index("job_payee_completed_idx", "payee_id", "completed_at"),
    )

    def to_domain(self) -> JobData:
        return JobData(
            job_id=self.job_id,
            payee_id=self.payee_id,
            linehaul_rate=self.linehaul_rate,
            distance=self.distance,
            completed_at=self.completed_at,
            accessorials=Accessorials(
                detention=self.detention_pay,
                layover=self.layover_pay,
                lumper=self.lumper_pay,
                tonu=self.tonu_pay,
            ),
            reference=self.reference,
            settlement_id=self.settlement_id,
        )
