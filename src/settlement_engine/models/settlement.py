"""Settlement and settlement line item models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_engine.models.base import Base, ExactDecimal, Money, TimestampMixin
from settlement_engine.models.ledger import ObligationAllocation


class Settlement(Base, TimestampMixin):
    """Finalized pay record for one payee over one batch of jobs.

    Immutable once finalized; the only way back is a reversal, which marks
    it void and restores the obligation balances it recovered.
    """

    __tablename__ = "settlement"

    settlement_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    settlement_number: Mapped[str] = mapped_column(String, nullable=False)
    calculation_id: Mapped[UUID] = mapped_column(nullable=False)
    payee_id: Mapped[UUID] = mapped_column(
        ForeignKey("payee.payee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="finalized")

    job_ids_json: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    gross_pay: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    other_earnings_total: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0.00")
    )
    advances: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0.00"))
    third_party_fees: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0.00")
    )
    total_recoveries: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0.00")
    )
    total_withholding: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0.00")
    )
    total_deductions: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    net_payable: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    carried_debt: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    total_distance: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    # category -> amount as decimal string
    recoveries_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # component -> amount as decimal string
    withholding_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    warnings_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    finalized_at: Mapped[datetime] = mapped_column(nullable=False)
    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("settlement_number", name="settlement_number_unique"),
        CheckConstraint("status IN ('finalized', 'void')", name="settlement_status_check"),
        CheckConstraint(
            "net_payable >= 0 AND carried_debt >= 0",
            name="settlement_non_negative_check",
        ),
        CheckConstraint(
            "net_payable - carried_debt = gross_pay - total_deductions",
            name="settlement_balance_check",
        ),
        Index("settlement_payee_idx", "payee_id", "finalized_at"),
        Index("settlement_calculation_idx", "calculation_id"),
    )

    # Relationships
    lines: Mapped[list[SettlementLineItem]] = relationship(
        back_populates="settlement",
        lazy="selectin",
        order_by="SettlementLineItem.line_number",
    )
    allocations: Mapped[list[ObligationAllocation]] = relationship(
        lazy="selectin",
        order_by=ObligationAllocation.version_after,
    )

    @property
    def job_ids(self) -> list[UUID]:
        return [UUID(j) for j in self.job_ids_json]


class SettlementLineItem(Base, TimestampMixin):
    """One signed line of a settlement."""

    __tablename__ = "settlement_line_item"

    settlement_line_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    settlement_id: Mapped[UUID] = mapped_column(
        ForeignKey("settlement.settlement_id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    line_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    job_id: Mapped[UUID | None] = mapped_column(nullable=True)
    obligation_id: Mapped[UUID | None] = mapped_column(nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(ExactDecimal(), nullable=True)
    rate: Mapped[Decimal | None] = mapped_column(ExactDecimal(), nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    line_hash: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("settlement_id", "line_number", name="settlement_line_number_unique"),
        CheckConstraint(
            "line_type IN ('EARNING', 'ACCESSORIAL', 'OTHER_EARNING', 'RECOVERY', "
            "'DEDUCTION', 'WITHHOLDING')",
            name="settlement_line_type_check",
        ),
    )

    settlement: Mapped[Settlement] = relationship(back_populates="lines")
