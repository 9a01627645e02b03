"""ORM models."""

from settlement_engine.models.base import Base, ExactDecimal, Money, TimestampMixin, UTCDateTime
from settlement_engine.models.ledger import Obligation, ObligationAllocation
from settlement_engine.models.payee import Job, Payee
from settlement_engine.models.settlement import Settlement, SettlementLineItem

__all__ = [
    "Base",
    "ExactDecimal",
    "Money",
    "TimestampMixin",
    "UTCDateTime",
    "Obligation",
    "ObligationAllocation",
    "Job",
    "Payee",
    "Settlement",
    "SettlementLineItem",
]
