"""Settlement calculation core (pure, synchronous)."""

from settlement_engine.calculators.aggregator import SettlementAggregator, summarize_settlements
from settlement_engine.calculators.ledger_allocator import ExpenseLedgerAllocator
from settlement_engine.calculators.line_builder import LineItemBuilder
from settlement_engine.calculators.pay_calculator import DriverPayCalculator
from settlement_engine.calculators.taxonomy import DeductionTaxonomyResolver
from settlement_engine.calculators.withholding import WithholdingCalculator

__all__ = [
    "SettlementAggregator",
    "summarize_settlements",
    "ExpenseLedgerAllocator",
    "LineItemBuilder",
    "DriverPayCalculator",
    "DeductionTaxonomyResolver",
    "WithholdingCalculator",
]
