"""Property-based tests for settlement and ledger invariants.

These generate random ledgers and job batches and check that the money
always adds up: allocation never over-recovers, lines reconcile to
gross minus deductions, and recovered amounts leave the ledger exactly.
"""

from __future__ import annotations

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from settlement_engine.calculators.aggregator import SettlementAggregator
from settlement_engine.calculators.ledger_allocator import ExpenseLedgerAllocator
from settlement_engine.calculators.line_builder import LineItemBuilder
from settlement_engine.calculators.types import (
    ManualDeduction,
    ManualDeductionKind,
    ObligationStatus,
)

from .factories import make_job, make_obligation, make_payee, make_settings, make_snapshot

money = st.decimals(
    min_value=Decimal("0.00"),
    max_value=Decimal("50000.00"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
positive_money = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("50000.00"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
miles = st.integers(min_value=0, max_value=3000).map(Decimal)


def ledger(payee, totals: list[Decimal], offsets: list[int]):
    obligations = [
        make_obligation(payee, total, days=offset) for total, offset in zip(totals, offsets)
    ]
    return make_snapshot(payee, *obligations)


class TestAllocationInvariants:
    @given(
        totals=st.lists(positive_money, min_size=0, max_size=12),
        offsets=st.lists(st.integers(min_value=0, max_value=5), min_size=12, max_size=12),
        available=money,
    )
    @settings(max_examples=100)
    def test_never_over_recovers(self, totals, offsets, available):
        payee = make_payee()
        snapshot = ledger(payee, totals, offsets)

        result = ExpenseLedgerAllocator().allocate(snapshot, available)

        assert result.total_allocated <= available
        assert result.total_allocated == sum((a.amount for a in result.allocations), Decimal("0"))
        assert result.remaining_available == available - result.total_allocated
        for allocation in result.allocations:
            assert Decimal("0") < allocation.amount <= allocation.balance_before
            assert allocation.balance_after >= 0
            assert (allocation.status_after == ObligationStatus.PAID) == (
                allocation.balance_after == 0
            )

    @given(
        totals=st.lists(positive_money, min_size=1, max_size=12),
        offsets=st.lists(st.integers(min_value=0, max_value=5), min_size=12, max_size=12),
        available=money,
    )
    @settings(max_examples=100)
    def test_oldest_obligations_cleared_first(self, totals, offsets, available):
        payee = make_payee()
        snapshot = ledger(payee, totals, offsets)
        allocator = ExpenseLedgerAllocator()

        result = allocator.allocate(snapshot, available)
        ordered = [o.obligation_id for o in allocator.select(snapshot)]

        # Allocations are a prefix of the ordering; only the last may be partial
        assert [a.obligation_id for a in result.allocations] == ordered[: len(result.allocations)]
        for allocation in result.allocations[:-1]:
            assert allocation.status_after == ObligationStatus.PAID

    @given(
        totals=st.lists(positive_money, min_size=1, max_size=8),
        offsets=st.lists(st.integers(min_value=0, max_value=5), min_size=8, max_size=8),
        paychecks=st.lists(money, min_size=1, max_size=6),
    )
    @settings(max_examples=50)
    def test_recoveries_leave_the_ledger_exactly(self, totals, offsets, paychecks):
        payee = make_payee()
        snapshot = ledger(payee, totals, offsets)
        allocator = ExpenseLedgerAllocator()
        starting = allocator.outstanding_balance(snapshot)

        recovered = Decimal("0")
        for available in paychecks:
            result = allocator.allocate(snapshot, available)
            snapshot = allocator.apply_allocations(snapshot, result)
            recovered += result.total_allocated

        assert allocator.outstanding_balance(snapshot) == starting - recovered
        for obligation in snapshot.obligations:
            assert obligation.amount_recovered <= obligation.total_amount


class TestSettlementInvariants:
    @given(
        distances=st.lists(miles, min_size=0, max_size=6),
        totals=st.lists(positive_money, min_size=0, max_size=4),
        advance=money,
    )
    @settings(max_examples=75)
    def test_lines_reconcile_and_net_never_negative(self, distances, totals, advance):
        payee = make_payee()
        jobs = [make_job(payee, distance=d) for d in distances]
        snapshot = ledger(payee, totals, [0] * len(totals))
        aggregator = SettlementAggregator(settings=make_settings())

        result = aggregator.build_settlement(
            payee,
            jobs,
            snapshot,
            manual_deductions=[ManualDeduction(ManualDeductionKind.ADVANCE, advance)],
        )
        draft = result.draft

        difference = draft.gross_pay - draft.total_deductions
        assert LineItemBuilder.calculate_balance_from_lines(draft.lines) == difference
        assert draft.net_payable >= 0
        assert draft.carried_debt >= 0
        assert draft.net_payable - draft.carried_debt == difference
        assert draft.deductions.total_recoveries <= draft.gross_pay
