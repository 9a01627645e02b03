"""Expense ledger allocation: recover obligations oldest-first from gross pay."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from uuid import UUID

from settlement_engine.calculators.types import (
    ZERO,
    AllocationResult,
    DeductionCategory,
    LedgerSnapshot,
    Obligation,
    ObligationAllocation,
    ObligationStatus,
)


class ExpenseLedgerAllocator:
    """Allocates a payee's available pay against outstanding obligations.

    Selection: active, employer-paid, remaining balance > 0, and not locked
    to a different finalized settlement. Floating (no job) and job-linked
    obligations are treated the same.

    Order: origination timestamp ascending, ties by obligation id ascending.
    Each obligation takes min(remaining, available); allocation stops when
    available pay reaches zero, leaving later obligations untouched
    (spillover into the next settlement).

    Pure: the snapshot is never mutated. The returned allocations carry the
    version token each obligation must still have at commit.
    """

    @staticmethod
    def is_selectable(obligation: Obligation, settlement_id: UUID | None = None) -> bool:
        if obligation.status != ObligationStatus.ACTIVE:
            return False
        if not obligation.employer_paid:
            return False
        if obligation.remaining_balance <= 0:
            return False
        if obligation.settlement_id is not None and obligation.settlement_id != settlement_id:
            return False
        return True

    @staticmethod
    def ordering_key(obligation: Obligation) -> tuple:
        return (obligation.originated_at, str(obligation.obligation_id))

    def select(
        self, snapshot: LedgerSnapshot, settlement_id: UUID | None = None
    ) -> list[Obligation]:
        """Selectable obligations for the snapshot's payee, in allocation order."""
        candidates = [
            o
            for o in snapshot.obligations
            if o.payee_id == snapshot.payee_id and self.is_selectable(o, settlement_id)
        ]
        return sorted(candidates, key=self.ordering_key)

    def outstanding_balance(self, snapshot: LedgerSnapshot) -> Decimal:
        """Total remaining balance the payee still owes."""
        return sum((o.remaining_balance for o in self.select(snapshot)), ZERO)

    def allocate(
        self,
        snapshot: LedgerSnapshot,
        available_amount: Decimal,
        *,
        settlement_id: UUID | None = None,
    ) -> AllocationResult:
        """Allocate available pay against the snapshot's obligations."""
        breakdown: dict[DeductionCategory, Decimal] = {c: ZERO for c in DeductionCategory}
        allocations: list[ObligationAllocation] = []
        available = max(available_amount, ZERO)

        for obligation in self.select(snapshot, settlement_id):
            if available <= 0:
                break

            balance_before = obligation.remaining_balance
            amount = min(balance_before, available)
            balance_after = balance_before - amount

            allocations.append(
                ObligationAllocation(
                    obligation_id=obligation.obligation_id,
                    category=obligation.category,
                    amount=amount,
                    balance_before=balance_before,
                    balance_after=balance_after,
                    status_after=(
                        ObligationStatus.PAID if balance_after == 0 else ObligationStatus.ACTIVE
                    ),
                    expected_version=obligation.version,
                )
            )
            breakdown[obligation.category] += amount
            available -= amount

        total = sum((a.amount for a in allocations), ZERO)
        return AllocationResult(
            total_allocated=total,
            allocations=tuple(allocations),
            breakdown_by_category=breakdown,
            remaining_available=available,
        )

    @staticmethod
    def apply_allocations(
        snapshot: LedgerSnapshot, result: AllocationResult
    ) -> LedgerSnapshot:
        """Return the snapshot as it would look after committing ``result``.

        Raises ValueError if an allocation no longer matches the snapshot
        (stale version or over-recovery).
        """
        by_id = {a.obligation_id: a for a in result.allocations}
        updated: list[Obligation] = []

        for obligation in snapshot.obligations:
            allocation = by_id.get(obligation.obligation_id)
            if allocation is None:
                updated.append(obligation)
                continue
            if allocation.expected_version != obligation.version:
                raise ValueError(
                    f"Obligation {obligation.obligation_id} is at version {obligation.version}, "
                    f"allocation expects {allocation.expected_version}"
                )
            recovered = obligation.amount_recovered + allocation.amount
            if recovered > obligation.total_amount:
                raise ValueError(
                    f"Allocation would over-recover obligation {obligation.obligation_id}"
                )
            updated.append(
                replace(
                    obligation,
                    amount_recovered=recovered,
                    status=allocation.status_after,
                    version=allocation.new_version,
                )
            )

        return replace(snapshot, obligations=tuple(updated))
