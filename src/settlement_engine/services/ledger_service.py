"""Obligation ledger lifecycle: open, cancel, outstanding balance."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.calculators.ledger_allocator import ExpenseLedgerAllocator
from settlement_engine.calculators.taxonomy import DeductionTaxonomyResolver
from settlement_engine.calculators.types import CostRecord, LedgerSnapshot, ObligationStatus
from settlement_engine.models import Obligation
from settlement_engine.services.repositories import ObligationRepository
from settlement_engine.services.state_machine import (
    InvalidTransitionError,
    ObligationStateMachine,
)

logger = logging.getLogger(__name__)


class LedgerService:
    """Opens and cancels obligations outside of settlement runs.

    Recoveries and their reversals happen only through SettlementService;
    this service never touches ``amount_recovered``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = ObligationRepository(session)
        self.allocator = ExpenseLedgerAllocator()

    async def open_obligation(self, record: CostRecord) -> Obligation | None:
        """Open a ledger entry for an employer-paid cost record.

        Returns None when the record is not recoverable from the payee.
        """
        data = DeductionTaxonomyResolver.open_obligation(record)
        if data is None:
            logger.info(
                "Cost record %s (%s) is not payee-reimbursable; no obligation opened",
                record.record_id,
                record.cost_type,
            )
            return None

        obligation = Obligation(
            obligation_id=data.obligation_id,
            payee_id=data.payee_id,
            job_id=data.job_id,
            total_amount=data.total_amount,
            amount_recovered=data.amount_recovered,
            status=data.status.value,
            category=data.category.value,
            cost_type=record.cost_type,
            description=record.description,
            employer_paid=data.employer_paid,
            originated_at=data.originated_at,
            settlement_id=None,
            version=data.version,
        )
        self.session.add(obligation)
        await self.session.flush()
        logger.info(
            "Opened obligation %s for payee %s: %s %s",
            data.obligation_id,
            data.payee_id,
            data.category.value,
            data.total_amount,
        )
        return obligation

    async def cancel_obligation(self, obligation_id: UUID) -> Obligation:
        """Cancel an obligation that nothing has been recovered against yet.

        Raises:
            ObligationNotFoundError: If the obligation does not exist
            InvalidTransitionError: If it is not active or partly recovered
            ConcurrentModificationError: If it changed while cancelling
        """
        obligation = await self.repository.get(obligation_id)
        ObligationStateMachine.validate_transition(obligation.status, ObligationStatus.CANCELLED)
        if obligation.amount_recovered > 0:
            raise InvalidTransitionError(
                obligation.status,
                ObligationStatus.CANCELLED.value,
                f"{obligation.amount_recovered} already recovered",
            )

        await self.repository.compare_and_swap(
            obligation_id,
            obligation.version,
            status=ObligationStatus.CANCELLED.value,
        )
        logger.info("Cancelled obligation %s", obligation_id)
        return await self.repository.get(obligation_id)

    async def outstanding(self, payee_id: UUID) -> tuple[LedgerSnapshot, Decimal]:
        """Snapshot of a payee's ledger plus its recoverable balance."""
        snapshot = await self.repository.load_snapshot(payee_id)
        return snapshot, self.allocator.outstanding_balance(snapshot)
