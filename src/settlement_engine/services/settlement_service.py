"""Settlement service - preview, commit and reversal of settlements."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.calculators.aggregator import SettlementAggregator
from settlement_engine.calculators.line_builder import LineItemBuilder
from settlement_engine.calculators.types import (
    ManualDeduction,
    ObligationStatus,
    OtherEarning,
    SettlementDraft,
    SettlementError,
    SettlementResult,
)
from settlement_engine.config import Settings, get_settings
from settlement_engine.models import (
    Obligation,
    ObligationAllocation,
    Settlement,
    SettlementLineItem,
)
from settlement_engine.services.locking_service import LockingService
from settlement_engine.services.repositories import (
    ConcurrentModificationError,
    ObligationRepository,
    SnapshotLoader,
)
from settlement_engine.services.state_machine import (
    InvalidTransitionError,
    ObligationStateMachine,
    SettlementStateMachine,
    SettlementStatus,
)

logger = logging.getLogger(__name__)


class SettlementNotFoundError(Exception):
    """Raised when a settlement does not exist."""

    def __init__(self, settlement_id: UUID):
        self.settlement_id = settlement_id
        super().__init__(f"Settlement {settlement_id} not found")


class OrderingViolationError(Exception):
    """Raised when reversing a settlement whose obligations a later one also touched."""

    def __init__(
        self,
        settlement_id: UUID,
        conflicting_settlement_id: UUID,
        obligation_id: UUID,
    ):
        self.settlement_id = settlement_id
        self.conflicting_settlement_id = conflicting_settlement_id
        self.obligation_id = obligation_id
        super().__init__(
            f"Cannot reverse settlement {settlement_id}: obligation {obligation_id} "
            f"was later allocated by settlement {conflicting_settlement_id}, "
            "which must be reversed first"
        )


@dataclass
class CreateSettlementResult:
    """Outcome of build + commit."""

    settlement: Settlement | None = None
    draft: SettlementDraft | None = None
    is_new: bool = False
    attempts: int = 0
    error: SettlementError | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.settlement is not None


class SettlementService:
    """Service for the settlement lifecycle.

    Operations:
    - preview: Build a draft from current data without writing anything
    - commit: Persist a draft with its obligation deltas and job links
    - create_settlement: preview + commit, retried on concurrent modification
    - reverse_settlement: Void a settlement and restore what it recovered

    commit and reverse_settlement own the transaction: they commit on
    success and roll back on any failure, so a settlement and the ledger
    changes it describes become visible together or not at all.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        aggregator: SettlementAggregator | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.aggregator = aggregator or SettlementAggregator(self.settings)
        self.loader = SnapshotLoader(session)
        self.obligations = ObligationRepository(session)
        self.locking_service = LockingService(session)

    async def get_settlement(self, settlement_id: UUID) -> Settlement:
        result = await self.session.execute(
            select(Settlement)
            .where(Settlement.settlement_id == settlement_id)
            .execution_options(populate_existing=True)
        )
        settlement = result.scalar_one_or_none()
        if settlement is None:
            raise SettlementNotFoundError(settlement_id)
        return settlement

    async def get_by_calculation_id(self, calculation_id: UUID) -> Settlement | None:
        result = await self.session.execute(
            select(Settlement)
            .where(
                Settlement.calculation_id == calculation_id,
                Settlement.status == SettlementStatus.FINALIZED.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_settlements(self, payee_id: UUID) -> list[Settlement]:
        result = await self.session.execute(
            select(Settlement)
            .where(Settlement.payee_id == payee_id)
            .order_by(Settlement.finalized_at, Settlement.settlement_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # === Preview ===

    async def preview(
        self,
        payee_id: UUID,
        job_ids: Sequence[UUID],
        manual_deductions: Iterable[ManualDeduction] = (),
        apply_withholding: bool | None = None,
        other_earnings: Iterable[OtherEarning] = (),
    ) -> SettlementResult:
        """Build a draft settlement from the current payee, jobs and ledger.

        Raises:
            PayeeNotFoundError: If the payee does not exist
            JobNotFoundError: If any job does not exist
        """
        payee = await self.loader.load_payee(payee_id)
        jobs = await self.loader.load_jobs(job_ids)
        snapshot = await self.obligations.load_snapshot(payee_id)
        result = self.aggregator.build_settlement(
            payee,
            jobs,
            snapshot,
            manual_deductions=manual_deductions,
            apply_withholding=apply_withholding,
            other_earnings=other_earnings,
        )
        if result.error is not None:
            logger.info(
                "Settlement for payee %s rejected: %s (%s)",
                payee_id,
                result.error.code.value,
                result.error.message,
            )
        return result

    # === Commit ===

    async def commit(self, draft: SettlementDraft) -> tuple[Settlement, bool]:
        """Persist a draft settlement with its ledger mutations.

        Returns (settlement, is_new). A draft whose calculation_id was
        already committed returns the existing settlement unchanged.

        Raises:
            ConcurrentModificationError: If an obligation or job changed
                since the draft's snapshot was read, or another commit
                claimed the same settlement number
        """
        existing = await self.get_by_calculation_id(draft.calculation_id)
        if existing is not None:
            logger.info(
                "Settlement %s already committed for calculation %s",
                existing.settlement_number,
                draft.calculation_id,
            )
            return existing, False

        settlement_id = uuid4()
        try:
            now = datetime.now(timezone.utc)
            settlement = self._build_settlement_row(
                draft,
                settlement_id=settlement_id,
                settlement_number=await self._next_settlement_number(now.year),
                finalized_at=now,
            )
            self.session.add(settlement)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                # Another commit took the same settlement number first
                logger.warning(
                    "Settlement number %s already taken: %s",
                    settlement.settlement_number,
                    exc.orig,
                )
                raise ConcurrentModificationError("settlement", settlement_id) from exc

            await self.locking_service.lock_jobs_for_settlement(
                settlement_id, draft.payee_id, draft.job_ids
            )

            for alloc in draft.obligation_deltas:
                values = {
                    "amount_recovered": Obligation.amount_recovered + alloc.amount,
                    "status": alloc.status_after.value,
                }
                if alloc.status_after == ObligationStatus.PAID:
                    values["settlement_id"] = settlement_id
                await self.obligations.compare_and_swap(
                    alloc.obligation_id, alloc.expected_version, **values
                )

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Committed settlement %s for payee %s: gross %s, net %s, carried debt %s",
            settlement.settlement_number,
            draft.payee_id,
            draft.gross_pay,
            draft.net_payable,
            draft.carried_debt,
        )
        return await self.get_settlement(settlement_id), True

    async def create_settlement(
        self,
        payee_id: UUID,
        job_ids: Sequence[UUID],
        manual_deductions: Iterable[ManualDeduction] = (),
        apply_withholding: bool | None = None,
        other_earnings: Iterable[OtherEarning] = (),
    ) -> CreateSettlementResult:
        """Build and commit a settlement, re-reading the ledger on conflict.

        Raises:
            ConcurrentModificationError: If every attempt lost a race
        """
        manual = list(manual_deductions)
        extras = list(other_earnings)
        max_attempts = self.settings.commit_max_retries
        last_error: ConcurrentModificationError | None = None

        for attempt in range(1, max_attempts + 1):
            result = await self.preview(
                payee_id,
                job_ids,
                manual_deductions=manual,
                apply_withholding=apply_withholding,
                other_earnings=extras,
            )
            if result.error is not None:
                await self.session.rollback()
                return CreateSettlementResult(error=result.error, attempts=attempt)

            try:
                settlement, is_new = await self.commit(result.draft)
            except ConcurrentModificationError as exc:
                last_error = exc
                logger.warning(
                    "Settlement commit for payee %s conflicted (attempt %d/%d): %s",
                    payee_id,
                    attempt,
                    max_attempts,
                    exc,
                )
                continue

            return CreateSettlementResult(
                settlement=settlement,
                draft=result.draft,
                is_new=is_new,
                attempts=attempt,
            )

        assert last_error is not None
        raise last_error

    # === Reversal ===

    async def reverse_settlement(
        self,
        settlement_id: UUID,
        reason: str | None = None,
    ) -> Settlement:
        """Void a finalized settlement and restore every balance it recovered.

        Raises:
            SettlementNotFoundError: If the settlement does not exist
            InvalidTransitionError: If it is already void
            OrderingViolationError: If a later settlement allocated against
                one of the same obligations and is still active, including
                one that committed while this reversal was in flight
            ConcurrentModificationError: If an obligation changed after the
                ordering check for any other reason
        """
        settlement = await self.get_settlement(settlement_id)
        SettlementStateMachine.validate_transition(settlement.status, SettlementStatus.VOID)

        active_allocations = [a for a in settlement.allocations if a.reversed_at is None]
        checks = [(a.obligation_id, a.version_after) for a in active_allocations]

        # Check every obligation before touching any of them. The version read
        # here is the one the restore must still find.
        restores: list[tuple[UUID, int, dict[str, Any]]] = []
        for alloc in active_allocations:
            obligation = await self.obligations.get(alloc.obligation_id)
            checked_version = obligation.version
            conflicting = await self._later_allocation(
                alloc.obligation_id, settlement_id, alloc.version_after
            )
            if conflicting is not None:
                raise OrderingViolationError(settlement_id, conflicting, alloc.obligation_id)
            restores.append(
                (
                    alloc.obligation_id,
                    checked_version,
                    self._restore_values(settlement_id, alloc, obligation),
                )
            )

        try:
            now = datetime.now(timezone.utc)
            for obligation_id, checked_version, values in restores:
                await self.obligations.compare_and_swap(obligation_id, checked_version, **values)
            for alloc in active_allocations:
                alloc.reversed_at = now

            unlocked = await self.locking_service.unlock_jobs_for_settlement(settlement_id)

            settlement.status = SettlementStatus.VOID.value
            settlement.voided_at = now
            settlement.void_reason = reason
            await self.session.commit()
        except ConcurrentModificationError:
            await self.session.rollback()
            # A settlement committed against one of these obligations after the check
            for obligation_id, version_after in checks:
                conflicting = await self._later_allocation(
                    obligation_id, settlement_id, version_after
                )
                if conflicting is not None:
                    raise OrderingViolationError(
                        settlement_id, conflicting, obligation_id
                    ) from None
            raise
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Reversed settlement %s: %d obligation(s) restored, %d job(s) released",
            settlement_id,
            len(active_allocations),
            unlocked,
        )
        return await self.get_settlement(settlement_id)

    async def _later_allocation(
        self,
        obligation_id: UUID,
        settlement_id: UUID,
        version_after: int,
    ) -> UUID | None:
        """Settlement id of a non-reversed allocation made after ``version_after``."""
        result = await self.session.execute(
            select(ObligationAllocation.settlement_id)
            .where(
                ObligationAllocation.obligation_id == obligation_id,
                ObligationAllocation.settlement_id != settlement_id,
                ObligationAllocation.reversed_at.is_(None),
                ObligationAllocation.version_after > version_after,
            )
            .order_by(ObligationAllocation.version_after.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _restore_values(
        settlement_id: UUID,
        alloc: ObligationAllocation,
        obligation: Obligation,
    ) -> dict[str, Any]:
        """Column updates that hand ``alloc.amount`` back to the obligation."""
        values: dict[str, Any] = {
            "amount_recovered": Obligation.amount_recovered - alloc.amount
        }

        if obligation.status == ObligationStatus.PAID:
            ObligationStateMachine.validate_transition(obligation.status, ObligationStatus.ACTIVE)
            values["status"] = ObligationStatus.ACTIVE.value
        elif obligation.status != ObligationStatus.ACTIVE:
            raise InvalidTransitionError(
                obligation.status,
                ObligationStatus.ACTIVE.value,
                f"obligation {obligation.obligation_id} cannot take back a recovery",
            )
        if obligation.settlement_id == settlement_id:
            values["settlement_id"] = None
        return values

    # === Persistence helpers ===

    async def _next_settlement_number(self, year: int) -> str:
        prefix = f"ST-{year}-"
        result = await self.session.execute(
            select(Settlement.settlement_number).where(
                Settlement.settlement_number.like(f"{prefix}%")
            )
        )
        sequences = [
            int(number[len(prefix):])
            for number in result.scalars().all()
            if number[len(prefix):].isdigit()
        ]
        return f"{prefix}{max(sequences, default=0) + 1:04d}"

    @staticmethod
    def _build_settlement_row(
        draft: SettlementDraft,
        settlement_id: UUID,
        settlement_number: str,
        finalized_at: datetime,
    ) -> Settlement:
        deductions = draft.deductions
        settlement = Settlement(
            settlement_id=settlement_id,
            settlement_number=settlement_number,
            calculation_id=draft.calculation_id,
            payee_id=draft.payee_id,
            status=SettlementStatus.FINALIZED.value,
            job_ids_json=[str(j) for j in draft.job_ids],
            gross_pay=draft.gross_pay,
            other_earnings_total=draft.other_earnings_total,
            advances=deductions.advances,
            third_party_fees=deductions.third_party_fees,
            total_recoveries=deductions.total_recoveries,
            total_withholding=deductions.total_withholding,
            total_deductions=draft.total_deductions,
            net_payable=draft.net_payable,
            carried_debt=draft.carried_debt,
            total_distance=draft.total_distance,
            recoveries_json={c.value: str(a) for c, a in deductions.recoveries.items() if a > 0},
            withholding_json={name: str(a) for name, a in deductions.withholding.items()},
            warnings_json=[
                {
                    "code": w.code.value,
                    "message": w.message,
                    "job_id": str(w.job_id) if w.job_id else None,
                }
                for w in draft.warnings
            ],
            finalized_at=finalized_at,
            voided_at=None,
            void_reason=None,
        )

        for number, line in enumerate(draft.lines, start=1):
            settlement.lines.append(
                SettlementLineItem(
                    line_number=number,
                    line_type=line.line_type.value,
                    amount=line.amount,
                    job_id=line.job_id,
                    obligation_id=line.obligation_id,
                    category=line.category,
                    quantity=line.quantity,
                    rate=line.rate,
                    explanation=line.explanation,
                    line_hash=LineItemBuilder.compute_line_hash(line),
                )
            )

        for alloc in draft.obligation_deltas:
            settlement.allocations.append(
                ObligationAllocation(
                    obligation_id=alloc.obligation_id,
                    category=alloc.category.value,
                    amount=alloc.amount,
                    balance_before=alloc.balance_before,
                    balance_after=alloc.balance_after,
                    status_after=alloc.status_after.value,
                    version_before=alloc.expected_version,
                    version_after=alloc.new_version,
                    reversed_at=None,
                )
            )
        return settlement
