"""Read-side loaders and the obligation compare-and-swap repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.calculators.types import Job as JobData
from settlement_engine.calculators.types import LedgerSnapshot, ObligationStatus
from settlement_engine.calculators.types import Payee as PayeeData
from settlement_engine.models import Job, Obligation, Payee


class ConcurrentModificationError(Exception):
    """Raised when a row changed between snapshot and commit."""

    def __init__(self, entity: str, entity_id: UUID, expected_version: int | None = None):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        msg = f"{entity} {entity_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version})"
        super().__init__(msg)


class PayeeNotFoundError(Exception):
    """Raised when a payee does not exist."""

    def __init__(self, payee_id: UUID):
        self.payee_id = payee_id
        super().__init__(f"Payee {payee_id} not found")


class JobNotFoundError(Exception):
    """Raised when one or more requested jobs do not exist."""

    def __init__(self, job_ids: Sequence[UUID]):
        self.job_ids = tuple(job_ids)
        super().__init__(f"Jobs not found: {', '.join(str(j) for j in self.job_ids)}")


class ObligationNotFoundError(Exception):
    """Raised when an obligation does not exist."""

    def __init__(self, obligation_id: UUID):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation {obligation_id} not found")


class SnapshotLoader:
    """Loads payees and jobs as immutable calculator inputs.

    Queries use populate_existing so a session that already committed
    earlier work never hands back stale identity-map state.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_payee(self, payee_id: UUID) -> PayeeData:
        result = await self.session.execute(
            select(Payee)
            .where(Payee.payee_id == payee_id)
            .execution_options(populate_existing=True)
        )
        payee = result.scalar_one_or_none()
        if payee is None:
            raise PayeeNotFoundError(payee_id)
        return payee.to_domain()

    async def load_jobs(self, job_ids: Sequence[UUID]) -> list[JobData]:
        """Load jobs by id, in request order.

        Raises:
            JobNotFoundError: If any id is unknown
        """
        if not job_ids:
            return []
        result = await self.session.execute(
            select(Job)
            .where(Job.job_id.in_(list(job_ids)))
            .execution_options(populate_existing=True)
        )
        by_id = {job.job_id: job.to_domain() for job in result.scalars().all()}
        missing = [j for j in job_ids if j not in by_id]
        if missing:
            raise JobNotFoundError(missing)
        return [by_id[j] for j in dict.fromkeys(job_ids)]

    async def load_jobs_for_period(
        self,
        payee_id: UUID,
        period_start: datetime,
        period_end: datetime,
    ) -> list[JobData]:
        """Load a payee's jobs completed within a period (settled or not)."""
        result = await self.session.execute(
            select(Job)
            .where(
                Job.payee_id == payee_id,
                Job.completed_at >= period_start,
                Job.completed_at <= period_end,
            )
            .order_by(Job.completed_at, Job.job_id)
            .execution_options(populate_existing=True)
        )
        return [job.to_domain() for job in result.scalars().all()]


class ObligationRepository:
    """Obligation store with version-checked writes.

    Every mutation is a compare-and-swap on ``version``: the UPDATE only
    matches when the row still carries the version that was read, so two
    writers working from the same snapshot cannot both succeed.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_snapshot(self, payee_id: UUID) -> LedgerSnapshot:
        """Read a payee's active, employer-paid obligations that still carry a
        balance, with their current versions."""
        result = await self.session.execute(
            select(Obligation)
            .where(
                Obligation.payee_id == payee_id,
                Obligation.status == ObligationStatus.ACTIVE.value,
                Obligation.employer_paid.is_(True),
                Obligation.total_amount > Obligation.amount_recovered,
            )
            .order_by(Obligation.originated_at, Obligation.obligation_id)
            .execution_options(populate_existing=True)
        )
        obligations = tuple(row.to_domain() for row in result.scalars().all())
        return LedgerSnapshot(
            payee_id=payee_id,
            obligations=obligations,
            read_at=datetime.now(timezone.utc),
        )

    async def list_for_payee(
        self, payee_id: UUID, include_closed: bool = False
    ) -> list[Obligation]:
        """Obligation rows of a payee, oldest first."""
        query = select(Obligation).where(Obligation.payee_id == payee_id)
        if not include_closed:
            query = query.where(Obligation.status == ObligationStatus.ACTIVE.value)
        result = await self.session.execute(
            query.order_by(Obligation.originated_at, Obligation.obligation_id).execution_options(
                populate_existing=True
            )
        )
        return list(result.scalars().all())

    async def get(self, obligation_id: UUID) -> Obligation:
        result = await self.session.execute(
            select(Obligation)
            .where(Obligation.obligation_id == obligation_id)
            .execution_options(populate_existing=True)
        )
        obligation = result.scalar_one_or_none()
        if obligation is None:
            raise ObligationNotFoundError(obligation_id)
        return obligation

    async def compare_and_swap(
        self,
        obligation_id: UUID,
        expected_version: int,
        **values: Any,
    ) -> int:
        """Apply ``values`` only if the row is still at ``expected_version``.

        Returns the new version.

        Raises:
            ConcurrentModificationError: If the version moved on
        """
        new_version = expected_version + 1
        result = await self.session.execute(
            update(Obligation)
            .where(
                Obligation.obligation_id == obligation_id,
                Obligation.version == expected_version,
            )
            .values(version=new_version, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError("obligation", obligation_id, expected_version)
        return new_version
