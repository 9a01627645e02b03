"""Job locking for settlement commit and reversal."""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.models import Job
from settlement_engine.services.repositories import ConcurrentModificationError


class LockingService:
    """Links jobs to the settlement that paid them.

    When a settlement is committed:
    1. Every job in the batch is marked with the settlement id
    2. The update only matches jobs that are still unlinked, so a job can
       never be paid by two active settlements

    Reversal releases the links so the jobs become eligible again.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_jobs_for_settlement(
        self,
        settlement_id: UUID,
        payee_id: UUID,
        job_ids: Sequence[UUID],
    ) -> int:
        """Link jobs to a settlement.

        Returns count of locked jobs.

        Raises:
            ConcurrentModificationError: If any job was linked in the meantime
        """
        if not job_ids:
            return 0

        result = await self.session.execute(
            update(Job)
            .where(
                Job.job_id.in_(list(job_ids)),
                Job.payee_id == payee_id,
                Job.settlement_id.is_(None),
            )
            .values(settlement_id=settlement_id)
            .execution_options(synchronize_session=False)
        )
        locked = result.rowcount or 0
        if locked != len(job_ids):
            taken = await self.session.execute(
                select(Job.job_id).where(
                    Job.job_id.in_(list(job_ids)),
                    Job.settlement_id.is_not(None),
                    Job.settlement_id != settlement_id,
                )
            )
            conflict = taken.scalars().first()
            raise ConcurrentModificationError("job", conflict or job_ids[0])
        return locked

    async def unlock_jobs_for_settlement(self, settlement_id: UUID) -> int:
        """Release all jobs linked to this settlement (for reversal).

        Returns count of unlocked jobs.
        """
        result = await self.session.execute(
            update(Job)
            .where(Job.settlement_id == settlement_id)
            .values(settlement_id=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_locked_jobs(self, settlement_id: UUID) -> list[Job]:
        """Get all jobs linked to a settlement."""
        result = await self.session.execute(
            select(Job)
            .where(Job.settlement_id == settlement_id)
            .order_by(Job.completed_at, Job.job_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
