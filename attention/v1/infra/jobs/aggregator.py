"""
Run completion by periodic reconciliation.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.logging import get_logger
from attention.v1.infra.jobs.models import (
    ACTIVE_JOB_STATUSES,
    InsightJob,
    Run,
    RunStatus,
    utcnow,
)

logger = get_logger(__name__)


class RunAggregator:
    """Marks RUNNING runs COMPLETED once none of their jobs are active."""

    async def reconcile(
        self, session: AsyncSession, now: datetime | None = None
    ) -> list[UUID]:
        """
        Complete every RUNNING run with no QUEUED or RUNNING children.

        The status guard on the update makes completed_at write-once, so
        concurrent or repeated reconciles are harmless. Returns the ids of the
        runs completed by this call.
        """
        now = now or utcnow()

        active_children = (
            select(func.count(InsightJob.id))
            .where(
                InsightJob.run_id == Run.id,
                InsightJob.status.in_([s.value for s in ACTIVE_JOB_STATUSES]),
            )
            .scalar_subquery()
        )
        result = await session.execute(
            select(Run.id).where(
                Run.status == RunStatus.RUNNING.value, active_children == 0
            )
        )
        candidates = list(result.scalars().all())

        completed: list[UUID] = []
        for run_id in candidates:
            update_result = await session.execute(
                update(Run)
                .where(Run.id == run_id, Run.status == RunStatus.RUNNING.value)
                .values(status=RunStatus.COMPLETED.value, completed_at=now)
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount == 1:
                completed.append(run_id)
        await session.commit()

        for run_id in completed:
            logger.info("Run completed", run_id=str(run_id))
        return completed
