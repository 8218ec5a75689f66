"""
Persistent job store for insight jobs and runs.

Every state change is a conditional UPDATE guarded by the expected status
(and, for claims and completions, the updated_at fence read beforehand). A
guarded update that touches zero rows means another caller got there first.
Nothing has been written at that point, so the transaction is simply ended
(commit, which keeps loaded objects usable) and the caller never blocks
waiting for a lock.
"""

import json
import re
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, desc, func, or_, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.logging import get_logger
from attention.config.settings import Settings
from attention.v1.infra.jobs.executor import ExecutorResult
from attention.v1.infra.jobs.models import (
    ACTIVE_JOB_STATUSES,
    InsightJob,
    JobStatus,
    Run,
    ensure_transition,
    utcnow,
)
from attention.v1.insights.models import ProductInsight

logger = get_logger(__name__)

INSIGHT_NOT_FOUND_ERROR = "ProductInsight not found"
SUPERSEDED_ERROR = "Superseded by regenerate"
STALE_RUNNING_ERROR = "Worker stopped responding before the job finished"

# Upper bound on lost claim races per claim_next call. Each lost race means
# another caller claimed a job, so the loop always makes global progress.
CLAIM_RACE_RETRIES = 10

_ACTIVE_VALUES = [status.value for status in ACTIVE_JOB_STATUSES]
_SECRET_PATTERN = re.compile(
    r"(sk-[A-Za-z0-9_\-]{8,}|shpat_[A-Za-z0-9]+|Bearer\s+\S+)", re.IGNORECASE
)


def truncate_error(message: str | None, limit: int = 500) -> str:
    """Redact credential-looking tokens and bound the stored length."""
    redacted = _SECRET_PATTERN.sub("[redacted]", message or "")
    return redacted[:limit]


def backoff_delay(attempt_index: int, schedule: Sequence[int]) -> timedelta:
    """Delay before the next attempt; indexes past the table reuse the last entry."""
    index = min(max(attempt_index, 0), len(schedule) - 1)
    return timedelta(seconds=schedule[index])


class JobStore:
    """State machine writes, claim primitive and read queries for jobs and runs."""

    def __init__(self, settings: Settings):
        self.settings = settings

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        shop: str,
        product_id: str,
        run_id: UUID | None = None,
        *,
        commit: bool = True,
    ) -> InsightJob:
        """Create a QUEUED job. Raises IntegrityError if one is already active."""
        now = utcnow()
        job = InsightJob(
            shop=shop,
            product_id=product_id,
            run_id=run_id,
            status=JobStatus.QUEUED.value,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        session.add(job)
        if commit:
            await session.commit()
        else:
            await session.flush()
        return job

    async def find_active(
        self, session: AsyncSession, shop: str, product_id: str
    ) -> InsightJob | None:
        """The QUEUED or RUNNING job for (shop, product), if any."""
        result = await session.execute(
            select(InsightJob)
            .where(
                InsightJob.shop == shop,
                InsightJob.product_id == product_id,
                InsightJob.status.in_(_ACTIVE_VALUES),
            )
            .order_by(desc(InsightJob.created_at))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_job(
        self, session: AsyncSession, job_id: UUID, shop: str | None = None
    ) -> InsightJob | None:
        query = select(InsightJob).where(InsightJob.id == job_id)
        if shop:
            query = query.where(InsightJob.shop == shop)
        result = await session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        session: AsyncSession,
        shop: str | None = None,
        statuses: Sequence[JobStatus] | None = None,
        run_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[InsightJob], int]:
        """Jobs newest first with the total count before pagination."""
        query = select(InsightJob)
        if shop:
            query = query.where(InsightJob.shop == shop)
        if statuses:
            query = query.where(InsightJob.status.in_([s.value for s in statuses]))
        if run_id:
            query = query.where(InsightJob.run_id == run_id)

        total_result = await session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = total_result.scalar() or 0

        result = await session.execute(
            query.order_by(desc(InsightJob.created_at)).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_job_stats(
        self, session: AsyncSession, shop: str | None = None
    ) -> dict[str, Any]:
        """Counts by status, queue depth and retries waiting on backoff."""
        base_filter = InsightJob.shop == shop if shop else true()

        status_result = await session.execute(
            select(InsightJob.status, func.count(InsightJob.id))
            .where(base_filter)
            .group_by(InsightJob.status)
        )
        by_status = {status: count for status, count in status_result.all()}

        waiting_result = await session.execute(
            select(func.count(InsightJob.id)).where(
                base_filter,
                InsightJob.status == JobStatus.QUEUED.value,
                InsightJob.next_retry_at.is_not(None),
            )
        )

        return {
            "total_jobs": sum(by_status.values()),
            "by_status": by_status,
            "queue_depth": sum(by_status.get(s, 0) for s in _ACTIVE_VALUES),
            "waiting_retry": waiting_result.scalar() or 0,
        }

    async def get_run(
        self, session: AsyncSession, run_id: UUID, shop: str | None = None
    ) -> Run | None:
        query = select(Run).where(Run.id == run_id)
        if shop:
            query = query.where(Run.shop == shop)
        result = await session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_runs(
        self, session: AsyncSession, shop: str | None = None, limit: int = 50
    ) -> list[Run]:
        query = select(Run)
        if shop:
            query = query.where(Run.shop == shop)
        result = await session.execute(
            query.order_by(desc(Run.created_at)).limit(limit)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    async def supersede(
        self, session: AsyncSession, job: InsightJob, *, commit: bool = True
    ) -> bool:
        """Mark an active job FAILED so a forced regenerate can replace it."""
        ensure_transition(job.status, JobStatus.FAILED)
        result = await session.execute(
            update(InsightJob)
            .where(
                InsightJob.id == job.id,
                InsightJob.status.in_(_ACTIVE_VALUES),
                InsightJob.updated_at == job.updated_at,
            )
            .values(
                status=JobStatus.FAILED.value,
                last_error=SUPERSEDED_ERROR,
                next_retry_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        superseded = result.rowcount == 1
        if superseded and job.run_id:
            await self._increment_run(session, job.run_id, failed=1)
        if commit:
            await session.commit()

        if superseded:
            logger.info(
                "Job superseded",
                job_id=str(job.id),
                shop=job.shop,
                product_id=job.product_id,
            )
        return superseded

    async def claim_next(
        self, session: AsyncSession, now: datetime | None = None
    ) -> InsightJob | None:
        """
        Claim the oldest eligible QUEUED job for this caller.

        Eligible means next_retry_at is unset or due. The claim is a
        compare-and-swap on updated_at; losing the race re-selects instead of
        waiting, so concurrent callers never receive the same job.
        """
        now = now or utcnow()

        for _ in range(CLAIM_RACE_RETRIES):
            candidate = await self._next_candidate(session, now)
            if candidate is None:
                await session.commit()
                return None

            job_id = candidate.id
            if await self._try_claim(session, candidate):
                logger.info(
                    "Job claimed",
                    job_id=str(candidate.id),
                    shop=candidate.shop,
                    product_id=candidate.product_id,
                    attempts=candidate.attempts,
                )
                return candidate

            logger.debug("Claim race lost", job_id=str(job_id))

        return None

    async def _next_candidate(
        self, session: AsyncSession, now: datetime
    ) -> InsightJob | None:
        result = await session.execute(
            select(InsightJob)
            .where(
                InsightJob.status == JobStatus.QUEUED.value,
                or_(
                    InsightJob.next_retry_at.is_(None),
                    InsightJob.next_retry_at <= now,
                ),
            )
            .order_by(InsightJob.created_at, InsightJob.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _try_claim(self, session: AsyncSession, candidate: InsightJob) -> bool:
        result = await session.execute(
            update(InsightJob)
            .where(
                InsightJob.id == candidate.id,
                InsightJob.status == JobStatus.QUEUED.value,
                InsightJob.updated_at == candidate.updated_at,
            )
            .values(
                status=JobStatus.RUNNING.value,
                attempts=InsightJob.attempts + 1,
                next_retry_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.commit()
            return False

        await session.execute(
            update(ProductInsight)
            .where(
                ProductInsight.shop == candidate.shop,
                ProductInsight.product_id == candidate.product_id,
            )
            .values(ai_status=JobStatus.RUNNING.value, ai_error=None)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        await session.refresh(candidate)
        return True

    async def mark_succeeded(
        self,
        session: AsyncSession,
        job: InsightJob,
        result: ExecutorResult,
        now: datetime | None = None,
    ) -> bool:
        """
        Record a successful generation on the job, its insight and its run.

        Applied as one transaction. Returns False, changing nothing, when the
        job is no longer RUNNING (superseded or reclaimed meanwhile).
        """
        now = now or utcnow()
        ensure_transition(job.status, JobStatus.SUCCEEDED)

        if not await self._finish_running(
            session, job, status=JobStatus.SUCCEEDED, last_error=None
        ):
            return False

        output = result.output
        await session.execute(
            update(ProductInsight)
            .where(
                ProductInsight.shop == job.shop,
                ProductInsight.product_id == job.product_id,
            )
            .values(
                ai_explanation=output.explanation_text(),
                ai_action_type=output.action_type.value,
                ai_generated_at=now,
                ai_model=result.model,
                ai_status=JobStatus.SUCCEEDED.value,
                ai_error=None,
                reasons_json=json.dumps(output.next_steps) if output.next_steps else None,
            )
            .execution_options(synchronize_session=False)
        )
        if job.run_id:
            await self._increment_run(session, job.run_id, succeeded=1)
        await session.commit()

        logger.info(
            "Job succeeded",
            job_id=str(job.id),
            run_id=str(job.run_id) if job.run_id else None,
            model=result.model,
        )
        return True

    async def mark_retry_or_fail(
        self,
        session: AsyncSession,
        job: InsightJob,
        error: str,
        now: datetime | None = None,
    ) -> JobStatus | None:
        """
        Requeue a failed attempt with backoff, or fail it once attempts run out.

        While retries remain the insight shows QUEUED with no error; only the
        terminal failure is visible to the merchant. The run failed counter
        moves once, on the terminal transition.
        """
        now = now or utcnow()
        message = truncate_error(error, self.settings.job_error_max_length)
        will_retry = job.attempts < self.settings.job_max_attempts

        if will_retry:
            target = JobStatus.QUEUED
            next_retry_at = now + backoff_delay(
                job.attempts - 1, self.settings.job_backoff_schedule_s
            )
        else:
            target = JobStatus.FAILED
            next_retry_at = None
        ensure_transition(job.status, target)

        if not await self._finish_running(
            session,
            job,
            status=target,
            last_error=message,
            next_retry_at=next_retry_at,
        ):
            return None

        await self._mirror_insight(
            session, job, target, None if will_retry else message
        )
        if not will_retry and job.run_id:
            await self._increment_run(session, job.run_id, failed=1)
        await session.commit()

        if will_retry:
            logger.warning(
                "Job scheduled for retry",
                job_id=str(job.id),
                attempts=job.attempts,
                next_retry_at=next_retry_at.isoformat(),
                error=message,
            )
        else:
            logger.error(
                "Job failed",
                job_id=str(job.id),
                attempts=job.attempts,
                run_id=str(job.run_id) if job.run_id else None,
                error=message,
            )
        return target

    async def mark_failed(
        self,
        session: AsyncSession,
        job: InsightJob,
        error: str,
        now: datetime | None = None,
    ) -> bool:
        """Fail a RUNNING job immediately, without retry."""
        message = truncate_error(error, self.settings.job_error_max_length)
        ensure_transition(job.status, JobStatus.FAILED)

        if not await self._finish_running(
            session, job, status=JobStatus.FAILED, last_error=message
        ):
            return False

        await self._mirror_insight(session, job, JobStatus.FAILED, message)
        if job.run_id:
            await self._increment_run(session, job.run_id, failed=1)
        await session.commit()

        logger.error("Job failed without retry", job_id=str(job.id), error=message)
        return True

    async def reclaim_stale(
        self, session: AsyncSession, now: datetime | None = None
    ) -> int:
        """
        Return RUNNING jobs abandoned by a crashed worker to the queue.

        A job counts as abandoned when its fence is older than
        job_stale_after_s. Jobs with no attempts left fail instead.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.job_stale_after_s)

        result = await session.execute(
            select(InsightJob)
            .where(
                InsightJob.status == JobStatus.RUNNING.value,
                InsightJob.updated_at < cutoff,
            )
            .execution_options(populate_existing=True)
        )
        stale_jobs = result.scalars().all()

        reclaimed = 0
        for job in stale_jobs:
            exhausted = job.attempts >= self.settings.job_max_attempts
            target = JobStatus.FAILED if exhausted else JobStatus.QUEUED
            update_result = await session.execute(
                update(InsightJob)
                .where(
                    InsightJob.id == job.id,
                    InsightJob.status == JobStatus.RUNNING.value,
                    InsightJob.updated_at == job.updated_at,
                )
                .values(
                    status=target.value,
                    last_error=STALE_RUNNING_ERROR,
                    next_retry_at=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount != 1:
                continue

            await self._mirror_insight(
                session, job, target, STALE_RUNNING_ERROR if exhausted else None
            )
            if exhausted and job.run_id:
                await self._increment_run(session, job.run_id, failed=1)
            reclaimed += 1

        await session.commit()

        if reclaimed:
            logger.warning(
                "Reclaimed stale jobs",
                reclaimed=reclaimed,
                stale_after_s=self.settings.job_stale_after_s,
            )
        return reclaimed

    async def bulk_delete_by_shop(
        self, session: AsyncSession, shop: str, *, commit: bool = True
    ) -> dict[str, int]:
        """Delete every job and run of a shop in one transaction."""
        jobs_result = await session.execute(
            delete(InsightJob).where(InsightJob.shop == shop)
        )
        runs_result = await session.execute(delete(Run).where(Run.shop == shop))
        if commit:
            await session.commit()
        return {"jobs": jobs_result.rowcount, "runs": runs_result.rowcount}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _finish_running(
        self,
        session: AsyncSession,
        job: InsightJob,
        status: JobStatus,
        last_error: str | None,
        next_retry_at: datetime | None = None,
    ) -> bool:
        job_id = job.id
        result = await session.execute(
            update(InsightJob)
            .where(
                InsightJob.id == job_id,
                InsightJob.status == JobStatus.RUNNING.value,
                InsightJob.updated_at == job.updated_at,
            )
            .values(
                status=status.value,
                last_error=last_error,
                next_retry_at=next_retry_at,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.commit()
            logger.warning(
                "Job is no longer running, result discarded",
                job_id=str(job_id),
                target=status.value,
            )
            return False
        return True

    async def _mirror_insight(
        self,
        session: AsyncSession,
        job: InsightJob,
        status: JobStatus,
        error: str | None,
    ) -> None:
        await session.execute(
            update(ProductInsight)
            .where(
                ProductInsight.shop == job.shop,
                ProductInsight.product_id == job.product_id,
            )
            .values(ai_status=status.value, ai_error=error)
            .execution_options(synchronize_session=False)
        )

    async def _increment_run(
        self,
        session: AsyncSession,
        run_id: UUID,
        succeeded: int = 0,
        failed: int = 0,
    ) -> None:
        await session.execute(
            update(Run)
            .where(Run.id == run_id)
            .values(succeeded=Run.succeeded + succeeded, failed=Run.failed + failed)
            .execution_options(synchronize_session=False)
        )

