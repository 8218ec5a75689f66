"""
Sequential claim-and-execute worker for insight jobs.
"""

import asyncio
import os
import socket
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attention.config.logging import bind_worker_context, get_logger
from attention.config.settings import Settings
from attention.v1.core.exceptions import ExecutorError
from attention.v1.core.registries import InsightExecutor
from attention.v1.infra.jobs.aggregator import RunAggregator
from attention.v1.infra.jobs.executor import build_executor_input
from attention.v1.infra.jobs.models import InsightJob, utcnow
from attention.v1.infra.jobs.store import INSIGHT_NOT_FOUND_ERROR, JobStore
from attention.v1.insights.models import ProductInsight

logger = get_logger(__name__)

UNEXPECTED_ERROR_MESSAGE = "Unexpected error while generating the explanation"


class JobWorker:
    """
    Single sequential poller over the insight job queue.

    Features:
    - Optimistic claim fence, safe with several worker processes
    - Bounded retries on the configured backoff schedule
    - Run reconciliation and stale-job reclaim while the queue is idle
    - Loop survives any single failed cycle
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        executor: InsightExecutor,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.executor = executor
        self.clock = clock or utcnow
        self.store = JobStore(settings)
        self.aggregator = RunAggregator()
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.empty_polls = 0

    async def start(self) -> None:
        """Run the poll loop until stop() is called."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        bind_worker_context(self.worker_id)
        logger.info(
            "Starting job worker",
            poll_interval_ms=self.settings.job_poll_interval_ms,
            executor=self.settings.executor.value,
        )

        try:
            while self.running:
                try:
                    processed = await self.tick()
                except Exception:
                    logger.exception("Error in worker loop")
                    processed = False

                if not processed and self.running:
                    await asyncio.sleep(self.settings.job_poll_interval_ms / 1000)
        finally:
            self.running = False
            logger.info("Job worker stopped")

    async def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        logger.info("Stopping job worker")
        self.running = False

    async def tick(self) -> bool:
        """
        Claim and process at most one job.

        Returns True when a job was processed. Empty polls are counted and
        every reconcile_every_empty_polls of them triggers maintenance.
        """
        async with self.session_factory() as session:
            job = await self.store.claim_next(session, self.clock())
            if job is None:
                self.empty_polls += 1
                if self.empty_polls >= self.settings.reconcile_every_empty_polls:
                    self.empty_polls = 0
                    await self.run_maintenance(session)
                return False

            self.empty_polls = 0
            await self.process_job(session, job)
            return True

    async def process_job(self, session: AsyncSession, job: InsightJob) -> None:
        """Execute a claimed job and record the outcome."""
        job_logger = logger.bind(
            job_id=str(job.id), shop=job.shop, product_id=job.product_id
        )

        result = await session.execute(
            select(ProductInsight).where(
                ProductInsight.shop == job.shop,
                ProductInsight.product_id == job.product_id,
            )
        )
        insight = result.scalar_one_or_none()
        # No transaction stays open across the executor call.
        await session.commit()
        if insight is None:
            job_logger.warning("Insight missing for job")
            await self.store.mark_failed(session, job, INSIGHT_NOT_FOUND_ERROR, self.clock())
            return

        try:
            request = build_executor_input(insight, self.clock())
            job_logger.info("Processing job started", attempts=job.attempts)
            executor_result = await self.executor.generate(request)
        except ExecutorError as e:
            job_logger.warning(
                "Executor failed", error_type=e.__class__.__name__, attempts=job.attempts
            )
            await self.store.mark_retry_or_fail(session, job, str(e), self.clock())
            return
        except Exception:
            job_logger.exception("Unexpected executor failure", attempts=job.attempts)
            await self.store.mark_retry_or_fail(
                session, job, UNEXPECTED_ERROR_MESSAGE, self.clock()
            )
            return

        if await self.store.mark_succeeded(session, job, executor_result, self.clock()):
            job_logger.info("Processing job completed successfully")

    async def run_maintenance(self, session: AsyncSession) -> None:
        """Reconcile finished runs and return abandoned jobs to the queue."""
        now = self.clock()
        completed = await self.aggregator.reconcile(session, now)
        reclaimed = await self.store.reclaim_stale(session, now)
        if completed or reclaimed:
            logger.info(
                "Maintenance pass", runs_completed=len(completed), jobs_reclaimed=reclaimed
            )
