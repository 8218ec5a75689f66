"""
Enqueue service for insight generation jobs and batch runs.
"""

import logging
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.settings import Settings
from attention.v1.core.exceptions import ValidationError
from attention.v1.infra.jobs.models import InsightJob, JobStatus, Run, RunStatus, utcnow
from attention.v1.infra.jobs.schemas import BatchEnqueueResponse, JobEnqueueResponse
from attention.v1.infra.jobs.store import JobStore
from attention.v1.insights.models import ProductInsight

logger = logging.getLogger(__name__)

# A forced regenerate re-reads the active job when a worker moved it between
# our read and the supersede; past this many tries the caller is told the job
# is still active.
SUPERSEDE_ATTEMPTS = 3


class EnqueueService:
    """Service for creating insight jobs with one-active-job-per-product dedupe."""

    def __init__(self, settings: Settings, store: JobStore | None = None):
        self.settings = settings
        self.store = store or JobStore(settings)

    async def enqueue_one(
        self,
        session: AsyncSession,
        shop: str,
        product_id: str,
        run_id: UUID | None = None,
        force: bool = False,
        *,
        commit: bool = True,
    ) -> JobEnqueueResponse:
        """
        Enqueue an insight job for one product.

        Args:
            session: Database session
            shop: Shop domain owning the product
            product_id: Product identifier
            run_id: Batch run the job belongs to, if any
            force: Supersede an active job instead of reporting it
            commit: Commit when done; otherwise the insert stays in the
                caller's transaction behind a savepoint

        Returns:
            Job enqueue response; deduplicated when an active job is kept
        """
        superseded_job_id = None

        for _ in range(SUPERSEDE_ATTEMPTS):
            existing = await self.store.find_active(session, shop, product_id)
            if existing is None:
                break
            if not force:
                logger.info(
                    "Job deduplicated",
                    extra={
                        "job_id": str(existing.id),
                        "shop": shop,
                        "product_id": product_id,
                    },
                )
                return self._deduplicated(existing)
            if await self.store.supersede(session, existing, commit=False):
                superseded_job_id = existing.id
                break
            if commit:
                await session.commit()
        else:
            existing = await self.store.find_active(session, shop, product_id)
            if existing is not None:
                return self._deduplicated(existing)

        try:
            if commit:
                job = await self._insert_queued(session, shop, product_id, run_id)
                await session.commit()
            else:
                async with session.begin_nested():
                    job = await self._insert_queued(session, shop, product_id, run_id)
        except IntegrityError:
            # Another producer created the active job between our read and insert.
            if commit:
                await session.rollback()
            existing = await self.store.find_active(session, shop, product_id)
            if existing is None:
                raise
            return self._deduplicated(existing)

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job.id),
                "shop": shop,
                "product_id": product_id,
                "run_id": str(run_id) if run_id else None,
                "superseded_job_id": (
                    str(superseded_job_id) if superseded_job_id else None
                ),
            },
        )
        return JobEnqueueResponse(
            job_id=job.id,
            status=job.status,
            deduplicated=False,
            superseded_job_id=superseded_job_id,
        )

    async def _insert_queued(
        self,
        session: AsyncSession,
        shop: str,
        product_id: str,
        run_id: UUID | None,
    ) -> InsightJob:
        job = await self.store.create(
            session, shop, product_id, run_id=run_id, commit=False
        )
        await session.execute(
            update(ProductInsight)
            .where(
                ProductInsight.shop == shop,
                ProductInsight.product_id == product_id,
            )
            .values(ai_status=JobStatus.QUEUED.value, ai_error=None)
            .execution_options(synchronize_session=False)
        )
        return job

    async def enqueue_batch(
        self,
        session: AsyncSession,
        shop: str,
        product_ids: list[str],
        run_id: UUID | None,
        *,
        commit: bool = True,
    ) -> int:
        """Enqueue each product independently; returns the number of jobs created."""
        created = 0
        for product_id in product_ids:
            response = await self.enqueue_one(
                session, shop, product_id, run_id=run_id, force=False, commit=commit
            )
            if not response.deduplicated:
                created += 1
        return created

    async def create_run(
        self,
        session: AsyncSession,
        shop: str,
        products_queued: int,
        *,
        commit: bool = True,
    ) -> Run:
        run = Run(
            shop=shop,
            status=RunStatus.RUNNING.value,
            products_queued=products_queued,
            succeeded=0,
            failed=0,
            created_at=utcnow(),
        )
        session.add(run)
        if commit:
            await session.commit()
            await session.refresh(run)
        else:
            await session.flush()

        logger.info(
            "Run created",
            extra={"run_id": str(run.id), "shop": shop, "products_queued": products_queued},
        )
        return run

    async def start_batch(
        self, session: AsyncSession, shop: str, product_ids: list[str]
    ) -> BatchEnqueueResponse:
        """
        Create a run and enqueue one job per distinct product.

        The run and its jobs commit together, so a reconcile never sees the
        run before its children exist.
        """
        unique_ids = list(dict.fromkeys(pid for pid in product_ids if pid))
        if not unique_ids:
            raise ValidationError("At least one product id is required")
        if len(unique_ids) > self.settings.batch_max:
            raise ValidationError(
                f"A batch may contain at most {self.settings.batch_max} products",
                {"batch_max": self.settings.batch_max, "received": len(unique_ids)},
            )

        run = await self.create_run(session, shop, len(unique_ids), commit=False)
        run_id = run.id
        created = await self.enqueue_batch(
            session, shop, unique_ids, run_id, commit=False
        )
        await session.commit()
        return BatchEnqueueResponse(
            run_id=run_id, products_queued=len(unique_ids), jobs_created=created
        )

    @staticmethod
    def _deduplicated(job: InsightJob) -> JobEnqueueResponse:
        return JobEnqueueResponse(job_id=job.id, status=job.status, deduplicated=True)
