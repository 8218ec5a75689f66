from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.settings import Settings, SettingsDep
from attention.infra.database import get_session
from attention.v1.core.exceptions import create_success_response
from attention.v1.infra.jobs.models import ACTIVE_JOB_STATUSES, InsightJob, JobStatus, Run, RunStatus
from attention.v1.insights.signals import ensure_utc

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Insight job queue status."""

    queue_depth: int = 0
    running_jobs: int = 0
    stale_jobs_count: int = 0
    oldest_queued_age_seconds: int | None = None
    open_runs: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check endpoint with database and queue status."""

    timestamp = datetime.now(UTC).isoformat()
    overall_ok = True

    db_health = await _check_database_health(session)
    if not db_health.connected:
        overall_ok = False

    # Queue status is informational and never fails the overall check
    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session, settings)
        except Exception:
            queue_health = QueueHealth()

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "executor": settings.executor.value,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession, settings: Settings) -> QueueHealth:
    """Queue depth, stale RUNNING jobs and age of the oldest waiting job."""
    now = datetime.now(UTC)

    queue_depth_result = await session.execute(
        select(func.count(InsightJob.id)).where(
            InsightJob.status.in_([s.value for s in ACTIVE_JOB_STATUSES])
        )
    )
    running_result = await session.execute(
        select(func.count(InsightJob.id)).where(
            InsightJob.status == JobStatus.RUNNING.value
        )
    )

    stale_cutoff = now - timedelta(seconds=settings.job_stale_after_s)
    stale_result = await session.execute(
        select(func.count(InsightJob.id)).where(
            InsightJob.status == JobStatus.RUNNING.value,
            InsightJob.updated_at < stale_cutoff,
        )
    )

    oldest_result = await session.execute(
        select(func.min(InsightJob.created_at)).where(
            InsightJob.status == JobStatus.QUEUED.value
        )
    )
    oldest_queued = oldest_result.scalar()
    oldest_age = None
    if oldest_queued:
        oldest_age = int((now - ensure_utc(oldest_queued)).total_seconds())

    open_runs_result = await session.execute(
        select(func.count(Run.id)).where(Run.status == RunStatus.RUNNING.value)
    )

    return QueueHealth(
        queue_depth=queue_depth_result.scalar() or 0,
        running_jobs=running_result.scalar() or 0,
        stale_jobs_count=stale_result.scalar() or 0,
        oldest_queued_age_seconds=oldest_age,
        open_runs=open_runs_result.scalar() or 0,
    )
