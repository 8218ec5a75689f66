"""
Insight job and run models for background AI generation.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from attention.infra.database import Base
from attention.v1.core.exceptions import InvalidJobTransition


class JobStatus(str, Enum):
    """Job status enumeration."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class RunStatus(str, Enum):
    """Run status enumeration."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING)

# Allowed job status changes. Terminal states have no way out.
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.SUCCEEDED, JobStatus.QUEUED, JobStatus.FAILED}
    ),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

_ACTIVE_SQL = "status IN ('QUEUED', 'RUNNING')"


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in JOB_TRANSITIONS[current]


def ensure_transition(current: JobStatus | str, target: JobStatus) -> None:
    """Raise InvalidJobTransition unless current -> target is allowed."""
    current = JobStatus(current)
    if not can_transition(current, target):
        raise InvalidJobTransition(current.value, target.value)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Run(Base):
    """A batch of insight jobs created together, with aggregate counters."""

    __tablename__ = "runs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=RunStatus.RUNNING.value,
        comment="Run status: RUNNING|COMPLETED",
    )
    products_queued: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Batch size at creation"
    )
    succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('RUNNING', 'COMPLETED')", name="runs_status_check"
        ),
        CheckConstraint(
            "succeeded + failed <= products_queued", name="runs_counters_check"
        ),
        Index("ix_runs_shop", "shop"),
    )


class InsightJob(Base):
    """
    One unit of AI generation work for a single (shop, product).

    updated_at doubles as the mutation fence: every state change is a
    conditional UPDATE on the value last read, so concurrent workers can never
    both claim the same job.
    """

    __tablename__ = "insight_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(Text, nullable=False)
    product_id: Mapped[str] = mapped_column(Text, nullable=False)
    run_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("runs.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.QUEUED.value,
        comment="Job status: QUEUED|RUNNING|SUCCEEDED|FAILED",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of claims made"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message, truncated"
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="Earliest time a retried job may be claimed",
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('QUEUED', 'RUNNING', 'SUCCEEDED', 'FAILED')",
            name="insight_jobs_status_check",
        ),
        CheckConstraint("attempts >= 0", name="insight_jobs_attempts_check"),
        Index("ix_insight_jobs_shop_status", "shop", "status"),
        Index("ix_insight_jobs_run_id", "run_id"),
        Index(
            "ix_insight_jobs_active_product",
            "shop",
            "product_id",
            unique=True,
            postgresql_where=text(_ACTIVE_SQL),
            sqlite_where=text(_ACTIVE_SQL),
        ),
    )

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    def is_active(self) -> bool:
        """Check if job is in an active state (queued, running)."""
        return self.job_status in ACTIVE_JOB_STATUSES
