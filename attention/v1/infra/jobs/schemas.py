"""
Insight job and run Pydantic schemas.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from attention.v1.infra.jobs.models import JobStatus


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop: str
    product_id: str
    run_id: UUID | None = None
    status: str
    attempts: int
    last_error: str | None = None
    next_retry_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class JobListFilters(BaseModel):
    """Schema for job listing filters."""

    status: list[JobStatus] | None = Field(
        default=None, description="Filter by job status"
    )
    run_id: UUID | None = Field(default=None, description="Filter by run")
    limit: int = Field(
        default=50, ge=1, le=500, description="Maximum results to return"
    )
    offset: int = Field(default=0, ge=0, description="Results offset for pagination")


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    queue_depth: int  # queued + running
    waiting_retry: int


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID
    status: str
    deduplicated: bool = Field(
        default=False, description="Whether an active job already existed"
    )
    superseded_job_id: UUID | None = Field(
        default=None, description="Active job replaced by a forced regenerate"
    )


class RunResponse(BaseModel):
    """Schema for run API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop: str
    status: str
    products_queued: int
    succeeded: int
    failed: int
    created_at: datetime
    completed_at: datetime | None = None


class RunJobResponse(JobResponse):
    """Job row within a run detail, with the product title when known."""

    product_title: str | None = None


class RunDetailResponse(RunResponse):
    jobs: list[RunJobResponse] = Field(default_factory=list)


class BatchEnqueueRequest(BaseModel):
    """Schema for starting a batch run over several products."""

    product_ids: list[str] = Field(..., description="Products to generate insights for")


class BatchEnqueueResponse(BaseModel):
    run_id: UUID
    products_queued: int
    jobs_created: int
