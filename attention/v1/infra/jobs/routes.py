"""
Insight job monitoring endpoints.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.settings import Settings, SettingsDep
from attention.infra.database import get_session
from attention.v1.core.exceptions import NotFoundError, create_success_response
from attention.v1.core.security import PrincipalDep, ShopPrincipal
from attention.v1.infra.jobs.models import JobStatus
from attention.v1.infra.jobs.schemas import (
    JobListResponse,
    JobResponse,
    JobStatsResponse,
)
from attention.v1.infra.jobs.store import JobStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    run_id: UUID | None = Query(default=None, description="Filter by run"),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List the shop's jobs, newest first."""

    jobs, total = await JobStore(settings).list_jobs(
        session,
        shop=principal.shop,
        statuses=status,
        run_id=run_id,
        limit=limit,
        offset=offset,
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats", response_model=dict)
async def get_job_stats(
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Queue statistics for the shop."""

    stats = await JobStore(settings).get_job_stats(session, shop=principal.shop)
    return create_success_response(data=JobStatsResponse(**stats).model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await JobStore(settings).get_job(session, job_id, shop=principal.shop)
    if not job:
        raise NotFoundError("Job not found", {"job_id": str(job_id)})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )
