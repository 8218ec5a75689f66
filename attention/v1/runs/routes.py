"""
Batch run endpoints.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.settings import Settings, SettingsDep
from attention.infra.database import get_session
from attention.v1.core.exceptions import NotFoundError, create_success_response
from attention.v1.core.security import PrincipalDep, ShopPrincipal
from attention.v1.infra.jobs.schemas import (
    JobResponse,
    RunDetailResponse,
    RunJobResponse,
    RunResponse,
)
from attention.v1.infra.jobs.store import JobStore
from attention.v1.insights.models import ProductInsight

router = APIRouter(prefix="/runs", tags=["runs"])


@router.get("", response_model=dict)
async def list_runs(
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Most recent runs of the shop."""

    runs = await JobStore(settings).list_runs(
        session, shop=principal.shop, limit=settings.run_list_limit
    )
    return create_success_response(
        data={"runs": [RunResponse.model_validate(r).model_dump(mode="json") for r in runs]}
    )


@router.get("/{run_id}", response_model=dict)
async def get_run(
    run_id: UUID,
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Run counters with its jobs and their product titles."""

    store = JobStore(settings)
    run = await store.get_run(session, run_id, shop=principal.shop)
    if not run:
        raise NotFoundError("Run not found", {"run_id": str(run_id)})

    jobs, _ = await store.list_jobs(
        session, shop=principal.shop, run_id=run.id, limit=settings.batch_max * 10
    )
    titles = await _product_titles(session, principal.shop, [j.product_id for j in jobs])

    detail = RunDetailResponse(
        **RunResponse.model_validate(run).model_dump(),
        jobs=[
            RunJobResponse(
                **JobResponse.model_validate(job).model_dump(),
                product_title=titles.get(job.product_id),
            )
            for job in jobs
        ],
    )
    return create_success_response(data=detail.model_dump(mode="json"))


async def _product_titles(
    session: AsyncSession, shop: str, product_ids: list[str]
) -> dict[str, str]:
    if not product_ids:
        return {}
    result = await session.execute(
        select(ProductInsight.product_id, ProductInsight.product_title).where(
            ProductInsight.shop == shop,
            ProductInsight.product_id.in_(product_ids),
        )
    )
    return {product_id: title for product_id, title in result.all()}
