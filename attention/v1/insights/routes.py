"""
Product insight endpoints: signal evaluation and AI generation requests.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.settings import Settings, SettingsDep
from attention.infra.database import get_session
from attention.v1.core.exceptions import NotFoundError, create_success_response
from attention.v1.core.security import PrincipalDep, ShopPrincipal
from attention.v1.infra.jobs.schemas import BatchEnqueueRequest
from attention.v1.infra.jobs.service import EnqueueService
from attention.v1.insights.schemas import (
    EvaluateRequest,
    InsightListResponse,
    InsightResponse,
)
from attention.v1.insights.service import InsightService
from attention.v1.insights.signals import InsightStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/insights", tags=["insights"])


@router.post("/evaluate", response_model=dict)
async def evaluate_products(
    request: EvaluateRequest,
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Evaluate catalog product nodes and upsert their insights."""

    insights = await InsightService().upsert_from_products(
        session, principal.shop, request.products
    )
    response_data = InsightListResponse(
        insights=[InsightResponse.from_insight(i) for i in insights],
        total=len(insights),
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_insights(
    status: InsightStatus | None = Query(default=None, description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=250, description="Maximum results"),
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """List the shop's insights, most neglected first."""

    insights = await InsightService().list_insights(
        session, principal.shop, status=status, limit=limit
    )
    response_data = InsightListResponse(
        insights=[InsightResponse.from_insight(i) for i in insights],
        total=len(insights),
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.post("/batch", response_model=dict)
async def batch_generate(
    request: BatchEnqueueRequest,
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Start a run generating explanations for up to batch_max products."""

    result = await EnqueueService(settings).start_batch(
        session, principal.shop, request.product_ids
    )

    logger.info(
        "Batch run started via API",
        extra={
            "run_id": str(result.run_id),
            "shop": principal.shop,
            "products_queued": result.products_queued,
            "jobs_created": result.jobs_created,
        },
    )
    return create_success_response(data=result.model_dump(mode="json"))


@router.post("/{product_id:path}/generate", response_model=dict)
async def generate_insight(
    product_id: str,
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Queue AI generation unless a job for the product is already active."""
    return await _enqueue(session, settings, principal.shop, product_id, force=False)


@router.post("/{product_id:path}/regenerate", response_model=dict)
async def regenerate_insight(
    product_id: str,
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Queue AI generation, superseding any active job for the product."""
    return await _enqueue(session, settings, principal.shop, product_id, force=True)


@router.get("/{product_id:path}", response_model=dict)
async def get_insight(
    product_id: str,
    principal: ShopPrincipal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    insight = await InsightService().get_insight(session, principal.shop, product_id)
    if insight is None:
        raise NotFoundError("Insight not found", {"product_id": product_id})
    return create_success_response(
        data=InsightResponse.from_insight(insight).model_dump(mode="json")
    )


async def _enqueue(
    session: AsyncSession,
    settings: Settings,
    shop: str,
    product_id: str,
    force: bool,
) -> dict[str, Any]:
    insight = await InsightService().get_insight(session, shop, product_id)
    if insight is None:
        raise NotFoundError("Insight not found", {"product_id": product_id})

    result = await EnqueueService(settings).enqueue_one(
        session, shop, product_id, force=force
    )

    logger.info(
        "Generation requested via API",
        extra={
            "job_id": str(result.job_id),
            "shop": shop,
            "product_id": product_id,
            "force": force,
            "deduplicated": result.deduplicated,
        },
    )
    message = "Generation already in progress" if result.deduplicated else None
    return create_success_response(data=result.model_dump(mode="json"), message=message)
