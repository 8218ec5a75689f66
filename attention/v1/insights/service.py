"""
Insight record upserts from product catalog nodes.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from attention.v1.infra.jobs.models import utcnow
from attention.v1.insights.models import ProductInsight
from attention.v1.insights.signals import InsightStatus, ProductEvaluation, evaluate_product

logger = logging.getLogger(__name__)


class InsightService:
    """Keeps product_insights in step with the latest catalog signals."""

    async def upsert_from_products(
        self,
        session: AsyncSession,
        shop: str,
        products: list[dict[str, Any]],
        now: datetime | None = None,
    ) -> list[ProductInsight]:
        """
        Evaluate product nodes and insert or refresh their insight rows.

        Signal columns are overwritten; the ai_* mirror belongs to the job
        worker and is left alone. Nodes without an id are skipped.
        """
        now = now or utcnow()
        evaluations = [evaluate_product(product, now) for product in products]
        evaluations = [e for e in evaluations if e.product_id]
        if not evaluations:
            return []

        result = await session.execute(
            select(ProductInsight).where(
                ProductInsight.shop == shop,
                ProductInsight.product_id.in_([e.product_id for e in evaluations]),
            )
        )
        existing = {insight.product_id: insight for insight in result.scalars().all()}

        insights = []
        for evaluation in evaluations:
            insight = existing.get(evaluation.product_id)
            if insight is None:
                insight = ProductInsight(shop=shop, product_id=evaluation.product_id)
                session.add(insight)
                existing[evaluation.product_id] = insight
            self._apply(insight, evaluation, now)
            insights.append(insight)

        await session.commit()

        logger.info(
            "Insights evaluated",
            extra={
                "shop": shop,
                "evaluated": len(insights),
                "neglected": sum(
                    1 for i in insights if i.status == InsightStatus.NEGLECTED.value
                ),
            },
        )
        return insights

    async def list_insights(
        self,
        session: AsyncSession,
        shop: str,
        status: InsightStatus | None = None,
        limit: int = 50,
    ) -> list[ProductInsight]:
        """Insights most in need of attention first."""
        query = select(ProductInsight).where(ProductInsight.shop == shop)
        if status:
            query = query.where(ProductInsight.status == status.value)
        result = await session.execute(
            query.order_by(desc(ProductInsight.attention_score)).limit(limit)
        )
        return list(result.scalars().all())

    async def get_insight(
        self, session: AsyncSession, shop: str, product_id: str
    ) -> ProductInsight | None:
        result = await session.execute(
            select(ProductInsight)
            .where(
                ProductInsight.shop == shop,
                ProductInsight.product_id == product_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(
        insight: ProductInsight, evaluation: ProductEvaluation, now: datetime
    ) -> None:
        insight.product_title = evaluation.title
        insight.attention_score = evaluation.days_since_updated
        insight.status = evaluation.status.value
        insight.recommendation = evaluation.recommendation
        insight.last_product_updated_at = evaluation.last_updated_at
        insight.last_evaluated_at = now
        insight.product_status = evaluation.product_status
        insight.has_featured_image = evaluation.has_featured_image
        insight.inventory_status = evaluation.inventory_status.value
        insight.inventory_available = evaluation.inventory_available
        insight.ai_confidence = evaluation.confidence_label
        insight.confidence_explanation = evaluation.confidence_explanation
