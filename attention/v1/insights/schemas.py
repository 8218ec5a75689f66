"""
Product insight Pydantic schemas.
"""

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from attention.v1.insights.models import ProductInsight


class EvaluateRequest(BaseModel):
    """Product nodes as returned by the catalog query."""

    products: list[dict[str, Any]] = Field(
        ..., description="Product nodes (id, title, updatedAt, status, ...)"
    )


class InsightResponse(BaseModel):
    """Schema for insight API responses."""

    id: UUID
    shop: str
    product_id: str
    product_title: str
    attention_score: int
    status: str
    recommendation: str
    next_steps: list[str] = Field(default_factory=list)
    last_product_updated_at: datetime
    last_evaluated_at: datetime
    product_status: str | None = None
    has_featured_image: bool | None = None
    inventory_status: str | None = None
    inventory_available: int | None = None
    ai_confidence: str | None = None
    confidence_explanation: str | None = None

    ai_status: str | None = None
    ai_error: str | None = None
    ai_explanation: str | None = None
    ai_action_type: str | None = None
    ai_generated_at: datetime | None = None
    ai_model: str | None = None

    @classmethod
    def from_insight(cls, insight: ProductInsight) -> "InsightResponse":
        next_steps: list[str] = []
        if insight.reasons_json:
            try:
                decoded = json.loads(insight.reasons_json)
            except ValueError:
                decoded = []
            if isinstance(decoded, list):
                next_steps = [step for step in decoded if isinstance(step, str)]

        return cls(
            id=insight.id,
            shop=insight.shop,
            product_id=insight.product_id,
            product_title=insight.product_title,
            attention_score=insight.attention_score,
            status=insight.status,
            recommendation=insight.recommendation,
            next_steps=next_steps,
            last_product_updated_at=insight.last_product_updated_at,
            last_evaluated_at=insight.last_evaluated_at,
            product_status=insight.product_status,
            has_featured_image=insight.has_featured_image,
            inventory_status=insight.inventory_status,
            inventory_available=insight.inventory_available,
            ai_confidence=insight.ai_confidence,
            confidence_explanation=insight.confidence_explanation,
            ai_status=insight.ai_status,
            ai_error=insight.ai_error,
            ai_explanation=insight.ai_explanation,
            ai_action_type=insight.ai_action_type,
            ai_generated_at=insight.ai_generated_at,
            ai_model=insight.ai_model,
        )


class InsightListResponse(BaseModel):
    insights: list[InsightResponse]
    total: int
