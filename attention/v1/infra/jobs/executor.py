"""
AI executors that turn product insight signals into merchant explanations.

Backends: stub (deterministic, no network) and openai (chat completions).
The worker only sees the InsightExecutor protocol; executors raise
UpstreamError or InvalidResponse and never return partial output.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from attention.config.logging import get_logger
from attention.config.settings import Settings
from attention.v1.core.exceptions import InvalidResponse, UpstreamError
from attention.v1.core.registries import InsightExecutor, executor_registry
from attention.v1.insights.models import ProductInsight
from attention.v1.insights.signals import (
    InventoryStatus,
    days_since_updated,
    ensure_utc,
)

logger = get_logger(__name__)

SUMMARY_MAX_LENGTH = 1000
NEXT_STEPS_MAX = 3
INVALID_RESPONSE_MESSAGE = "AI response was invalid or too long. Try again."


class ActionType(str, Enum):
    IMAGERY = "IMAGERY"
    PRICING = "PRICING"
    COPY = "COPY"
    MERCHANDISING = "MERCHANDISING"
    SEO = "SEO"
    INVENTORY = "INVENTORY"


class ExecutorInput(BaseModel):
    """Fixed projection of an insight handed to the executor."""

    title: str
    vendor: str | None = None
    product_type: str | None = None
    days_since_updated: int
    status: str
    recommendation: str
    last_updated_at: str
    product_status: str | None = None
    has_featured_image: bool | None = None
    inventory_status: str | None = None
    inventory_available: int | None = None

    @property
    def is_out_of_stock(self) -> bool:
        return self.inventory_status == InventoryStatus.OUT_OF_STOCK.value


class InsightExplanation(BaseModel):
    """Validated executor output."""

    summary: str = Field(..., min_length=1, max_length=SUMMARY_MAX_LENGTH)
    action_type: ActionType
    next_steps: list[str] = Field(default_factory=list, max_length=NEXT_STEPS_MAX)
    caveats: str | None = None

    def explanation_text(self) -> str:
        """Summary and caveats as shown to the merchant."""
        return " ".join(part for part in (self.summary, self.caveats) if part)


@dataclass
class ExecutorResult:
    output: InsightExplanation
    model: str


def build_executor_input(insight: ProductInsight, now: datetime) -> ExecutorInput:
    """Project an insight row onto the executor input contract."""
    last_updated_at = ensure_utc(insight.last_product_updated_at)
    return ExecutorInput(
        title=insight.product_title,
        days_since_updated=days_since_updated(last_updated_at, now),
        status=insight.status,
        recommendation=insight.recommendation,
        last_updated_at=last_updated_at.isoformat(),
        product_status=insight.product_status,
        has_featured_image=insight.has_featured_image,
        inventory_status=insight.inventory_status,
        inventory_available=insight.inventory_available,
    )


def build_prompt(request: ExecutorInput) -> str:
    """Prompt asking for a single JSON object, with inventory-specific rules."""
    action_types = ", ".join(a.value for a in ActionType)

    lines = [
        f"- Title: {request.title}",
        f"- Vendor: {request.vendor or 'n/a'}",
        f"- Product type: {request.product_type or 'n/a'}",
        f"- Days since last updated: {request.days_since_updated}",
        f"- Status: {request.status}",
        f"- Recommendation: {request.recommendation}",
        f"- Last updated: {request.last_updated_at}",
    ]
    optional = (
        ("Product status", request.product_status),
        ("Has featured image", request.has_featured_image),
        ("Inventory status", request.inventory_status),
        ("Inventory available", request.inventory_available),
    )
    lines.extend(f"- {label}: {value}" for label, value in optional if value is not None)
    product_data = "\n".join(lines)

    if request.is_out_of_stock:
        rules = (
            "- actionType: MUST be INVENTORY (product is out of stock).\n"
            "- Focus ONLY on inventory and availability: restock, update availability, "
            "hide from storefront if unavailable. Do NOT suggest copywriting or imagery.\n"
            "- nextSteps: 1-3 short items about inventory, restock or visibility.\n"
            "- caveats: optional one short sentence if data is insufficient; otherwise omit.\n"
            "- summary: 2-4 sentences explaining the out-of-stock situation."
        )
    elif request.inventory_status == InventoryStatus.LOW.value:
        rules = (
            "- actionType: prefer INVENTORY or MERCHANDISING. Mention replenishment "
            "or pausing ads if relevant.\n"
            "- nextSteps: 1-3 short items. No new product copy.\n"
            "- caveats: optional one short sentence if data is insufficient; otherwise omit.\n"
            "- summary: 2-4 sentences explaining why it is flagged and what to do next."
        )
    else:
        rules = (
            "- summary: 2-4 sentences explaining why it is flagged and what to do next.\n"
            f"- actionType: exactly one of: {action_types}\n"
            "- nextSteps: 1-3 short items (array of strings). No new product copy.\n"
            "- caveats: optional one short sentence if data is insufficient; otherwise omit.\n"
            "- If data is insufficient, say so briefly and suggest safe checks."
        )

    return (
        "You are an assistant for Shopify store merchants. Based only on the "
        "following product insight data, explain why this product is flagged and "
        "what type of action the merchant should consider. Do NOT write new product "
        "descriptions or copy. Output only valid JSON.\n\n"
        f"Product data (use only this):\n{product_data}\n\n"
        f"Rules:\n{rules}\n\n"
        "Return only a single JSON object with keys: summary, actionType, nextSteps, "
        "caveats (optional). No markdown, no code fence."
    )


def extract_json(content: str) -> str | None:
    """Slice the outermost {...} block out of a model reply."""
    trimmed = content.strip()
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start == -1 or end <= start:
        return None
    return trimmed[start : end + 1]


def parse_explanation(
    raw_json: str, force_action_type: ActionType | None = None
) -> InsightExplanation:
    """
    Validate a model reply.

    Unknown action types fall back to MERCHANDISING, non-string next steps are
    dropped and only the first three kept. A missing or oversized summary is
    an InvalidResponse.
    """
    try:
        raw = json.loads(raw_json)
    except json.JSONDecodeError as e:
        raise InvalidResponse(INVALID_RESPONSE_MESSAGE) from e
    if not isinstance(raw, dict):
        raise InvalidResponse(INVALID_RESPONSE_MESSAGE)

    summary = raw.get("summary") if isinstance(raw.get("summary"), str) else ""
    if not summary or len(summary) > SUMMARY_MAX_LENGTH:
        raise InvalidResponse(INVALID_RESPONSE_MESSAGE)

    action_type = raw.get("actionType")
    if force_action_type is not None:
        action_type = force_action_type.value
    if action_type not in ActionType._value2member_map_:
        action_type = ActionType.MERCHANDISING.value

    raw_steps = raw.get("nextSteps")
    next_steps = (
        [step for step in raw_steps if isinstance(step, str)][:NEXT_STEPS_MAX]
        if isinstance(raw_steps, list)
        else []
    )
    caveats = raw.get("caveats") if isinstance(raw.get("caveats"), str) else None

    return InsightExplanation(
        summary=summary,
        action_type=ActionType(action_type),
        next_steps=next_steps,
        caveats=caveats,
    )


class StubExecutor:
    """
    Deterministic executor for development and tests.

    Builds the explanation from the insight's own recommendation, so no
    network access or credentials are needed.
    """

    model_name = "stub-explainer-v1"

    async def generate(self, request: ExecutorInput) -> ExecutorResult:
        if request.inventory_status in (
            InventoryStatus.OUT_OF_STOCK.value,
            InventoryStatus.LOW.value,
        ):
            action_type = ActionType.INVENTORY
        elif request.has_featured_image is False:
            action_type = ActionType.IMAGERY
        elif request.days_since_updated > 60:
            action_type = ActionType.COPY
        else:
            action_type = ActionType.MERCHANDISING

        summary = (
            f"{request.title} was last updated {request.days_since_updated} days ago "
            f"and is marked {request.status.lower().replace('_', ' ')}. "
            f"{request.recommendation}"
        )
        output = InsightExplanation(
            summary=summary[:SUMMARY_MAX_LENGTH],
            action_type=action_type,
            next_steps=["Review the product in the admin."],
        )
        return ExecutorResult(output=output, model=self.model_name)


class OpenAIExecutor:
    """
    OpenAI chat completions executor.

    The client is created lazily so a missing key only fails the jobs that
    need it, as a retryable UpstreamError.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self.settings.openai_api_key
            if not api_key or len(api_key) < 10:
                raise UpstreamError(
                    "OPENAI_API_KEY is not set. Add it to your .env to enable AI insights."
                )
            # Retries are owned by the job queue.
            self._client = AsyncOpenAI(
                api_key=api_key,
                timeout=self.settings.openai_timeout_s,
                max_retries=0,
            )
        return self._client

    async def generate(self, request: ExecutorInput) -> ExecutorResult:
        client = self._get_client()

        try:
            response = await client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[{"role": "user", "content": build_prompt(request)}],
                max_tokens=500,
                temperature=0.3,
            )
        except openai.APIStatusError as e:
            raise UpstreamError(f"OpenAI API error ({e.status_code})") from e
        except openai.APITimeoutError as e:
            raise UpstreamError("OpenAI request timed out") from e
        except openai.APIError as e:
            raise UpstreamError(f"OpenAI request failed: {e.__class__.__name__}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise UpstreamError("OpenAI returned no content.")

        output = parse_explanation(
            extract_json(content) or content,
            ActionType.INVENTORY if request.is_out_of_stock else None,
        )
        return ExecutorResult(
            output=output, model=response.model or self.settings.openai_model
        )


def get_executor(settings: Settings) -> InsightExecutor:
    """Executor selected by the EXECUTOR setting."""
    return executor_registry.get(settings.executor.value)
