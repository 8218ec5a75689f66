"""
Pure helpers that turn raw product signals into insight classifications.

Nothing here performs I/O. The same inputs always produce the same output so
scores stay stable between page loads and are easy to test.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class InventoryStatus(str, Enum):
    """Inventory classification derived from available quantity."""

    OUT_OF_STOCK = "OUT_OF_STOCK"
    LOW = "LOW"
    OK = "OK"
    UNKNOWN = "UNKNOWN"


class InsightStatus(str, Enum):
    """Attention classification of a product."""

    NEGLECTED = "NEGLECTED"
    HEALTHY = "HEALTHY"
    RECENTLY_UPDATED = "RECENTLY_UPDATED"


LOW_INVENTORY_THRESHOLD = 10
MAX_VARIANTS_SUMMED = 10

CONFIDENCE_BASE = 0.50
CONFIDENCE_SIGNAL_WEIGHT = 0.15
CONFIDENCE_FRESHNESS_WEIGHT = 0.05
CONFIDENCE_MIN = 0.10
CONFIDENCE_MAX = 0.95
FRESHNESS_WINDOW_DAYS = 365

# Order in which missing signals are named.
MISSING_SIGNAL_PHRASES = {
    "status": "product status",
    "image": "featured image",
    "inventory": "inventory data",
}


@dataclass(frozen=True)
class ConfidenceInput:
    has_status: bool
    has_image: bool
    has_inventory: bool
    days_since_updated: int


@dataclass
class ProductEvaluation:
    """Everything the insight record needs from one product node."""

    product_id: str
    title: str
    last_updated_at: datetime
    days_since_updated: int
    status: InsightStatus
    recommendation: str
    product_status: str | None
    has_featured_image: bool
    inventory_status: InventoryStatus
    inventory_available: int | None
    confidence: float
    confidence_label: str
    confidence_explanation: str | None
    missing_signals: list[str] = field(default_factory=list)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def classify_inventory(total_available: int | None) -> InventoryStatus:
    """Classify available quantity into an inventory status."""
    if total_available is None:
        return InventoryStatus.UNKNOWN
    if total_available <= 0:
        return InventoryStatus.OUT_OF_STOCK
    if total_available <= LOW_INVENTORY_THRESHOLD:
        return InventoryStatus.LOW
    return InventoryStatus.OK


def compute_confidence(signals: ConfidenceInput) -> float:
    """Deterministic confidence score in [0.10, 0.95] based on signal presence."""
    score = CONFIDENCE_BASE
    for present in (signals.has_status, signals.has_image, signals.has_inventory):
        if present:
            score += CONFIDENCE_SIGNAL_WEIGHT
    if 0 <= signals.days_since_updated < FRESHNESS_WINDOW_DAYS:
        score += CONFIDENCE_FRESHNESS_WEIGHT
    return round(min(CONFIDENCE_MAX, max(CONFIDENCE_MIN, score)), 2)


def confidence_label(score: float) -> str:
    if score >= 0.80:
        return "High"
    if score >= 0.55:
        return "Medium"
    return "Low"


def explain_low_confidence(missing_signals: list[str]) -> str:
    """
    Sentence naming the missing signals.

    Names outside MISSING_SIGNAL_PHRASES are ignored, so a list with no known
    signal gives an empty string rather than a sentence with nothing in it.
    """
    parts = [
        phrase
        for signal, phrase in MISSING_SIGNAL_PHRASES.items()
        if signal in missing_signals
    ]
    if not parts:
        return ""
    return f"Low confidence: missing {' and '.join(parts)}."


def days_since_updated(updated_at: datetime, now: datetime | None = None) -> int:
    """Whole days elapsed since the product was last updated."""
    now = ensure_utc(now or datetime.now(UTC))
    return (now - ensure_utc(updated_at)).days


def status_and_recommendation(
    days: int, inventory_status: InventoryStatus
) -> tuple[InsightStatus, str]:
    """Attention status and a one-line recommendation for the merchant."""
    if inventory_status == InventoryStatus.OUT_OF_STOCK:
        return (
            InsightStatus.NEGLECTED,
            "Out of stock. Restock or update availability to keep the product visible.",
        )
    if inventory_status == InventoryStatus.LOW:
        return (
            InsightStatus.NEGLECTED,
            "Low inventory. Review replenishment or consider pausing ads until restocked.",
        )
    if days <= 7:
        return InsightStatus.RECENTLY_UPDATED, "Recently updated, no action needed."
    if days <= 60:
        return InsightStatus.HEALTHY, "Consider a quick review in the next few weeks."
    return (
        InsightStatus.NEGLECTED,
        "Update description, images, or pricing to re-engage customers.",
    )


def total_inventory(product: dict[str, Any]) -> int | None:
    """Total available quantity, falling back to the sum of the first variants."""
    total = product.get("totalInventory")
    if isinstance(total, int) and not isinstance(total, bool):
        return total

    variants = product.get("variants")
    nodes = variants.get("nodes") if isinstance(variants, dict) else None
    if not nodes:
        return None

    summed = 0
    for variant in nodes[:MAX_VARIANTS_SUMMED]:
        if not isinstance(variant, dict):
            continue
        quantity = variant.get("inventoryQuantity")
        if isinstance(quantity, int) and not isinstance(quantity, bool):
            summed += quantity
    return summed


def _has_featured_image(product: dict[str, Any]) -> bool:
    for key in ("featuredMedia", "featuredImage"):
        media = product.get(key)
        if isinstance(media, dict) and media.get("id") is not None:
            return True
    return False


def _parse_timestamp(value: Any, fallback: datetime) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return fallback
    return fallback


def evaluate_product(
    product: dict[str, Any], now: datetime | None = None
) -> ProductEvaluation:
    """
    Evaluate one product node from the catalog feed.

    Missing fields degrade to UNKNOWN or False instead of raising; a product
    without a usable updatedAt is treated as updated now.
    """
    now = ensure_utc(now or datetime.now(UTC))
    last_updated_at = _parse_timestamp(product.get("updatedAt"), now)
    days = days_since_updated(last_updated_at, now)

    raw_status = product.get("status")
    product_status = raw_status if isinstance(raw_status, str) else None
    has_status = raw_status is not None
    has_image = _has_featured_image(product)

    available = total_inventory(product)
    tracks_inventory = product.get("tracksInventory")
    if tracks_inventory is False:
        has_inventory = True
    else:
        has_inventory = available is not None

    inventory_status = classify_inventory(available)
    status, recommendation = status_and_recommendation(days, inventory_status)

    missing = []
    if not has_status:
        missing.append("status")
    if not has_image:
        missing.append("image")
    if not has_inventory:
        missing.append("inventory")

    score = compute_confidence(
        ConfidenceInput(
            has_status=has_status,
            has_image=has_image,
            has_inventory=has_inventory,
            days_since_updated=days,
        )
    )
    label = confidence_label(score)

    return ProductEvaluation(
        product_id=str(product.get("id") or ""),
        title=product.get("title") or "Untitled",
        last_updated_at=last_updated_at,
        days_since_updated=days,
        status=status,
        recommendation=recommendation,
        product_status=product_status,
        has_featured_image=has_image,
        inventory_status=inventory_status,
        inventory_available=available,
        confidence=score,
        confidence_label=label,
        confidence_explanation=(
            explain_low_confidence(missing) if label == "Low" else None
        ),
        missing_signals=missing,
    )
