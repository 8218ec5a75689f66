"""
Product insight records.

The insight row belongs to the product dashboard; the job worker keeps the
ai_* columns in step with the authoritative job status.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from attention.infra.database import Base
from attention.v1.infra.jobs.models import utcnow


class ProductInsight(Base):
    """Attention insight for a single product of a shop."""

    __tablename__ = "product_insights"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(Text, nullable=False)
    product_id: Mapped[str] = mapped_column(Text, nullable=False)
    product_title: Mapped[str] = mapped_column(Text, nullable=False)

    # Signals
    attention_score: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Days since the product was last updated"
    )
    status: Mapped[str] = mapped_column(
        Text, nullable=False, comment="NEGLECTED|HEALTHY|RECENTLY_UPDATED"
    )
    recommendation: Mapped[str] = mapped_column(Text, nullable=False)
    reasons_json: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="JSON list of suggested next steps"
    )
    last_product_updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    last_evaluated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    product_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    has_featured_image: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    inventory_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    inventory_available: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ai_confidence: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="High|Medium|Low"
    )
    confidence_explanation: Mapped[str | None] = mapped_column(Text, nullable=True)

    # AI generation mirror
    ai_status: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Mirror of the latest job status"
    )
    ai_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_action_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_generated_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    ai_model: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("shop", "product_id", name="uq_product_insights_shop_product"),
        Index("ix_product_insights_shop", "shop"),
    )
