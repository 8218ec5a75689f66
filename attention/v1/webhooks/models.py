from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from attention.infra.database import Base
from attention.v1.infra.jobs.models import utcnow


class WebhookEvent(Base):
    """Record of a processed webhook delivery, keyed by its external id."""

    __tablename__ = "webhook_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    webhook_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    shop: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (Index("ix_webhook_events_shop", "shop"),)
