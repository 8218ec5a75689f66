"""
Idempotency gate for Shopify webhook deliveries.

A delivery id is processed at most once: the webhook_events row is the only
record of it. The app/uninstalled purge removes every row the app holds for
the shop in a single transaction.
"""

from collections.abc import Callable
from enum import Enum

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.logging import get_logger
from attention.config.settings import Settings
from attention.v1.core.exceptions import PurgeFailure, UnauthorizedError
from attention.v1.core.sessions import ShopSession
from attention.v1.infra.jobs.store import JobStore
from attention.v1.insights.models import ProductInsight
from attention.v1.webhooks.models import WebhookEvent

logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    PROCESSED = "PROCESSED"
    DUPLICATE = "DUPLICATE"
    PURGE_FAILED = "PURGE_FAILED"


class WebhookGate:
    """De-duplicates deliveries, verifies the sender and runs the purge."""

    def __init__(self, settings: Settings, store: JobStore | None = None):
        self.settings = settings
        self.store = store or JobStore(settings)

    async def handle(
        self,
        session: AsyncSession,
        delivery_id: str | None,
        topic: str,
        shop: str,
        verify: Callable[[], bool],
    ) -> WebhookOutcome:
        """
        Process one app/uninstalled delivery.

        Raises UnauthorizedError when verify() rejects the sender. A purge
        failure is reported, not raised: the event row is already recorded,
        so a redelivery of the same id will be acknowledged as a duplicate.
        """
        if delivery_id and await self._already_recorded(session, delivery_id):
            logger.info(
                "Duplicate webhook delivery", webhook_id=delivery_id, topic=topic, shop=shop
            )
            return WebhookOutcome.DUPLICATE

        if not verify():
            logger.warning("Webhook signature rejected", topic=topic, shop=shop)
            raise UnauthorizedError("Webhook signature verification failed")

        if delivery_id:
            session.add(WebhookEvent(webhook_id=delivery_id, topic=topic, shop=shop))
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent delivery of the same id recorded it first.
                await session.rollback()
                logger.info(
                    "Duplicate webhook delivery", webhook_id=delivery_id, topic=topic, shop=shop
                )
                return WebhookOutcome.DUPLICATE
        else:
            logger.warning("Webhook without delivery id, not de-duplicated", shop=shop)

        try:
            counts = await self.purge_shop(session, shop)
        except PurgeFailure as e:
            logger.error(
                "Shop purge failed",
                shop=shop,
                webhook_id=delivery_id,
                reason=e.details.get("reason"),
            )
            return WebhookOutcome.PURGE_FAILED

        logger.info("Shop purged", shop=shop, webhook_id=delivery_id, **counts)
        return WebhookOutcome.PROCESSED

    async def purge_shop(self, session: AsyncSession, shop: str) -> dict[str, int]:
        """Delete jobs, runs, insights and sessions of a shop atomically."""
        try:
            counts = await self.store.bulk_delete_by_shop(session, shop, commit=False)
            insights_result = await session.execute(
                delete(ProductInsight).where(ProductInsight.shop == shop)
            )
            sessions_result = await session.execute(
                delete(ShopSession).where(ShopSession.shop == shop)
            )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise PurgeFailure(shop, e.__class__.__name__) from e

        counts["insights"] = insights_result.rowcount
        counts["sessions"] = sessions_result.rowcount
        return counts

    async def _already_recorded(self, session: AsyncSession, delivery_id: str) -> bool:
        result = await session.execute(
            select(WebhookEvent.id).where(WebhookEvent.webhook_id == delivery_id)
        )
        return result.first() is not None
