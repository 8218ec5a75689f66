"""
Shopify webhook endpoints.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from attention.config.settings import Settings, SettingsDep
from attention.infra.database import get_session
from attention.v1.core.exceptions import ValidationError, create_success_response
from attention.v1.core.security import verify_webhook_hmac
from attention.v1.webhooks.service import WebhookGate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/app/uninstalled", response_model=dict)
async def app_uninstalled(
    request: Request,
    x_shopify_webhook_id: str | None = Header(None, alias="X-Shopify-Webhook-Id"),
    x_shopify_topic: str | None = Header(None, alias="X-Shopify-Topic"),
    x_shopify_shop_domain: str | None = Header(None, alias="X-Shopify-Shop-Domain"),
    x_shopify_hmac_sha256: str | None = Header(None, alias="X-Shopify-Hmac-Sha256"),
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Purge all data of an uninstalled shop, once per delivery id."""

    if not x_shopify_shop_domain:
        raise ValidationError("X-Shopify-Shop-Domain header is required")

    body = await request.body()
    gate = WebhookGate(settings)
    outcome = await gate.handle(
        session,
        delivery_id=x_shopify_webhook_id,
        topic=x_shopify_topic or "app/uninstalled",
        shop=x_shopify_shop_domain,
        verify=lambda: verify_webhook_hmac(
            body, x_shopify_hmac_sha256, settings.shopify_api_secret
        ),
    )

    logger.info(
        "Webhook acknowledged",
        extra={
            "shop": x_shopify_shop_domain,
            "webhook_id": x_shopify_webhook_id,
            "outcome": outcome.value,
        },
    )
    return create_success_response(data={"outcome": outcome.value})
