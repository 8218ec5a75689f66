import base64
import hashlib
import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from attention.config.settings import AuthMode, settings


@dataclass
class ShopPrincipal:
    """Represents the shop on whose behalf a request is made."""

    shop: str


async def get_principal(
    x_shop_domain: str | None = Header(None, alias="X-Shop-Domain"),
) -> ShopPrincipal:
    """
    Dependency injection function to get the current shop.

    Behavior based on AUTH_MODE:
    - none: Returns the configured dev shop
    - dev: Trusts the X-Shop-Domain header
    """
    if settings.auth_mode == AuthMode.NONE:
        return ShopPrincipal(shop=settings.dev_shop)
    elif settings.auth_mode == AuthMode.DEV:
        if not x_shop_domain:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-Shop-Domain header is required in dev auth mode",
            )
        return ShopPrincipal(shop=x_shop_domain)
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


def compute_webhook_hmac(body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 digest of a webhook body, as sent by Shopify."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_webhook_hmac(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check a webhook signature header against the raw request body."""
    if not secret or not signature:
        return False
    expected = compute_webhook_hmac(body, secret)
    return hmac.compare_digest(signature, expected)


# Convenience type alias for dependency injection
PrincipalDep = Depends(get_principal)
