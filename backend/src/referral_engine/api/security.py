"""Request authentication for webhooks and the admin portal."""

import base64
import hashlib
import hmac

from fastapi import Header, HTTPException, Request, status

from referral_engine.logging_config import get_logger
from referral_engine.settings import settings

logger = get_logger(__name__)


def compute_shopify_hmac(body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of a webhook body, as Shopify computes it."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


async def verify_shopify_webhook(
    request: Request,
    x_shopify_hmac_sha256: str | None = Header(default=None, alias="X-Shopify-Hmac-Sha256"),
) -> bytes:
    """Verify the webhook signature and return the raw body.

    Raises:
        HTTPException: 503 if no secret is configured, 401 if the signature
            is missing or does not match
    """
    if not settings.shopify_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks not configured",
        )

    if not x_shopify_hmac_sha256:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing HMAC header",
        )

    body = await request.body()
    expected = compute_shopify_hmac(body, settings.shopify_webhook_secret)

    if not hmac.compare_digest(expected.encode(), x_shopify_hmac_sha256.encode()):
        logger.warning("shopify_webhook_invalid_signature", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid HMAC signature",
        )

    return body


async def require_admin_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """Require the admin API key.

    Use this as a router dependency for admin endpoints.
    """
    if not settings.admin_api_key or not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    if not hmac.compare_digest(x_api_key.encode(), settings.admin_api_key.encode()):
        logger.warning("admin_api_key_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
