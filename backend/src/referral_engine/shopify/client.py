"""Shopify Admin REST API client.

Creates single-use discount codes for referral rewards and looks up
customers by email.

API Documentation: https://shopify.dev/docs/api/admin-rest
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import httpx

from referral_engine.logging_config import get_logger
from referral_engine.settings import settings

logger = get_logger(__name__)


class ShopifyError(Exception):
    """Error from the Shopify API."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _require(data: Any, *keys: str) -> Any:
    """Walk into a response body, raising ShopifyError if a key is missing."""
    value = data
    for key in keys:
        if not isinstance(value, dict) or value.get(key) is None:
            raise ShopifyError(f"Shopify response missing '{'.'.join(keys)}'")
        value = value[key]
    return value


@dataclass(frozen=True)
class DiscountResult:
    """Discount code created on Shopify."""
    price_rule_id: str
    discount_id: str
    code: str
    expires_at: datetime


class ShopifyClient:
    """Client for the Shopify Admin API.

    Every call is a single attempt: a transport error or non-2xx response
    raises ``ShopifyError`` and is not retried here.
    """

    def __init__(
        self,
        store: str | None = None,
        access_token: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Shopify client.

        Args:
            store: Store domain, e.g. ``shop.myshopify.com`` (defaults to settings)
            access_token: Admin API access token (defaults to settings)
            api_version: Admin API version (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            transport: Optional httpx transport, used in tests
        """
        self.store = store or settings.shopify_store
        self.access_token = access_token or settings.shopify_access_token or ""
        self.api_version = api_version or settings.shopify_api_version
        self.timeout = timeout or settings.request_timeout_seconds
        self.transport = transport

    @property
    def base_url(self) -> str:
        return f"https://{self.store}/admin/api/{self.api_version}"

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        """Make authenticated request to the Shopify Admin API.

        Args:
            method: HTTP method
            endpoint: API endpoint (without base URL)
            json_data: JSON body for POST/PUT
            params: Query parameters

        Returns:
            Response data
        """
        url = f"{self.base_url}{endpoint}"
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    json=json_data,
                    params=params,
                )
        except httpx.HTTPError as e:
            raise ShopifyError(f"Shopify request failed: {e}") from e

        if response.status_code >= 400:
            raise ShopifyError(
                f"Shopify API error {response.status_code}: {response.text}",
                response.status_code,
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise ShopifyError(
                f"Shopify returned invalid JSON: {e}",
                response.status_code,
            ) from e

    async def create_discount_code(
        self,
        code: str,
        amount: Decimal,
        value_type: str = "fixed_amount",
        min_order_value: Decimal = Decimal("0"),
        expiry_days: int = 90,
    ) -> DiscountResult:
        """Create a single-use discount code.

        Creates a price rule first, then the code under it.

        Args:
            code: Discount code customers will type
            amount: Discount value (currency amount or percent)
            value_type: ``fixed_amount`` or ``percentage``
            min_order_value: Minimum subtotal to redeem (0 = none)
            expiry_days: Days until the code stops working

        Returns:
            Created discount
        """
        starts_at = datetime.utcnow()
        expires_at = starts_at + timedelta(days=expiry_days)

        price_rule: dict[str, Any] = {
            "title": code,
            "target_type": "line_item",
            "target_selection": "all",
            "allocation_method": "across",
            "value_type": value_type,
            "value": f"-{amount}",
            "customer_selection": "all",
            "once_per_customer": True,
            "usage_limit": 1,
            "starts_at": starts_at.isoformat() + "Z",
            "ends_at": expires_at.isoformat() + "Z",
        }
        if min_order_value and min_order_value > 0:
            price_rule["prerequisite_subtotal_range"] = {
                "greater_than_or_equal_to": str(min_order_value),
            }

        rule_data = await self._request("POST", "/price_rules.json", {"price_rule": price_rule})
        price_rule_id = _require(rule_data, "price_rule", "id")

        discount_data = await self._request(
            "POST",
            f"/price_rules/{price_rule_id}/discount_codes.json",
            {"discount_code": {"code": code}},
        )
        discount_id = _require(discount_data, "discount_code", "id")
        discount = discount_data["discount_code"]

        logger.info("shopify_discount_created", code=code, price_rule_id=price_rule_id)

        return DiscountResult(
            price_rule_id=str(price_rule_id),
            discount_id=str(discount_id),
            code=discount.get("code", code),
            expires_at=expires_at,
        )

    async def get_customer_by_email(self, email: str) -> dict | None:
        """Look up a Shopify customer by email."""
        data = await self._request(
            "GET",
            "/customers/search.json",
            params={"query": f"email:{email}"},
        )
        customers = data.get("customers") if isinstance(data, dict) else None
        if not isinstance(customers, list) or not customers:
            return None
        return customers[0]
