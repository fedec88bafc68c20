"""Shared fixtures for the referral engine tests."""

import os

# Must be set before referral_engine is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["SHOPIFY_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["SHOPIFY_STORE"] = "test-store.myshopify.com"
os.environ["SHOPIFY_ACCESS_TOKEN"] = "shpat_test"

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest

from referral_engine.referral.rewards import RewardIssuer
from referral_engine.shopify.client import DiscountResult, ShopifyError
from referral_engine.storage.db import db
from referral_engine.storage.models import Customer
from referral_engine.storage.repo import CustomerRepository, SettingsRepository


class FakeDiscounts:
    """In-memory stand-in for the Shopify discount API.

    Codes starting with a prefix listed in ``fail_prefixes`` fail with a
    ShopifyError, the way a rejected API call would.
    """

    def __init__(self, fail_prefixes: tuple[str, ...] = ()):
        self.fail_prefixes = fail_prefixes
        self.calls: list[dict[str, Any]] = []

    async def create_discount_code(
        self,
        code: str,
        amount: Decimal,
        value_type: str = "fixed_amount",
        min_order_value: Decimal = Decimal("0"),
        expiry_days: int = 90,
    ) -> DiscountResult:
        self.calls.append({
            "code": code,
            "amount": amount,
            "value_type": value_type,
            "min_order_value": min_order_value,
            "expiry_days": expiry_days,
        })
        if self.fail_prefixes and code.startswith(self.fail_prefixes):
            raise ShopifyError("Shopify API error 422: rejected", 422)

        number = len(self.calls)
        return DiscountResult(
            price_rule_id=f"rule-{number}",
            discount_id=f"discount-{number}",
            code=code,
            expires_at=datetime.utcnow() + timedelta(days=expiry_days),
        )


@pytest.fixture(autouse=True)
def database():
    """Fresh in-memory schema for every test."""
    db.drop_tables()
    db.create_tables()
    yield db
    db.drop_tables()


@pytest.fixture
def discounts() -> FakeDiscounts:
    return FakeDiscounts()


@pytest.fixture
def issuer(discounts, database) -> RewardIssuer:
    return RewardIssuer(discounts, database)


@pytest.fixture
def make_customer(database):
    """Create enrolled customers with predictable codes."""
    counter = {"n": 0}

    def _make(
        email: str | None = None,
        referral_code: str | None = None,
        name: str = "Anna Referrer",
        shopify_id: int | None = None,
    ) -> Customer:
        counter["n"] += 1
        n = counter["n"]
        with database.session() as session:
            return CustomerRepository(session).create(
                shopify_id=shopify_id or 1000 + n,
                email=email or f"customer{n}@example.com",
                referral_code=referral_code or f"OKURA-TEST{n:02d}",
                name=name,
            )

    return _make


@pytest.fixture
def update_settings(database):
    """Change program settings for a test."""

    def _update(**changes: Any) -> None:
        with database.session() as session:
            SettingsRepository(session).update(changes)

    return _update


def order_payload(
    order_id: int | str = 5001,
    email: str | None = "friend@example.com",
    total_price: str | None = "80.00",
    code: str | None = None,
    note: str | None = None,
    customer: dict | None = None,
    browser_ip: str | None = None,
) -> dict[str, Any]:
    """Minimal orders/create webhook body."""
    payload: dict[str, Any] = {
        "id": order_id,
        "email": email,
        "total_price": total_price,
        "note_attributes": [],
        "note": note,
        "customer": customer,
        "browser_ip": browser_ip,
    }
    if code:
        payload["note_attributes"].append({"name": "referral_code", "value": code})
    return payload
