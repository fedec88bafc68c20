"""Tests for the Shopify Admin API client."""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from referral_engine.shopify.client import ShopifyClient, ShopifyError


def make_client(handler) -> ShopifyClient:
    return ShopifyClient(
        store="shop.myshopify.com",
        access_token="shpat_abc",
        api_version="2024-01",
        transport=httpx.MockTransport(handler),
    )


def test_create_discount_code():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/price_rules.json"):
            return httpx.Response(201, json={"price_rule": {"id": 555}})
        return httpx.Response(201, json={"discount_code": {"id": 777, "code": "OKREF-ABCDEFGH"}})

    result = asyncio.run(
        make_client(handler).create_discount_code(
            "OKREF-ABCDEFGH",
            Decimal("15.00"),
            min_order_value=Decimal("50.00"),
            expiry_days=90,
        )
    )

    assert result.price_rule_id == "555"
    assert result.discount_id == "777"
    assert result.code == "OKREF-ABCDEFGH"

    rule_request, code_request = requests
    assert str(rule_request.url) == "https://shop.myshopify.com/admin/api/2024-01/price_rules.json"
    assert rule_request.headers["X-Shopify-Access-Token"] == "shpat_abc"

    rule = json.loads(rule_request.content)["price_rule"]
    assert rule["value"] == "-15.00"
    assert rule["value_type"] == "fixed_amount"
    assert rule["usage_limit"] == 1
    assert rule["once_per_customer"] is True
    assert rule["prerequisite_subtotal_range"] == {"greater_than_or_equal_to": "50.00"}

    assert code_request.url.path == "/admin/api/2024-01/price_rules/555/discount_codes.json"
    assert json.loads(code_request.content) == {"discount_code": {"code": "OKREF-ABCDEFGH"}}


def test_create_discount_without_minimum():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        if request.url.path.endswith("/price_rules.json"):
            return httpx.Response(201, json={"price_rule": {"id": 1}})
        return httpx.Response(201, json={"discount_code": {"id": 2, "code": "OKNEW-AAAAAAAA"}})

    asyncio.run(make_client(handler).create_discount_code("OKNEW-AAAAAAAA", Decimal("10"), "percentage"))

    rule = bodies[0]["price_rule"]
    assert rule["value_type"] == "percentage"
    assert "prerequisite_subtotal_range" not in rule


def test_error_response_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"errors": {"code": ["must be unique"]}})

    with pytest.raises(ShopifyError) as exc_info:
        asyncio.run(make_client(handler).create_discount_code("OKREF-ABCDEFGH", Decimal("15")))

    assert exc_info.value.status_code == 422


def test_transport_error_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused")

    with pytest.raises(ShopifyError) as exc_info:
        asyncio.run(make_client(handler).get_customer_by_email("anna@example.com"))

    assert len(calls) == 1
    assert exc_info.value.status_code is None


def test_get_customer_by_email():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["query"] == "email:anna@example.com"
        return httpx.Response(200, json={"customers": [{"id": 9, "email": "anna@example.com"}]})

    customer = asyncio.run(make_client(handler).get_customer_by_email("anna@example.com"))

    assert customer["id"] == 9


def test_get_customer_by_email_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"customers": []})

    assert asyncio.run(make_client(handler).get_customer_by_email("x@example.com")) is None



def test_success_without_price_rule_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    with pytest.raises(ShopifyError, match="price_rule"):
        asyncio.run(make_client(handler).create_discount_code("OKREF-ABCDEFGH", Decimal("15")))


def test_success_without_discount_id_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/price_rules.json"):
            return httpx.Response(201, json={"price_rule": {"id": 555}})
        return httpx.Response(201, json={"discount_code": {"code": "OKREF-ABCDEFGH"}})

    with pytest.raises(ShopifyError, match="discount_code.id"):
        asyncio.run(make_client(handler).create_discount_code("OKREF-ABCDEFGH", Decimal("15")))


def test_invalid_json_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>maintenance</html>")

    with pytest.raises(ShopifyError) as exc_info:
        asyncio.run(make_client(handler).create_discount_code("OKREF-ABCDEFGH", Decimal("15")))

    assert exc_info.value.status_code == 200


def test_get_customer_by_email_unexpected_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"customers": None})

    assert asyncio.run(make_client(handler).get_customer_by_email("x@example.com")) is None
