"""Tests for the order-event conversion pipeline."""

import asyncio
from decimal import Decimal

import pytest
from conftest import order_payload

from referral_engine.referral.pipeline import ConversionPipeline
from referral_engine.referral.schemas import OrderEvent
from referral_engine.storage.models import Customer, FraudFlag, Referral, Reward
from referral_engine.shopify.client import ShopifyError
from referral_engine.storage.repo import ReferralRepository


def order(**kwargs) -> OrderEvent:
    return OrderEvent.model_validate(order_payload(**kwargs))


def created(pipeline: ConversionPipeline, event: OrderEvent):
    return asyncio.run(pipeline.process_order_created(event))


def all_rows(database, model):
    with database.session() as session:
        return session.query(model).order_by(model.id).all()


def get_customer(database, customer_id: int) -> Customer:
    with database.session() as session:
        return session.get(Customer, customer_id)


@pytest.fixture
def pipeline(database) -> ConversionPipeline:
    return ConversionPipeline(database=database, reward_flow="cooldown")


def test_scenario_a_clean_order_converts(database, pipeline, make_customer):
    referrer = make_customer()

    outcome = created(pipeline, order(code=referrer.referral_code, total_price="80.00"))

    assert outcome.status == "converted"
    assert outcome.flags == []
    referral = all_rows(database, Referral)[0]
    assert referral.status == "converted"
    assert referral.converted_at is not None
    assert referral.order_total == Decimal("80.00")
    assert referral.referee_email == "friend@example.com"
    assert get_customer(database, referrer.id).total_referrals == 1
    assert all_rows(database, FraudFlag) == []


def test_scenario_b_low_order_stays_pending(database, pipeline, make_customer):
    referrer = make_customer()

    outcome = created(pipeline, order(code=referrer.referral_code, total_price="30.00"))

    assert outcome.status == "pending"
    referral = all_rows(database, Referral)[0]
    assert referral.status == "pending"
    assert referral.converted_at is None

    flags = all_rows(database, FraudFlag)
    assert [(f.reason, f.referral_id, f.customer_id) for f in flags] == [
        ("low_order", referral.id, referrer.id)
    ]
    assert flags[0].details == "Auto-flagged: low_order"
    assert get_customer(database, referrer.id).total_referrals == 1


def test_scenario_c_fourth_referral_in_a_day_is_rate_limited(database, pipeline, make_customer, update_settings):
    update_settings(max_referrals_per_day=3)
    referrer = make_customer()

    outcomes = [
        created(pipeline, order(order_id=6000 + n, email=f"buyer{n}@example.com", code=referrer.referral_code))
        for n in range(4)
    ]

    assert [o.status for o in outcomes] == ["converted", "converted", "converted", "pending"]
    assert outcomes[3].flags == ["rate_limit"]
    assert [f.reason for f in all_rows(database, FraudFlag)] == ["rate_limit"]
    assert get_customer(database, referrer.id).total_referrals == 4


def test_scenario_e_duplicate_delivery_creates_one_referral(database, pipeline, make_customer):
    referrer = make_customer()
    event = order(order_id=7001, code=referrer.referral_code)

    first = created(pipeline, event)
    second = created(pipeline, event)

    assert first is not None
    assert second is None
    assert len(all_rows(database, Referral)) == 1
    assert get_customer(database, referrer.id).total_referrals == 1


def test_duplicate_past_the_existence_check_hits_the_constraint(database, pipeline, make_customer, monkeypatch):
    referrer = make_customer()
    event = order(
        order_id=7002,
        code=referrer.referral_code,
        customer={"id": 4242, "first_name": "Ben"},
    )
    # Simulate two deliveries racing past the fast-path lookup
    monkeypatch.setattr(ReferralRepository, "get_by_order_id", lambda self, order_id: None)

    assert created(pipeline, event) is not None
    assert created(pipeline, event) is None

    assert len(all_rows(database, Referral)) == 1
    assert get_customer(database, referrer.id).total_referrals == 1


def test_order_id_is_compared_as_string(database, pipeline, make_customer):
    referrer = make_customer()

    created(pipeline, order(order_id=8001, code=referrer.referral_code))
    assert created(pipeline, order(order_id="8001", code=referrer.referral_code)) is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"email": None, "code": "OKURA-TEST01"},
        {"code": None},
        {"code": "OKURA-NOPE99"},
    ],
    ids=["no-email", "no-code", "unknown-code"],
)
def test_orders_without_attribution_are_ignored(database, pipeline, make_customer, kwargs):
    make_customer(referral_code="OKURA-TEST01")

    assert created(pipeline, order(**kwargs)) is None
    assert all_rows(database, Referral) == []


def test_code_found_in_note(database, pipeline, make_customer):
    referrer = make_customer()

    outcome = created(pipeline, order(note=f"ref: {referrer.referral_code.lower()}"))

    assert outcome.referrer_id == referrer.id


def test_referee_auto_enrolled_from_order_customer(database, pipeline, make_customer):
    referrer = make_customer()

    outcome = created(
        pipeline,
        order(code=referrer.referral_code, customer={"id": 4242, "first_name": "Ben"}),
    )

    referee = get_customer(database, outcome.referee_id)
    assert referee.shopify_id == 4242
    assert referee.email == "friend@example.com"
    assert referee.name == "Ben"
    assert referee.referred_by_id == referrer.id
    assert referee.referral_code.startswith("OKURA-")
    assert referee.referral_code != referrer.referral_code


def test_existing_customer_is_used_as_referee(database, pipeline, make_customer):
    referrer = make_customer()
    existing = make_customer(email="friend@example.com")

    outcome = created(pipeline, order(code=referrer.referral_code, customer={"id": 1}))

    assert outcome.referee_id == existing.id
    assert len(all_rows(database, Customer)) == 2


def test_referee_unknown_without_customer_identity(database, pipeline, make_customer):
    referrer = make_customer()

    outcome = created(pipeline, order(code=referrer.referral_code, customer=None))

    assert outcome.referee_id is None
    assert len(all_rows(database, Customer)) == 1


class FakeCustomerLookup:
    """Storefront customer search returning a fixed answer."""

    def __init__(self, customer: dict | None = None, error: Exception | None = None):
        self.customer = customer
        self.error = error
        self.emails = []

    async def get_customer_by_email(self, email: str) -> dict | None:
        self.emails.append(email)
        if self.error:
            raise self.error
        return self.customer


def test_referee_identified_by_email_lookup(database, make_customer):
    lookup = FakeCustomerLookup({"id": 7070, "first_name": "Ben", "email": "friend@example.com"})
    pipeline = ConversionPipeline(database=database, reward_flow="cooldown", customer_lookup=lookup)
    referrer = make_customer()

    outcome = created(pipeline, order(code=referrer.referral_code, customer=None))

    assert lookup.emails == ["friend@example.com"]
    referee = get_customer(database, outcome.referee_id)
    assert referee.shopify_id == 7070
    assert referee.name == "Ben"
    assert referee.referred_by_id == referrer.id


def test_email_lookup_skipped_when_order_has_customer_id(database, make_customer):
    lookup = FakeCustomerLookup({"id": 7070})
    pipeline = ConversionPipeline(database=database, reward_flow="cooldown", customer_lookup=lookup)
    referrer = make_customer()

    outcome = created(pipeline, order(code=referrer.referral_code, customer={"id": 4242}))

    assert lookup.emails == []
    assert get_customer(database, outcome.referee_id).shopify_id == 4242


@pytest.mark.parametrize("lookup", [
    FakeCustomerLookup(None),
    FakeCustomerLookup(error=ShopifyError("Shopify API error 503", 503)),
])
def test_failed_email_lookup_still_records_referral(database, make_customer, lookup):
    pipeline = ConversionPipeline(database=database, reward_flow="cooldown", customer_lookup=lookup)
    referrer = make_customer()

    outcome = created(pipeline, order(code=referrer.referral_code, customer=None))

    assert outcome.status == "converted"
    assert outcome.referee_id is None
    assert len(all_rows(database, Referral)) == 1
    assert len(all_rows(database, Customer)) == 1


def test_self_referral_is_flagged(database, pipeline, make_customer):
    referrer = make_customer(email="anna@example.com")

    outcome = created(pipeline, order(email="Anna@Example.com", code=referrer.referral_code))

    assert outcome.status == "pending"
    assert outcome.flags == ["self_referral"]


def test_self_referral_allowed_when_rule_disabled(database, pipeline, make_customer, update_settings):
    update_settings(block_self_referral=False)
    referrer = make_customer(email="anna@example.com")

    outcome = created(pipeline, order(email="anna@example.com", code=referrer.referral_code))

    assert outcome.status == "converted"


def test_order_paid_converts_pending_referral(database, pipeline, make_customer):
    referrer = make_customer()
    created(pipeline, order(order_id=9001, code=referrer.referral_code, total_price="30.00"))

    paid = order(order_id=9001)
    assert asyncio.run(pipeline.process_order_paid(paid)) is True
    assert asyncio.run(pipeline.process_order_paid(paid)) is False

    referral = all_rows(database, Referral)[0]
    assert referral.status == "converted"
    assert referral.converted_at is not None


def test_order_paid_ignores_unknown_and_converted_orders(database, pipeline, make_customer):
    referrer = make_customer()
    created(pipeline, order(order_id=9002, code=referrer.referral_code))

    assert asyncio.run(pipeline.process_order_paid(order(order_id=9002))) is False
    assert asyncio.run(pipeline.process_order_paid(order(order_id=424242))) is False


def test_immediate_flow_issues_rewards(database, issuer, make_customer):
    pipeline = ConversionPipeline(issuer=issuer, database=database, reward_flow="immediate")
    referrer = make_customer()

    outcome = created(
        pipeline,
        order(code=referrer.referral_code, customer={"id": 4242, "first_name": "Ben"}),
    )

    referral = all_rows(database, Referral)[0]
    assert referral.id == outcome.referral_id
    assert referral.status == "rewarded"
    assert len(all_rows(database, Reward)) == 2
    assert get_customer(database, referrer.id).total_earned == Decimal("15.00")


def test_immediate_flow_rewards_on_payment(database, issuer, make_customer):
    pipeline = ConversionPipeline(issuer=issuer, database=database, reward_flow="immediate")
    referrer = make_customer()
    created(pipeline, order(order_id=9100, code=referrer.referral_code, total_price="30.00"))
    assert all_rows(database, Reward) == []

    asyncio.run(pipeline.process_order_paid(order(order_id=9100)))

    assert all_rows(database, Referral)[0].status == "rewarded"


def test_cooldown_flow_leaves_rewards_to_the_queue(database, issuer, discounts, make_customer):
    pipeline = ConversionPipeline(issuer=issuer, database=database, reward_flow="cooldown")
    referrer = make_customer()

    created(pipeline, order(code=referrer.referral_code))

    assert all_rows(database, Referral)[0].status == "converted"
    assert discounts.calls == []


def test_immediate_flow_requires_an_issuer(database):
    with pytest.raises(ValueError):
        ConversionPipeline(database=database, reward_flow="immediate")


def test_background_handlers_never_raise(database, pipeline, monkeypatch):
    async def boom(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(pipeline, "process_order_created", boom)
    monkeypatch.setattr(pipeline, "process_order_paid", boom)

    asyncio.run(pipeline.handle_order_created(order()))
    asyncio.run(pipeline.handle_order_paid(order()))
