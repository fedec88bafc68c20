"""Tests for the fraud evaluator rules."""

from datetime import datetime, timedelta
from decimal import Decimal

from referral_engine.referral.fraud import ConversionAttempt, FraudEvaluator
from referral_engine.referral.schemas import ProgramConfig
from referral_engine.storage.models import ReferralStatus
from referral_engine.storage.repo import ClickRepository, ReferralRepository


def evaluate(database, attempt: ConversionAttempt, config: ProgramConfig | None = None):
    with database.session() as session:
        return FraudEvaluator(session).evaluate(attempt, config or ProgramConfig())


def add_clicks(database, code: str, ip: str, count: int, created_at: datetime | None = None):
    with database.session() as session:
        clicks = ClickRepository(session)
        for _ in range(count):
            click = clicks.create(referral_code=code, ip_address=ip)
            if created_at is not None:
                click.created_at = created_at


def add_referrals(database, referrer_id: int, count: int, start: int = 0):
    with database.session() as session:
        referrals = ReferralRepository(session)
        for n in range(start, start + count):
            referrals.create_if_absent(
                referrer_id=referrer_id,
                external_order_id=f"order-{n}",
                status=ReferralStatus.CONVERTED,
                referee_email=f"buyer{n}@example.com",
            )


def attempt(code: str, email: str = "friend@example.com", ip: str | None = None, total: str | None = "80"):
    return ConversionAttempt(
        referrer_code=code,
        referee_email=email,
        referee_ip=ip,
        order_total=Decimal(total) if total is not None else None,
    )


def test_clean_attempt_passes(database, make_customer):
    referrer = make_customer()
    verdict = evaluate(database, attempt(referrer.referral_code))
    assert verdict.passed
    assert verdict.flags == []


def test_self_referral_is_case_insensitive(database, make_customer):
    referrer = make_customer(email="anna@example.com")
    verdict = evaluate(database, attempt(referrer.referral_code, email="ANNA@Example.com"))
    assert not verdict.passed
    assert verdict.flags == ["self_referral"]


def test_self_referral_disabled(database, make_customer):
    referrer = make_customer(email="anna@example.com")
    verdict = evaluate(
        database,
        attempt(referrer.referral_code, email="anna@example.com"),
        ProgramConfig(block_self_referral=False),
    )
    assert verdict.passed


def test_same_ip_needs_more_than_three_clicks(database, make_customer):
    referrer = make_customer()
    add_clicks(database, referrer.referral_code, "10.0.0.1", 3)

    assert evaluate(database, attempt(referrer.referral_code, ip="10.0.0.1")).passed

    add_clicks(database, referrer.referral_code, "10.0.0.1", 1)
    verdict = evaluate(database, attempt(referrer.referral_code, ip="10.0.0.1"))
    assert verdict.flags == ["same_ip"]


def test_same_ip_ignores_old_clicks_and_other_ips(database, make_customer):
    referrer = make_customer()
    add_clicks(database, referrer.referral_code, "10.0.0.1", 5, created_at=datetime.utcnow() - timedelta(hours=25))
    add_clicks(database, referrer.referral_code, "10.0.0.2", 5)

    assert evaluate(database, attempt(referrer.referral_code, ip="10.0.0.1")).passed


def test_same_ip_without_ip_or_disabled(database, make_customer):
    referrer = make_customer()
    add_clicks(database, referrer.referral_code, "10.0.0.1", 5)

    assert evaluate(database, attempt(referrer.referral_code, ip=None)).passed
    assert evaluate(
        database,
        attempt(referrer.referral_code, ip="10.0.0.1"),
        ProgramConfig(flag_same_ip=False),
    ).passed


def test_low_order(database, make_customer):
    referrer = make_customer()
    verdict = evaluate(database, attempt(referrer.referral_code, total="30"))
    assert verdict.flags == ["low_order"]


def test_low_order_boundary_and_missing_total(database, make_customer):
    referrer = make_customer()
    assert evaluate(database, attempt(referrer.referral_code, total="50.00")).passed
    assert evaluate(database, attempt(referrer.referral_code, total=None)).passed


def test_rate_limit(database, make_customer):
    referrer = make_customer()
    config = ProgramConfig(max_referrals_per_day=3)
    add_referrals(database, referrer.id, 2)

    assert evaluate(database, attempt(referrer.referral_code), config).passed

    add_referrals(database, referrer.id, 1, start=2)
    verdict = evaluate(database, attempt(referrer.referral_code), config)
    assert verdict.flags == ["rate_limit"]


def test_multiple_flags_fire_together(database, make_customer):
    referrer = make_customer(email="anna@example.com")
    add_clicks(database, referrer.referral_code, "10.0.0.1", 4)
    add_referrals(database, referrer.id, 5)

    verdict = evaluate(
        database,
        attempt(referrer.referral_code, email="anna@example.com", ip="10.0.0.1", total="10"),
    )

    assert verdict.flags == ["self_referral", "same_ip", "low_order", "rate_limit"]
    assert not verdict.passed


def test_reads_current_data_each_time(database, make_customer):
    referrer = make_customer()
    config = ProgramConfig(max_referrals_per_day=1)

    assert evaluate(database, attempt(referrer.referral_code), config).passed
    add_referrals(database, referrer.id, 1)
    assert not evaluate(database, attempt(referrer.referral_code), config).passed
