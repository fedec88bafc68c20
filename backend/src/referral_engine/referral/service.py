"""Referral service for enrollment, click tracking and customer stats."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from referral_engine.logging_config import get_logger
from referral_engine.referral.codes import (
    generate_discount_code,
    generate_referral_code,
    generate_unique_code,
)
from referral_engine.referral.errors import NotFoundError
from referral_engine.referral.rewards import DiscountService
from referral_engine.referral.schemas import ClickEvent, ProgramConfig
from referral_engine.settings import settings
from referral_engine.shopify.client import DiscountResult, ShopifyError
from referral_engine.storage.db import Database, db
from referral_engine.storage.models import Customer
from referral_engine.storage.repo import (
    ClickRepository,
    CustomerRepository,
    ReferralRepository,
    RewardRepository,
    SettingsRepository,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class Enrollment:
    """Result of enrolling a customer."""
    customer: Customer
    already_enrolled: bool


def referral_url(code: str) -> str:
    """Storefront link that carries a referral code."""
    return f"{settings.storefront_url}?ref={code}"


class ReferralService:
    """Storefront-facing referral operations."""

    def __init__(
        self,
        database: Database | None = None,
        discounts: DiscountService | None = None,
    ):
        """Initialize referral service.

        Args:
            database: Database (defaults to the global instance)
            discounts: Discount service, needed only for welcome discounts
        """
        self.database = database or db
        self.discounts = discounts

    def enroll(self, shopify_id: int, email: str, name: str | None = None) -> Enrollment:
        """Get existing referral code or enroll the customer with a new one.

        Args:
            shopify_id: Storefront customer ID
            email: Customer email
            name: Display name

        Returns:
            Enrollment with the customer record
        """
        with self.database.session() as session:
            customers = CustomerRepository(session)

            existing = customers.get_by_shopify_id(shopify_id) or customers.get_by_email(email)
            if existing:
                return Enrollment(customer=existing, already_enrolled=True)

            code = generate_unique_code(
                lambda: generate_referral_code(settings.referral_code_prefix),
                customers.code_exists,
                settings.referral_code_prefix,
            )
            customer = customers.create_or_get(
                shopify_id=shopify_id,
                email=email,
                name=name,
                referral_code=code,
            )
            if customer.referral_code != code:
                return Enrollment(customer=customer, already_enrolled=True)

            logger.info("customer_enrolled", customer_id=customer.id, code=code)
            return Enrollment(customer=customer, already_enrolled=False)

    def validate_code(self, code: str) -> Customer | None:
        """Return the customer owning a referral code, if any."""
        if not code:
            return None

        with self.database.session() as session:
            return CustomerRepository(session).get_by_code(code)

    def get_stats(self, shopify_id: int) -> dict[str, Any]:
        """Get referral statistics for an enrolled customer.

        Raises:
            NotFoundError: If the customer is not enrolled
        """
        with self.database.session() as session:
            customer = CustomerRepository(session).get_by_shopify_id(shopify_id)
            if customer is None:
                raise NotFoundError("Not enrolled")

            breakdown = ReferralRepository(session).status_counts(referrer_id=customer.id)
            rewards = RewardRepository(session).list_recent_for_customer(customer.id, limit=10)

            return {
                "referral_code": customer.referral_code,
                "referral_url": referral_url(customer.referral_code),
                "total_referrals": customer.total_referrals,
                "total_earned": customer.total_earned,
                "breakdown": breakdown,
                "recent_rewards": [
                    {
                        "discount_code": reward.discount_code,
                        "amount": reward.amount,
                        "status": reward.status,
                        "expires_at": reward.expires_at.isoformat() if reward.expires_at else None,
                    }
                    for reward in rewards
                ],
            }

    async def track_click(self, event: ClickEvent) -> DiscountResult | None:
        """Record a click on a referral link.

        When welcome discounts are enabled, also creates a small discount for
        the visitor. A failure there is logged and does not undo the click.

        Returns:
            Welcome discount, if one was created

        Raises:
            NotFoundError: If the referral code does not exist
        """
        with self.database.session() as session:
            if CustomerRepository(session).get_by_code(event.referral_code) is None:
                raise NotFoundError("Invalid referral code")

            ClickRepository(session).create(
                referral_code=event.referral_code,
                ip_address=event.ip,
                user_agent=event.user_agent,
                referrer_url=event.referrer_url,
            )
            config = ProgramConfig.from_row(SettingsRepository(session).get())

        logger.info("click_tracked", code=event.referral_code, ip=event.ip)

        if not settings.welcome_discount_enabled or self.discounts is None:
            return None

        return await self._create_welcome_discount(event.referral_code, config)

    async def _create_welcome_discount(self, referral_code: str, config: ProgramConfig) -> DiscountResult | None:
        prefix = settings.welcome_discount_prefix
        try:
            discount = await self.discounts.create_discount_code(
                code=generate_discount_code(prefix),
                amount=Decimal(str(settings.welcome_discount_amount)),
                value_type="fixed_amount",
                min_order_value=config.min_order_value,
                expiry_days=config.code_expiry_days,
            )
        except ShopifyError as e:
            logger.error("welcome_discount_failed", code=referral_code, error=str(e))
            return None

        logger.info("welcome_discount_created", code=referral_code, discount_code=discount.code)
        return discount
