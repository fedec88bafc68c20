"""Conversion pipeline: turns order events into referral records.

Runs after the webhook has already been acknowledged, so nothing here can
report a failure back to the sender. Duplicate deliveries of the same order
are absorbed by the unique order-id constraint on referrals.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from referral_engine.logging_config import get_logger
from referral_engine.referral.codes import generate_referral_code, generate_unique_code
from referral_engine.referral.extractor import extract_referral_code
from referral_engine.referral.fraud import ConversionAttempt, FraudEvaluator
from referral_engine.referral.rewards import RewardIssuer
from referral_engine.referral.schemas import OrderCustomer, OrderEvent, ProgramConfig
from referral_engine.referral.states import initial_status
from referral_engine.settings import settings
from referral_engine.shopify.client import ShopifyError
from referral_engine.storage.db import Database, db
from referral_engine.storage.models import Customer, ReferralStatus
from referral_engine.storage.repo import (
    CustomerRepository,
    FraudFlagRepository,
    ReferralRepository,
    SettingsRepository,
)

logger = get_logger(__name__)

REWARD_FLOW_COOLDOWN = "cooldown"
REWARD_FLOW_IMMEDIATE = "immediate"


class CustomerLookup(Protocol):
    """Finds a storefront customer by email."""

    async def get_customer_by_email(self, email: str) -> dict | None:
        ...


@dataclass(frozen=True)
class ConversionOutcome:
    """Referral created for an order."""
    referral_id: int
    referrer_id: int
    referee_id: int | None
    status: str
    flags: list[str] = field(default_factory=list)


class ConversionPipeline:
    """Orchestrates order-created and order-paid events."""

    def __init__(
        self,
        issuer: RewardIssuer | None = None,
        database: Database | None = None,
        reward_flow: str | None = None,
        code_prefix: str | None = None,
        customer_lookup: CustomerLookup | None = None,
    ):
        """Initialize the pipeline.

        Args:
            issuer: Reward issuer, required for the immediate reward flow
            database: Database (defaults to the global instance)
            reward_flow: ``cooldown`` or ``immediate`` (defaults to settings)
            code_prefix: Referral code prefix (defaults to settings)
            customer_lookup: Storefront customer search, used to identify
                referees of orders that carry no customer block
        """
        self.issuer = issuer
        self.database = database or db
        self.reward_flow = reward_flow or settings.reward_flow
        self.code_prefix = code_prefix or settings.referral_code_prefix
        self.customer_lookup = customer_lookup

        if self.reward_flow == REWARD_FLOW_IMMEDIATE and issuer is None:
            raise ValueError("The immediate reward flow needs a reward issuer")

    async def process_order_created(
        self,
        order: OrderEvent,
        now: datetime | None = None,
    ) -> ConversionOutcome | None:
        """Attribute a new order to a referral code.

        Args:
            order: Validated order event
            now: Processing time (defaults to current UTC time)

        Returns:
            Outcome, or None when the order is skipped (no email, no code,
            unknown code or already processed)
        """
        now = now or datetime.utcnow()

        if not order.email:
            logger.debug("order_skipped_no_email", order_id=order.id)
            return None

        code = extract_referral_code(order, self.code_prefix)
        if not code:
            logger.debug("order_skipped_no_code", order_id=order.id)
            return None

        order = await self._with_customer_identity(order)

        with self.database.session() as session:
            customers = CustomerRepository(session)
            referrals = ReferralRepository(session)

            referrer = customers.get_by_code(code)
            if referrer is None:
                logger.info("order_unknown_referral_code", order_id=order.id, code=code)
                return None

            # Fast path; the unique constraint below is what actually guarantees it
            if referrals.get_by_order_id(order.id) is not None:
                logger.info("referral_duplicate_order", order_id=order.id)
                return None

            config = ProgramConfig.from_row(SettingsRepository(session).get())
            referee = self._resolve_referee(customers, order, referrer)

            verdict = FraudEvaluator(session).evaluate(
                ConversionAttempt(
                    referrer_code=code,
                    referee_email=order.email,
                    referee_ip=order.browser_ip,
                    order_total=order.total_price,
                ),
                config,
                now=now,
            )

            status = initial_status(verdict.passed)
            referral = referrals.create_if_absent(
                referrer_id=referrer.id,
                external_order_id=order.id,
                status=status,
                referee_id=referee.id if referee else None,
                referee_email=order.email,
                order_total=order.total_price,
                converted_at=now if status == ReferralStatus.CONVERTED else None,
            )
            if referral is None:
                # Lost the race to a concurrent delivery; drop the auto-enrollment too
                session.rollback()
                logger.info("referral_duplicate_order", order_id=order.id)
                return None

            customers.increment_referrals(referrer.id)

            if verdict.flags:
                FraudFlagRepository(session).record(referral.id, referrer.id, verdict.flags)
                logger.info("fraud_flags_recorded", referral_id=referral.id, flags=verdict.flags)

            outcome = ConversionOutcome(
                referral_id=referral.id,
                referrer_id=referrer.id,
                referee_id=referral.referee_id,
                status=status.value,
                flags=list(verdict.flags),
            )

        logger.info(
            "referral_created",
            referral_id=outcome.referral_id,
            code=code,
            referee_email=order.email,
            status=outcome.status,
        )

        if self.reward_flow == REWARD_FLOW_IMMEDIATE and status == ReferralStatus.CONVERTED:
            await self.issuer.issue(outcome.referral_id)

        return outcome

    async def process_order_paid(self, order: OrderEvent, now: datetime | None = None) -> bool:
        """Convert the pending referral of a paid order.

        Returns:
            True if a pending referral was converted
        """
        now = now or datetime.utcnow()

        with self.database.session() as session:
            referrals = ReferralRepository(session)
            updated = referrals.convert_pending_order(order.id, now)
            referral = referrals.get_by_order_id(order.id) if updated else None

        if not updated:
            return False

        logger.info("order_paid_converted", order_id=order.id, referral_id=referral.id)

        if self.reward_flow == REWARD_FLOW_IMMEDIATE:
            await self.issuer.issue(referral.id)

        return True

    async def handle_order_created(self, order: OrderEvent) -> None:
        """Background entry point: process and log, never raise."""
        try:
            await self.process_order_created(order)
        except Exception:
            logger.exception("order_created_processing_failed", order_id=order.id)

    async def handle_order_paid(self, order: OrderEvent) -> None:
        """Background entry point: process and log, never raise."""
        try:
            await self.process_order_paid(order)
        except Exception:
            logger.exception("order_paid_processing_failed", order_id=order.id)

    def _resolve_referee(
        self,
        customers: CustomerRepository,
        order: OrderEvent,
        referrer: Customer,
    ) -> Customer | None:
        """Find the ordering customer, auto-enrolling them when possible."""
        referee = customers.get_by_email(order.email)
        if referee is not None:
            return referee

        if order.customer is None or order.customer.id is None:
            return None

        new_code = generate_unique_code(
            lambda: generate_referral_code(self.code_prefix),
            customers.code_exists,
            self.code_prefix,
        )
        referee = customers.create_or_get(
            shopify_id=order.customer.id,
            email=order.email,
            name=order.customer.first_name or "",
            referral_code=new_code,
            referred_by_id=referrer.id,
        )
        logger.info("referee_auto_enrolled", customer_id=referee.id, referrer_id=referrer.id)
        return referee

    async def _with_customer_identity(self, order: OrderEvent) -> OrderEvent:
        """Fill in the storefront customer ID by email when the order lacks one.

        A failed lookup is logged and the order is processed without a
        known referee.
        """
        if self.customer_lookup is None:
            return order
        if order.customer is not None and order.customer.id is not None:
            return order

        try:
            found = await self.customer_lookup.get_customer_by_email(order.email)
        except ShopifyError as e:
            logger.warning("customer_lookup_failed", order_id=order.id, error=str(e))
            return order

        if not found or found.get("id") is None:
            return order

        current = order.customer or OrderCustomer()
        customer = current.model_copy(update={
            "id": int(found["id"]),
            "first_name": current.first_name or found.get("first_name"),
        })
        logger.info("order_customer_resolved", order_id=order.id, shopify_id=customer.id)
        return order.model_copy(update={"customer": customer})
