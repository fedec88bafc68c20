"""Reward issuance and the cooldown reward queue."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol

from referral_engine.logging_config import get_logger
from referral_engine.referral.codes import generate_discount_code, generate_unique_code
from referral_engine.referral.errors import CodeGenerationError
from referral_engine.referral.schemas import ProgramConfig
from referral_engine.referral.states import can_transition
from referral_engine.settings import settings
from referral_engine.shopify.client import DiscountResult, ShopifyError
from referral_engine.storage.db import Database, db
from referral_engine.storage.models import RecipientType, ReferralStatus, Reward
from referral_engine.storage.repo import (
    CustomerRepository,
    ReferralRepository,
    RewardRepository,
    SettingsRepository,
)

logger = get_logger(__name__)


class DiscountService(Protocol):
    """What the issuer needs from the discount-issuing service."""

    async def create_discount_code(
        self,
        code: str,
        amount: Decimal,
        value_type: str = "fixed_amount",
        min_order_value: Decimal = Decimal("0"),
        expiry_days: int = 90,
    ) -> DiscountResult:
        ...


@dataclass(frozen=True)
class _Recipient:
    role: RecipientType
    customer_id: int
    amount: Decimal
    code_prefix: str


@dataclass(frozen=True)
class QueueResult:
    """Outcome of one reward queue run."""
    processed: int
    total: int


class RewardIssuer:
    """Turns a converted referral into discount-code rewards.

    Each recipient is issued independently: a failed discount for one does
    not block the other, and the referral is marked rewarded either way.
    A referral can therefore end up rewarded with zero, one or two rewards.
    """

    def __init__(self, discounts: DiscountService, database: Database | None = None):
        self.discounts = discounts
        self.database = database or db

    async def issue(self, referral_id: int, now: datetime | None = None) -> list[Reward] | None:
        """Issue rewards for a converted referral.

        Args:
            referral_id: Referral to reward
            now: Issue time (defaults to current UTC time)

        Returns:
            Persisted rewards, or None if the referral is missing or not converted
        """
        with self.database.session() as session:
            config = ProgramConfig.from_row(SettingsRepository(session).get())
            referral = ReferralRepository(session).get_by_id(referral_id)

            if referral is None or not can_transition(referral.status, ReferralStatus.REWARDED):
                logger.info(
                    "reward_not_eligible",
                    referral_id=referral_id,
                    status=referral.status if referral else None,
                )
                return None

            recipients = [
                _Recipient(
                    role=RecipientType.REFERRER,
                    customer_id=referral.referrer_id,
                    amount=config.reward_amount,
                    code_prefix=settings.referrer_discount_prefix,
                )
            ]
            if config.double_sided and referral.referee_id is not None:
                recipients.append(
                    _Recipient(
                        role=RecipientType.REFEREE,
                        customer_id=referral.referee_id,
                        amount=config.referee_reward_amount,
                        code_prefix=settings.referee_discount_prefix,
                    )
                )

        rewards = []
        for recipient in recipients:
            reward = await self._issue_one(referral_id, recipient, config)
            if reward is not None:
                rewards.append(reward)

        rewarded_at = now or datetime.utcnow()
        with self.database.session() as session:
            ReferralRepository(session).mark_rewarded(referral_id, rewarded_at)

        logger.info(
            "referral_rewarded",
            referral_id=referral_id,
            rewards_issued=len(rewards),
            rewards_expected=len(recipients),
        )
        return rewards

    async def _issue_one(
        self,
        referral_id: int,
        recipient: _Recipient,
        config: ProgramConfig,
    ) -> Reward | None:
        try:
            with self.database.session() as session:
                code = generate_unique_code(
                    lambda: generate_discount_code(recipient.code_prefix),
                    RewardRepository(session).code_exists,
                    recipient.code_prefix,
                )

            discount = await self.discounts.create_discount_code(
                code=code,
                amount=recipient.amount,
                value_type=config.discount_value_type,
                min_order_value=config.min_order_value,
                expiry_days=config.code_expiry_days,
            )
        except (ShopifyError, CodeGenerationError) as e:
            logger.error(
                "reward_issue_failed",
                referral_id=referral_id,
                recipient=recipient.role.value,
                error=str(e),
            )
            return None

        with self.database.session() as session:
            reward = RewardRepository(session).create_sent(
                referral_id=referral_id,
                customer_id=recipient.customer_id,
                recipient_type=recipient.role.value,
                reward_type=config.reward_type,
                amount=recipient.amount,
                discount_code=discount.code,
                shopify_discount_id=discount.discount_id,
                expires_at=discount.expires_at,
                sent_at=datetime.utcnow(),
            )
            if recipient.role == RecipientType.REFERRER:
                CustomerRepository(session).add_earned(recipient.customer_id, recipient.amount)

        logger.info(
            "reward_issued",
            referral_id=referral_id,
            recipient=recipient.role.value,
            customer_id=recipient.customer_id,
            code=discount.code,
        )
        return reward


class RewardQueueScheduler:
    """Finds converted referrals past the cooldown and rewards them.

    Keeps no progress of its own: a crashed run is picked up by the next
    one, since unprocessed referrals are still ``converted``.
    """

    def __init__(self, issuer: RewardIssuer, database: Database | None = None):
        self.issuer = issuer
        self.database = database or db

    async def run_once(self, now: datetime | None = None) -> QueueResult:
        """Process every referral whose cooldown has elapsed.

        Returns:
            Count of issuer calls that did not raise, and of eligible referrals
        """
        now = now or datetime.utcnow()

        with self.database.session() as session:
            config = ProgramConfig.from_row(SettingsRepository(session).get())
            cutoff = now - timedelta(days=config.cooldown_days)
            referral_ids = [r.id for r in ReferralRepository(session).list_ready_for_reward(cutoff)]

        processed = 0
        for referral_id in referral_ids:
            try:
                await self.issuer.issue(referral_id)
                processed += 1
            except Exception:
                logger.exception("reward_queue_item_failed", referral_id=referral_id)

        logger.info("reward_queue_processed", processed=processed, total=len(referral_ids))
        return QueueResult(processed=processed, total=len(referral_ids))

    async def run_periodically(
        self,
        interval_seconds: float,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run the queue every ``interval_seconds`` until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info("reward_worker_started", interval_seconds=interval_seconds)

        while not stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("reward_worker_iteration_failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("reward_worker_stopped")
