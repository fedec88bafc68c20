"""Repository layer for the referral ledger."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from referral_engine.logging_config import get_logger
from referral_engine.storage.models import (
    Click,
    Customer,
    FraudFlag,
    ProgramSettings,
    Referral,
    ReferralStatus,
    Reward,
    RewardStatus,
)

logger = get_logger(__name__)


class CustomerRepository:
    """Repository for Customer entities."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, customer_id: int) -> Customer | None:
        """Get customer by ID."""
        return self.session.get(Customer, customer_id)

    def get_by_code(self, referral_code: str) -> Customer | None:
        """Get customer owning a referral code."""
        return self.session.scalar(
            select(Customer).where(Customer.referral_code == referral_code.strip().upper())
        )

    def get_by_email(self, email: str) -> Customer | None:
        """Get customer by email (case-insensitive)."""
        return self.session.scalar(
            select(Customer).where(func.lower(Customer.email) == email.strip().lower())
        )

    def get_by_shopify_id(self, shopify_id: int) -> Customer | None:
        """Get customer by storefront customer ID."""
        return self.session.scalar(select(Customer).where(Customer.shopify_id == shopify_id))

    def code_exists(self, referral_code: str) -> bool:
        """Check whether a referral code is already taken."""
        return self.session.scalar(
            select(Customer.id).where(Customer.referral_code == referral_code)
        ) is not None

    def create(
        self,
        shopify_id: int,
        email: str,
        referral_code: str,
        name: str | None = None,
        referred_by_id: int | None = None,
    ) -> Customer:
        """Create a new customer.

        Args:
            shopify_id: Storefront customer ID
            email: Email address (stored lowercase)
            referral_code: Unique referral code
            name: Display name
            referred_by_id: Customer who referred this one

        Returns:
            Created customer
        """
        customer = Customer(
            shopify_id=shopify_id,
            email=email.strip().lower(),
            name=name,
            referral_code=referral_code,
            referred_by_id=referred_by_id,
            total_referrals=0,
            total_earned=Decimal("0.00"),
        )
        self.session.add(customer)
        self.session.flush()
        logger.info("customer_created", customer_id=customer.id, code=referral_code)
        return customer

    def create_or_get(self, shopify_id: int, email: str, **kwargs: Any) -> Customer:
        """Create a customer, or return the one that won a concurrent insert.

        The insert runs in a savepoint so a unique-constraint conflict
        leaves the surrounding transaction usable.
        """
        try:
            with self.session.begin_nested():
                return self.create(shopify_id=shopify_id, email=email, **kwargs)
        except IntegrityError:
            existing = self.get_by_email(email) or self.get_by_shopify_id(shopify_id)
            if existing is None:
                raise
            logger.info("customer_create_conflict", customer_id=existing.id)
            return existing

    def increment_referrals(self, customer_id: int) -> None:
        """Atomically add one to ``total_referrals``."""
        self.session.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(
                total_referrals=Customer.total_referrals + 1,
                updated_at=datetime.utcnow(),
            )
        )

    def add_earned(self, customer_id: int, amount: Decimal) -> None:
        """Atomically add ``amount`` to ``total_earned``."""
        self.session.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(
                total_earned=Customer.total_earned + amount,
                updated_at=datetime.utcnow(),
            )
        )


class ReferralRepository:
    """Repository for Referral entities."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, referral_id: int) -> Referral | None:
        """Get referral by ID."""
        return self.session.get(Referral, referral_id)

    def get_by_order_id(self, external_order_id: str) -> Referral | None:
        """Get the referral attributed to an order."""
        return self.session.scalar(
            select(Referral).where(Referral.external_order_id == str(external_order_id))
        )

    def create_if_absent(
        self,
        referrer_id: int,
        external_order_id: str,
        status: ReferralStatus,
        referee_id: int | None = None,
        referee_email: str | None = None,
        order_total: Decimal | None = None,
        converted_at: datetime | None = None,
    ) -> Referral | None:
        """Insert a referral unless one already exists for the order.

        Relies on the unique constraint on ``external_order_id`` so that
        concurrent deliveries of the same order cannot both succeed.

        Returns:
            Created referral, or None if the order was already recorded
        """
        referral = Referral(
            referrer_id=referrer_id,
            referee_id=referee_id,
            referee_email=referee_email,
            external_order_id=str(external_order_id),
            order_total=order_total,
            status=status.value,
            converted_at=converted_at,
        )
        try:
            with self.session.begin_nested():
                self.session.add(referral)
                self.session.flush()
        except IntegrityError:
            logger.info("referral_order_conflict", order_id=external_order_id)
            return None
        return referral

    def count_created_since(self, referrer_id: int, since: datetime) -> int:
        """Count referrals created for a referrer after ``since``."""
        return self.session.scalar(
            select(func.count(Referral.id)).where(
                Referral.referrer_id == referrer_id,
                Referral.created_at > since,
            )
        ) or 0

    def list_ready_for_reward(self, converted_before: datetime) -> list[Referral]:
        """List converted referrals whose cooldown has elapsed."""
        return list(
            self.session.scalars(
                select(Referral)
                .where(
                    Referral.status == ReferralStatus.CONVERTED.value,
                    Referral.converted_at < converted_before,
                )
                .order_by(Referral.converted_at)
            )
        )

    def convert_pending_order(self, external_order_id: str, converted_at: datetime) -> int:
        """Move a pending referral for an order to converted.

        The status guard is part of the UPDATE so it applies atomically.

        Returns:
            Number of referrals updated (0 or 1)
        """
        result = self.session.execute(
            update(Referral)
            .where(
                Referral.external_order_id == str(external_order_id),
                Referral.status == ReferralStatus.PENDING.value,
            )
            .values(
                status=ReferralStatus.CONVERTED.value,
                converted_at=converted_at,
                updated_at=converted_at,
            )
        )
        return result.rowcount or 0

    def mark_rewarded(self, referral_id: int, rewarded_at: datetime) -> int:
        """Move a converted referral to rewarded.

        Returns:
            Number of referrals updated (0 or 1)
        """
        result = self.session.execute(
            update(Referral)
            .where(
                Referral.id == referral_id,
                Referral.status == ReferralStatus.CONVERTED.value,
            )
            .values(
                status=ReferralStatus.REWARDED.value,
                rewarded_at=rewarded_at,
                updated_at=rewarded_at,
            )
        )
        return result.rowcount or 0

    def list_filtered(
        self,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Referral], int]:
        """List referrals for the admin portal, newest first.

        Args:
            status: Only this status (None or "all" for every status)
            search: Matches referrer name/email or referee email
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (referrals on the page, total matching count)
        """
        referrer = aliased(Customer)
        query = select(Referral).join(referrer, Referral.referrer_id == referrer.id)

        if status and status != "all":
            query = query.where(Referral.status == status)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(referrer.name).like(pattern),
                    func.lower(referrer.email).like(pattern),
                    func.lower(Referral.referee_email).like(pattern),
                )
            )

        total = self.session.scalar(select(func.count()).select_from(query.subquery())) or 0
        rows = self.session.scalars(
            query.order_by(Referral.created_at.desc(), Referral.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return list(rows), total

    def status_counts(self, referrer_id: int | None = None) -> dict[str, int]:
        """Count referrals per status, optionally for one referrer."""
        query = select(Referral.status, func.count(Referral.id)).group_by(Referral.status)
        if referrer_id is not None:
            query = query.where(Referral.referrer_id == referrer_id)
        return {status: count for status, count in self.session.execute(query)}


class RewardRepository:
    """Repository for Reward entities."""

    def __init__(self, session: Session):
        self.session = session

    def code_exists(self, discount_code: str) -> bool:
        """Check whether a discount code was already issued."""
        return self.session.scalar(
            select(Reward.id).where(Reward.discount_code == discount_code)
        ) is not None

    def create_sent(
        self,
        referral_id: int,
        customer_id: int,
        recipient_type: str,
        reward_type: str,
        amount: Decimal,
        discount_code: str,
        shopify_discount_id: str | None,
        expires_at: datetime | None,
        sent_at: datetime,
    ) -> Reward:
        """Persist a reward whose discount code was created."""
        reward = Reward(
            referral_id=referral_id,
            customer_id=customer_id,
            recipient_type=recipient_type,
            reward_type=reward_type,
            amount=amount,
            discount_code=discount_code,
            shopify_discount_id=shopify_discount_id,
            status=RewardStatus.SENT.value,
            sent_at=sent_at,
            expires_at=expires_at,
        )
        self.session.add(reward)
        self.session.flush()
        return reward

    def list_for_referral(self, referral_id: int) -> list[Reward]:
        """List rewards granted for a referral."""
        return list(
            self.session.scalars(
                select(Reward).where(Reward.referral_id == referral_id).order_by(Reward.id)
            )
        )

    def list_recent_for_customer(self, customer_id: int, limit: int = 10) -> list[Reward]:
        """List a customer's most recent rewards."""
        return list(
            self.session.scalars(
                select(Reward)
                .where(Reward.customer_id == customer_id)
                .order_by(Reward.created_at.desc(), Reward.id.desc())
                .limit(limit)
            )
        )


class ClickRepository:
    """Repository for Click entities."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        referral_code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        referrer_url: str | None = None,
    ) -> Click:
        """Append a click."""
        click = Click(
            referral_code=referral_code,
            ip_address=ip_address,
            user_agent=user_agent,
            referrer_url=referrer_url,
        )
        self.session.add(click)
        self.session.flush()
        return click

    def count_from_ip_since(self, referral_code: str, ip_address: str, since: datetime) -> int:
        """Count clicks on a code from one IP after ``since``."""
        return self.session.scalar(
            select(func.count(Click.id)).where(
                Click.referral_code == referral_code,
                Click.ip_address == ip_address,
                Click.created_at > since,
            )
        ) or 0


class FraudFlagRepository:
    """Repository for FraudFlag entities."""

    def __init__(self, session: Session):
        self.session = session

    def record(self, referral_id: int, customer_id: int, reasons: list[str]) -> list[FraudFlag]:
        """Record one flag per reason for manual review."""
        flags = [
            FraudFlag(
                referral_id=referral_id,
                customer_id=customer_id,
                reason=reason,
                details=f"Auto-flagged: {reason}",
            )
            for reason in reasons
        ]
        self.session.add_all(flags)
        self.session.flush()
        return flags

    def get_by_id(self, flag_id: int) -> FraudFlag | None:
        """Get flag by ID."""
        return self.session.get(FraudFlag, flag_id)

    def list_unresolved(self) -> list[FraudFlag]:
        """List open flags, newest first."""
        return list(
            self.session.scalars(
                select(FraudFlag)
                .where(FraudFlag.resolved.is_(False))
                .order_by(FraudFlag.created_at.desc(), FraudFlag.id.desc())
            )
        )

    def list_for_referral(self, referral_id: int) -> list[FraudFlag]:
        """List flags attached to a referral."""
        return list(
            self.session.scalars(
                select(FraudFlag).where(FraudFlag.referral_id == referral_id).order_by(FraudFlag.id)
            )
        )

    def count_unresolved(self) -> int:
        """Count open flags."""
        return self.session.scalar(
            select(func.count(FraudFlag.id)).where(FraudFlag.resolved.is_(False))
        ) or 0


class SettingsRepository:
    """Repository for the singleton program settings row."""

    SINGLETON_ID = 1

    def __init__(self, session: Session):
        self.session = session

    def get(self) -> ProgramSettings:
        """Get the settings row, creating it with defaults if missing."""
        row = self.session.get(ProgramSettings, self.SINGLETON_ID)
        if row is not None:
            return row

        try:
            with self.session.begin_nested():
                row = ProgramSettings(id=self.SINGLETON_ID)
                self.session.add(row)
                self.session.flush()
            logger.info("program_settings_initialized")
        except IntegrityError:
            row = self.session.get(ProgramSettings, self.SINGLETON_ID)
        return row

    def update(self, changes: dict[str, Any]) -> ProgramSettings:
        """Apply a partial update; keys missing from ``changes`` are left as is."""
        row = self.get()
        for field, value in changes.items():
            setattr(row, field, value)
        row.updated_at = datetime.utcnow()
        self.session.flush()
        logger.info("program_settings_updated", fields=sorted(changes))
        return row
