"""Database models for the referral ledger."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class ReferralStatus(str, Enum):
    """Lifecycle states of a referral record."""
    PENDING = "pending"        # Fraud checks failed or payment not confirmed yet
    CONVERTED = "converted"    # Attributed and waiting for the cooldown
    REWARDED = "rewarded"      # Reward issuer ran for this referral
    REJECTED = "rejected"      # Manually rejected by an operator
    EXPIRED = "expired"        # Manually expired by an operator


class RewardStatus(str, Enum):
    """Lifecycle of a single discount reward."""
    PENDING = "pending"
    SENT = "sent"
    USED = "used"
    EXPIRED = "expired"


class RecipientType(str, Enum):
    """Who receives a reward."""
    REFERRER = "referrer"
    REFEREE = "referee"


class FraudReason(str, Enum):
    """Fixed vocabulary for fraud flags."""
    SELF_REFERRAL = "self_referral"
    SAME_IP = "same_ip"
    RATE_LIMIT = "rate_limit"
    LOW_ORDER = "low_order"
    SUSPICIOUS_PATTERN = "suspicious_pattern"  # Only set manually


class RewardType(str, Enum):
    """Reward types configurable in program settings."""
    DISCOUNT = "discount"
    PERCENTAGE = "percentage"
    CREDIT = "credit"


def _values(enum_cls: type[Enum]) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


class Customer(Base):
    """Referral program participant.

    Enrolled from the storefront or auto-created on a first referred order.
    """

    __tablename__ = "referral_customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shopify_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    referral_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)

    # Weak back-reference to whoever brought this customer in
    referred_by_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("referral_customers.id"), nullable=True
    )

    # Statistics (only ever incremented)
    total_referrals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    referred_by: Mapped["Customer | None"] = relationship("Customer", remote_side="Customer.id")

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, email={self.email}, code={self.referral_code})>"


class Referral(Base):
    """One attributed conversion.

    ``external_order_id`` is the idempotency key: one referral per order.
    """

    __tablename__ = "referrals"
    __table_args__ = (
        CheckConstraint(f"status IN ({_values(ReferralStatus)})", name="ck_referrals_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("referral_customers.id"), nullable=False, index=True
    )
    referee_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("referral_customers.id"), nullable=True
    )
    referee_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    order_total: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=ReferralStatus.PENDING.value, nullable=False, index=True
    )
    converted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rewarded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    referrer: Mapped["Customer"] = relationship("Customer", foreign_keys=[referrer_id])
    referee: Mapped["Customer | None"] = relationship("Customer", foreign_keys=[referee_id])
    rewards: Mapped[list["Reward"]] = relationship("Reward", back_populates="referral")
    fraud_flags: Mapped[list["FraudFlag"]] = relationship("FraudFlag", back_populates="referral")

    def __repr__(self) -> str:
        return f"<Referral(id={self.id}, order={self.external_order_id}, status={self.status})>"


class Reward(Base):
    """A discount code granted to one recipient of a referral."""

    __tablename__ = "rewards"
    __table_args__ = (
        CheckConstraint(f"recipient_type IN ({_values(RecipientType)})", name="ck_rewards_recipient"),
        CheckConstraint(f"status IN ({_values(RewardStatus)})", name="ck_rewards_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referral_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("referrals.id"), nullable=False, index=True
    )
    recipient_type: Mapped[str] = mapped_column(String(10), nullable=False)
    customer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("referral_customers.id"), nullable=False, index=True
    )
    reward_type: Mapped[str] = mapped_column(String(20), default=RewardType.DISCOUNT.value, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Shopify discount reference
    shopify_discount_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discount_code: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(20), default=RewardStatus.PENDING.value, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    referral: Mapped["Referral"] = relationship("Referral", back_populates="rewards")
    customer: Mapped["Customer"] = relationship("Customer")

    def __repr__(self) -> str:
        return f"<Reward(id={self.id}, code={self.discount_code}, recipient={self.recipient_type})>"


class Click(Base):
    """Referral link visit. Append-only."""

    __tablename__ = "referral_clicks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referral_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True, index=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Click(id={self.id}, code={self.referral_code}, ip={self.ip_address})>"


class FraudFlag(Base):
    """Suspicion recorded for manual review."""

    __tablename__ = "fraud_flags"
    __table_args__ = (
        CheckConstraint(f"reason IN ({_values(FraudReason)})", name="ck_fraud_flags_reason"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referral_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("referrals.id"), nullable=True, index=True
    )
    customer_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("referral_customers.id"), nullable=True
    )
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    referral: Mapped["Referral | None"] = relationship("Referral", back_populates="fraud_flags")
    customer: Mapped["Customer | None"] = relationship("Customer")

    def __repr__(self) -> str:
        return f"<FraudFlag(id={self.id}, reason={self.reason}, resolved={self.resolved})>"


class ProgramSettings(Base):
    """Singleton row with the referral program policy."""

    __tablename__ = "referral_settings"
    __table_args__ = (CheckConstraint("id = 1", name="ck_referral_settings_singleton"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)

    # Rewards
    reward_type: Mapped[str] = mapped_column(String(20), default=RewardType.DISCOUNT.value, nullable=False)
    reward_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("15.00"), nullable=False)
    min_order_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("50.00"), nullable=False)
    cooldown_days: Mapped[int] = mapped_column(Integer, default=14, nullable=False)
    double_sided: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    referee_reward_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("15.00"), nullable=False
    )
    code_expiry_days: Mapped[int] = mapped_column(Integer, default=90, nullable=False)

    # Fraud rules
    max_referrals_per_day: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    block_self_referral: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    flag_same_ip: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    flag_low_order: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    flag_rate_limit: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    require_verified_email: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<ProgramSettings(reward={self.reward_amount}, cooldown={self.cooldown_days}d)>"
