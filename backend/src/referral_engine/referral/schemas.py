"""Validated shapes for inbound order events and program policy."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from referral_engine.storage.models import ProgramSettings, RewardType


class NoteAttribute(BaseModel):
    """Order note attribute as sent by the storefront script."""
    model_config = ConfigDict(extra="ignore")

    name: str
    value: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str | None:
        return None if value is None else str(value)


class OrderCustomer(BaseModel):
    """Customer block embedded in an order event."""
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    first_name: str | None = None
    tags: str | None = None


class OrderEvent(BaseModel):
    """Order webhook payload (orders/create and orders/paid).

    Only the fields the referral engine reads are kept.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str | None = None
    total_price: Decimal | None = None
    note_attributes: list[NoteAttribute] = Field(default_factory=list)
    note: str | None = None
    customer: OrderCustomer | None = None
    browser_ip: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _order_id_to_str(cls, value: Any) -> str:
        if value is None or str(value).strip() == "":
            raise ValueError("order id is required")
        return str(value).strip()

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: Any) -> str | None:
        if not value:
            return None
        return str(value).strip().lower()

    @field_validator("note_attributes", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return value or []


class ProgramConfig(BaseModel):
    """Immutable snapshot of the program settings row.

    Loaded once per operation and passed to every component that needs policy.
    """
    model_config = ConfigDict(from_attributes=True, frozen=True)

    reward_type: str = RewardType.DISCOUNT.value
    reward_amount: Decimal = Decimal("15.00")
    min_order_value: Decimal = Decimal("50.00")
    cooldown_days: int = 14
    double_sided: bool = True
    referee_reward_amount: Decimal = Decimal("15.00")
    code_expiry_days: int = 90
    max_referrals_per_day: int = 5
    block_self_referral: bool = True
    flag_same_ip: bool = True
    flag_low_order: bool = True
    flag_rate_limit: bool = True
    require_verified_email: bool = False

    @classmethod
    def from_row(cls, row: ProgramSettings) -> "ProgramConfig":
        return cls.model_validate(row)

    @property
    def discount_value_type(self) -> str:
        """Value type expected by the discount service."""
        return "percentage" if self.reward_type == RewardType.PERCENTAGE.value else "fixed_amount"


class SettingsUpdate(BaseModel):
    """Partial update of the program settings. Unset fields stay unchanged."""
    model_config = ConfigDict(extra="forbid")

    reward_type: str | None = Field(default=None, pattern="^(discount|percentage|credit)$")
    reward_amount: Decimal | None = Field(default=None, gt=0)
    min_order_value: Decimal | None = Field(default=None, ge=0)
    cooldown_days: int | None = Field(default=None, ge=0)
    double_sided: bool | None = None
    referee_reward_amount: Decimal | None = Field(default=None, gt=0)
    code_expiry_days: int | None = Field(default=None, ge=1)
    max_referrals_per_day: int | None = Field(default=None, ge=1)
    block_self_referral: bool | None = None
    flag_same_ip: bool | None = None
    flag_low_order: bool | None = None
    flag_rate_limit: bool | None = None
    require_verified_email: bool | None = None


class ClickEvent(BaseModel):
    """Referral link visit reported by the storefront."""

    referral_code: str = Field(..., min_length=1, max_length=20)
    ip: str | None = Field(default=None, max_length=45)
    user_agent: str | None = None
    referrer_url: str | None = None

    @field_validator("referral_code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        return value.strip().upper()
