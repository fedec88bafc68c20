"""Application settings and configuration."""

import sys
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_SECRET_DEFAULTS = {"change-me-in-production", "secret", "changeme"}


class Settings(BaseSettings):
    """Deployment configuration.

    Business policy (reward amounts, cooldown, fraud toggles) lives in the
    ``referral_settings`` table, not here.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "referral-engine"
    env: str = "development"
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    allowed_origins: str = "http://localhost:3000"

    # Database
    database_url: str = "sqlite:///./referrals.db"

    # Shopify
    shopify_store: str = "example.myshopify.com"
    shopify_access_token: str | None = None
    shopify_api_version: str = "2024-01"
    shopify_webhook_secret: str | None = None
    storefront_url: str = "https://example.com"

    # Admin portal
    admin_api_key: str | None = None

    # HTTP Client
    request_timeout_seconds: float = 30.0

    # Reward flow: "cooldown" leaves rewards to the queue worker,
    # "immediate" issues them as soon as a referral converts
    reward_flow: Literal["cooldown", "immediate"] = "cooldown"
    reward_worker_interval_seconds: int = 3600

    # Welcome discount for visitors arriving through a referral link
    welcome_discount_enabled: bool = False
    welcome_discount_amount: float = 10.0

    # Code prefixes
    referral_code_prefix: str = "OKURA"
    referrer_discount_prefix: str = "OKREF"
    referee_discount_prefix: str = "OKNEW"
    welcome_discount_prefix: str = "OKWELCOME"


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    for _name in ("admin_api_key", "shopify_webhook_secret"):
        _value = getattr(settings, _name)
        if not _value or _value in _INSECURE_SECRET_DEFAULTS or len(_value) < 32:
            print(
                f"\n❌  FATAL: {_name.upper()} is missing, insecure or too short (min 32 chars).\n"
                "   Set a strong random value:  openssl rand -hex 32\n",
                file=sys.stderr,
            )
            sys.exit(1)
