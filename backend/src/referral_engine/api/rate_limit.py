"""Rate limiting configuration for the referral API."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from referral_engine.settings import settings

# Single shared limiter instance - disabled in non-production environments
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200/minute"],
    storage_uri="memory://",
    enabled=settings.env == "production",
)
