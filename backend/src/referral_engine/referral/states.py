"""Referral status transitions.

Two transitions happen automatically:

- ``pending -> converted`` when the order's payment is confirmed
- ``converted -> rewarded`` when the reward issuer has run

Operators can force any status through ``apply_manual_override``. That path
only checks the value against the fixed vocabulary; it is the escape hatch
for correcting records (e.g. ``rewarded -> pending``) and intentionally has
no transition guard.
"""

from datetime import datetime

from referral_engine.referral.errors import InvalidStatusError
from referral_engine.storage.models import Referral, ReferralStatus

AUTOMATIC_TRANSITIONS: frozenset[tuple[ReferralStatus, ReferralStatus]] = frozenset({
    (ReferralStatus.PENDING, ReferralStatus.CONVERTED),
    (ReferralStatus.CONVERTED, ReferralStatus.REWARDED),
})


def initial_status(fraud_passed: bool) -> ReferralStatus:
    """Status a new referral is created with."""
    return ReferralStatus.CONVERTED if fraud_passed else ReferralStatus.PENDING


def parse_status(value: str) -> ReferralStatus:
    """Validate a status string against the vocabulary."""
    try:
        return ReferralStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in ReferralStatus)
        raise InvalidStatusError(f"Invalid status '{value}'. Allowed: {allowed}") from None


def can_transition(current: ReferralStatus | str, target: ReferralStatus | str) -> bool:
    """Whether the system may move a referral between two statuses on its own."""
    return (ReferralStatus(current), ReferralStatus(target)) in AUTOMATIC_TRANSITIONS


def apply_manual_override(referral: Referral, value: str, now: datetime | None = None) -> Referral:
    """Force a referral to any status in the vocabulary."""
    target = parse_status(value)
    now = now or datetime.utcnow()

    referral.status = target.value
    referral.updated_at = now
    if target == ReferralStatus.CONVERTED:
        # Restarts the cooldown from the moment of the override
        referral.converted_at = now
    return referral
