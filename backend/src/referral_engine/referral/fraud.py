"""Fraud checks for referral conversions.

Each rule is toggled independently by the program settings. A conversion
passes only when no rule fires; a failed check is not an error, it leaves
the referral pending and records flags for manual review.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from referral_engine.logging_config import get_logger
from referral_engine.referral.schemas import ProgramConfig
from referral_engine.storage.models import FraudReason
from referral_engine.storage.repo import ClickRepository, CustomerRepository, ReferralRepository

logger = get_logger(__name__)

# Trailing window for the IP and rate-limit rules
FRAUD_WINDOW = timedelta(hours=24)

# More clicks than this from one IP inside the window is suspicious
MAX_CLICKS_PER_IP = 3


@dataclass(frozen=True)
class ConversionAttempt:
    """Inputs of a fraud evaluation."""
    referrer_code: str
    referee_email: str | None
    referee_ip: str | None = None
    order_total: Decimal | None = None


@dataclass
class FraudVerdict:
    """Outcome of a fraud evaluation."""
    flags: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.flags


class FraudEvaluator:
    """Scores a conversion attempt against the anti-abuse rules.

    Reads clicks and referrals through the session at call time; nothing is
    cached between evaluations.
    """

    def __init__(self, session: Session):
        self.session = session
        self.customers = CustomerRepository(session)
        self.referrals = ReferralRepository(session)
        self.clicks = ClickRepository(session)

    def evaluate(
        self,
        attempt: ConversionAttempt,
        config: ProgramConfig,
        now: datetime | None = None,
    ) -> FraudVerdict:
        """Run every enabled rule.

        Args:
            attempt: Conversion being evaluated
            config: Program settings snapshot
            now: Evaluation time (defaults to current UTC time)

        Returns:
            Verdict with the reasons of every rule that fired
        """
        now = now or datetime.utcnow()
        since = now - FRAUD_WINDOW
        verdict = FraudVerdict()

        if config.block_self_referral and self._is_self_referral(attempt):
            verdict.flags.append(FraudReason.SELF_REFERRAL.value)

        if config.flag_same_ip and self._is_repeated_ip(attempt, since):
            verdict.flags.append(FraudReason.SAME_IP.value)

        if config.flag_low_order and self._is_low_order(attempt, config):
            verdict.flags.append(FraudReason.LOW_ORDER.value)

        if config.flag_rate_limit and self._is_over_daily_limit(attempt, config, since):
            verdict.flags.append(FraudReason.RATE_LIMIT.value)

        if verdict.flags:
            logger.info(
                "fraud_check_failed",
                referrer_code=attempt.referrer_code,
                flags=verdict.flags,
            )

        return verdict

    def _is_self_referral(self, attempt: ConversionAttempt) -> bool:
        if not attempt.referee_email:
            return False
        referrer = self.customers.get_by_code(attempt.referrer_code)
        if referrer is None or not referrer.email:
            return False
        return referrer.email.strip().lower() == attempt.referee_email.strip().lower()

    def _is_repeated_ip(self, attempt: ConversionAttempt, since: datetime) -> bool:
        if not attempt.referee_ip:
            return False
        count = self.clicks.count_from_ip_since(attempt.referrer_code, attempt.referee_ip, since)
        return count > MAX_CLICKS_PER_IP

    def _is_low_order(self, attempt: ConversionAttempt, config: ProgramConfig) -> bool:
        if attempt.order_total is None:
            return False
        return attempt.order_total < config.min_order_value

    def _is_over_daily_limit(
        self,
        attempt: ConversionAttempt,
        config: ProgramConfig,
        since: datetime,
    ) -> bool:
        referrer = self.customers.get_by_code(attempt.referrer_code)
        if referrer is None:
            return False
        return self.referrals.count_created_since(referrer.id, since) >= config.max_referrals_per_day
