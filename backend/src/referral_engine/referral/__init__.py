"""Referral conversion and reward lifecycle.

- Orders carrying a referral code become referral records
- Suspicious conversions stay pending and are flagged for review
- Converted referrals earn discount codes once the cooldown has passed
"""

from referral_engine.referral.pipeline import ConversionOutcome, ConversionPipeline
from referral_engine.referral.rewards import QueueResult, RewardIssuer, RewardQueueScheduler
from referral_engine.referral.service import ReferralService

__all__ = [
    "ConversionOutcome",
    "ConversionPipeline",
    "QueueResult",
    "ReferralService",
    "RewardIssuer",
    "RewardQueueScheduler",
]
