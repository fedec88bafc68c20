"""Operator-facing referral program management."""

from datetime import datetime
from typing import Any

from referral_engine.logging_config import get_logger
from referral_engine.referral.errors import NotEligibleError, NotFoundError
from referral_engine.referral.rewards import QueueResult, RewardIssuer, RewardQueueScheduler
from referral_engine.referral.schemas import SettingsUpdate
from referral_engine.referral.states import apply_manual_override
from referral_engine.storage.db import Database, db
from referral_engine.storage.models import FraudFlag, ProgramSettings, Referral, ReferralStatus, Reward
from referral_engine.storage.repo import (
    FraudFlagRepository,
    ReferralRepository,
    SettingsRepository,
)

logger = get_logger(__name__)


class AdminService:
    """Management operations for the admin portal and CLI."""

    def __init__(self, issuer: RewardIssuer, database: Database | None = None):
        self.issuer = issuer
        self.database = database or db
        self.scheduler = RewardQueueScheduler(issuer, self.database)

    def summary(self) -> dict[str, int]:
        """Simple program counts."""
        with self.database.session() as session:
            counts = ReferralRepository(session).status_counts()
            open_flags = FraudFlagRepository(session).count_unresolved()

        summary = {status.value: counts.get(status.value, 0) for status in ReferralStatus}
        summary["total"] = sum(counts.values())
        summary["open_flags"] = open_flags
        return summary

    def list_referrals(
        self,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """Paginated referral list with referrer details."""
        with self.database.session() as session:
            referrals, total = ReferralRepository(session).list_filtered(
                status=status, search=search, page=page, limit=limit
            )
            items = [self._referral_to_dict(referral) for referral in referrals]

        return {
            "referrals": items,
            "total": total,
            "page": page,
            "pages": (total + limit - 1) // limit if limit else 0,
        }

    def update_status(self, referral_id: int, status: str) -> dict[str, Any]:
        """Force a referral to a status.

        Raises:
            InvalidStatusError: If the status is not in the vocabulary
            NotFoundError: If the referral does not exist
        """
        with self.database.session() as session:
            referral = ReferralRepository(session).get_by_id(referral_id)
            if referral is None:
                raise NotFoundError("Referral not found")

            previous = referral.status
            apply_manual_override(referral, status)
            session.flush()

            logger.info(
                "referral_status_overridden",
                referral_id=referral_id,
                previous=previous,
                status=referral.status,
            )
            return self._referral_to_dict(referral)

    async def issue_reward(self, referral_id: int) -> list[dict[str, Any]]:
        """Manually issue rewards for a converted referral.

        Raises:
            NotEligibleError: If the referral is missing or not converted
        """
        rewards = await self.issuer.issue(referral_id)
        if rewards is None:
            raise NotEligibleError("Referral not eligible for rewards")
        return [self._reward_to_dict(reward) for reward in rewards]

    async def process_queue(self) -> QueueResult:
        """Run the cooldown reward queue once."""
        return await self.scheduler.run_once()

    def get_settings(self) -> dict[str, Any]:
        """Current program settings."""
        with self.database.session() as session:
            return self._settings_to_dict(SettingsRepository(session).get())

    def update_settings(self, update: SettingsUpdate) -> dict[str, Any]:
        """Apply a partial settings update."""
        changes = update.model_dump(exclude_none=True)
        with self.database.session() as session:
            row = SettingsRepository(session).update(changes)
            return self._settings_to_dict(row)

    def list_open_flags(self) -> list[dict[str, Any]]:
        """Unresolved fraud flags with the flagged customer."""
        with self.database.session() as session:
            return [self._flag_to_dict(flag) for flag in FraudFlagRepository(session).list_unresolved()]

    def resolve_flag(self, flag_id: int) -> dict[str, Any]:
        """Mark a fraud flag as reviewed.

        Raises:
            NotFoundError: If the flag does not exist
        """
        with self.database.session() as session:
            flag = FraudFlagRepository(session).get_by_id(flag_id)
            if flag is None:
                raise NotFoundError("Fraud flag not found")

            if not flag.resolved:
                flag.resolved = True
                flag.resolved_at = datetime.utcnow()
                session.flush()
                logger.info("fraud_flag_resolved", flag_id=flag_id, reason=flag.reason)

            return self._flag_to_dict(flag)

    @staticmethod
    def _referral_to_dict(referral: Referral) -> dict[str, Any]:
        return {
            "id": referral.id,
            "referrer_id": referral.referrer_id,
            "referrer_name": referral.referrer.name if referral.referrer else None,
            "referrer_email": referral.referrer.email if referral.referrer else None,
            "referral_code": referral.referrer.referral_code if referral.referrer else None,
            "referee_id": referral.referee_id,
            "referee_name": referral.referee.name if referral.referee else None,
            "referee_email": referral.referee_email,
            "external_order_id": referral.external_order_id,
            "order_total": referral.order_total,
            "status": referral.status,
            "converted_at": referral.converted_at.isoformat() if referral.converted_at else None,
            "rewarded_at": referral.rewarded_at.isoformat() if referral.rewarded_at else None,
            "created_at": referral.created_at.isoformat() if referral.created_at else None,
        }

    @staticmethod
    def _reward_to_dict(reward: Reward) -> dict[str, Any]:
        return {
            "id": reward.id,
            "referral_id": reward.referral_id,
            "recipient_type": reward.recipient_type,
            "customer_id": reward.customer_id,
            "reward_type": reward.reward_type,
            "amount": reward.amount,
            "discount_code": reward.discount_code,
            "status": reward.status,
            "expires_at": reward.expires_at.isoformat() if reward.expires_at else None,
        }

    @staticmethod
    def _flag_to_dict(flag: FraudFlag) -> dict[str, Any]:
        return {
            "id": flag.id,
            "referral_id": flag.referral_id,
            "customer_id": flag.customer_id,
            "customer_name": flag.customer.name if flag.customer else None,
            "customer_email": flag.customer.email if flag.customer else None,
            "reason": flag.reason,
            "details": flag.details,
            "resolved": flag.resolved,
            "resolved_at": flag.resolved_at.isoformat() if flag.resolved_at else None,
            "created_at": flag.created_at.isoformat() if flag.created_at else None,
        }

    @staticmethod
    def _settings_to_dict(row: ProgramSettings) -> dict[str, Any]:
        return {
            "reward_type": row.reward_type,
            "reward_amount": row.reward_amount,
            "min_order_value": row.min_order_value,
            "cooldown_days": row.cooldown_days,
            "double_sided": row.double_sided,
            "referee_reward_amount": row.referee_reward_amount,
            "code_expiry_days": row.code_expiry_days,
            "max_referrals_per_day": row.max_referrals_per_day,
            "block_self_referral": row.block_self_referral,
            "flag_same_ip": row.flag_same_ip,
            "flag_low_order": row.flag_low_order,
            "flag_rate_limit": row.flag_rate_limit,
            "require_verified_email": row.require_verified_email,
            "updated_at": row.updated_at.isoformat() if row.updated_at else None,
        }
