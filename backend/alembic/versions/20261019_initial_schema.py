"""Initial referral ledger schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates tables for:
- referral_customers: Program participants and their referral codes
- referrals: One attributed conversion per order
- rewards: Discount codes issued per recipient
- referral_clicks: Referral link visits
- fraud_flags: Suspicions awaiting manual review
- referral_settings: Singleton program policy row
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


REFERRAL_STATUSES = "'pending', 'converted', 'rewarded', 'rejected', 'expired'"
REWARD_STATUSES = "'pending', 'sent', 'used', 'expired'"
RECIPIENT_TYPES = "'referrer', 'referee'"
FRAUD_REASONS = "'self_referral', 'same_ip', 'rate_limit', 'low_order', 'suspicious_pattern'"


def upgrade() -> None:
    """Create referral ledger tables."""

    # Customers table
    op.create_table(
        "referral_customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shopify_id", sa.BigInteger(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("referred_by_id", sa.Integer(), nullable=True),
        sa.Column("total_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Numeric(10, 2), nullable=False, server_default="0.00"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["referred_by_id"], ["referral_customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referral_customers_shopify_id", "referral_customers", ["shopify_id"], unique=True)
    op.create_index("ix_referral_customers_email", "referral_customers", ["email"], unique=True)
    op.create_index("ix_referral_customers_referral_code", "referral_customers", ["referral_code"], unique=True)

    # Referrals table (external_order_id is the idempotency key)
    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referrer_id", sa.Integer(), nullable=False),
        sa.Column("referee_id", sa.Integer(), nullable=True),
        sa.Column("referee_email", sa.String(255), nullable=True),
        sa.Column("external_order_id", sa.String(64), nullable=False),
        sa.Column("order_total", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("converted_at", sa.DateTime(), nullable=True),
        sa.Column("rewarded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(f"status IN ({REFERRAL_STATUSES})", name="ck_referrals_status"),
        sa.ForeignKeyConstraint(["referrer_id"], ["referral_customers.id"]),
        sa.ForeignKeyConstraint(["referee_id"], ["referral_customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referrals_referrer_id", "referrals", ["referrer_id"], unique=False)
    op.create_index("ix_referrals_external_order_id", "referrals", ["external_order_id"], unique=True)
    op.create_index("ix_referrals_status", "referrals", ["status"], unique=False)

    # Rewards table
    op.create_table(
        "rewards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referral_id", sa.Integer(), nullable=False),
        sa.Column("recipient_type", sa.String(10), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("reward_type", sa.String(20), nullable=False, server_default="discount"),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("shopify_discount_id", sa.String(64), nullable=True),
        sa.Column("discount_code", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(f"recipient_type IN ({RECIPIENT_TYPES})", name="ck_rewards_recipient"),
        sa.CheckConstraint(f"status IN ({REWARD_STATUSES})", name="ck_rewards_status"),
        sa.ForeignKeyConstraint(["referral_id"], ["referrals.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["referral_customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rewards_referral_id", "rewards", ["referral_id"], unique=False)
    op.create_index("ix_rewards_customer_id", "rewards", ["customer_id"], unique=False)
    op.create_index("ix_rewards_discount_code", "rewards", ["discount_code"], unique=False)

    # Clicks table (append-only)
    op.create_table(
        "referral_clicks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("referrer_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referral_clicks_referral_code", "referral_clicks", ["referral_code"], unique=False)
    op.create_index("ix_referral_clicks_ip_address", "referral_clicks", ["ip_address"], unique=False)

    # Fraud flags table
    op.create_table(
        "fraud_flags",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referral_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(f"reason IN ({FRAUD_REASONS})", name="ck_fraud_flags_reason"),
        sa.ForeignKeyConstraint(["referral_id"], ["referrals.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["referral_customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fraud_flags_referral_id", "fraud_flags", ["referral_id"], unique=False)

    # Program settings (singleton row)
    settings_table = op.create_table(
        "referral_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reward_type", sa.String(20), nullable=False),
        sa.Column("reward_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("min_order_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("cooldown_days", sa.Integer(), nullable=False),
        sa.Column("double_sided", sa.Boolean(), nullable=False),
        sa.Column("referee_reward_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("code_expiry_days", sa.Integer(), nullable=False),
        sa.Column("max_referrals_per_day", sa.Integer(), nullable=False),
        sa.Column("block_self_referral", sa.Boolean(), nullable=False),
        sa.Column("flag_same_ip", sa.Boolean(), nullable=False),
        sa.Column("flag_low_order", sa.Boolean(), nullable=False),
        sa.Column("flag_rate_limit", sa.Boolean(), nullable=False),
        sa.Column("require_verified_email", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("id = 1", name="ck_referral_settings_singleton"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.bulk_insert(
        settings_table,
        [
            {
                "id": 1,
                "reward_type": "discount",
                "reward_amount": 15.00,
                "min_order_value": 50.00,
                "cooldown_days": 14,
                "double_sided": True,
                "referee_reward_amount": 15.00,
                "code_expiry_days": 90,
                "max_referrals_per_day": 5,
                "block_self_referral": True,
                "flag_same_ip": True,
                "flag_low_order": True,
                "flag_rate_limit": True,
                "require_verified_email": False,
            }
        ],
    )


def downgrade() -> None:
    """Drop referral ledger tables."""
    op.drop_table("referral_settings")
    op.drop_index("ix_fraud_flags_referral_id", table_name="fraud_flags")
    op.drop_table("fraud_flags")
    op.drop_index("ix_referral_clicks_ip_address", table_name="referral_clicks")
    op.drop_index("ix_referral_clicks_referral_code", table_name="referral_clicks")
    op.drop_table("referral_clicks")
    op.drop_index("ix_rewards_discount_code", table_name="rewards")
    op.drop_index("ix_rewards_customer_id", table_name="rewards")
    op.drop_index("ix_rewards_referral_id", table_name="rewards")
    op.drop_table("rewards")
    op.drop_index("ix_referrals_status", table_name="referrals")
    op.drop_index("ix_referrals_external_order_id", table_name="referrals")
    op.drop_index("ix_referrals_referrer_id", table_name="referrals")
    op.drop_table("referrals")
    op.drop_index("ix_referral_customers_referral_code", table_name="referral_customers")
    op.drop_index("ix_referral_customers_email", table_name="referral_customers")
    op.drop_index("ix_referral_customers_shopify_id", table_name="referral_customers")
    op.drop_table("referral_customers")
