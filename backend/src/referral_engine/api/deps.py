"""FastAPI dependencies wiring services together.

Tests swap the database, discount service and customer lookup through
``app.dependency_overrides``; everything else is built on top of them.
"""

from fastapi import Depends

from referral_engine.referral.admin import AdminService
from referral_engine.referral.pipeline import ConversionPipeline, CustomerLookup
from referral_engine.referral.rewards import DiscountService, RewardIssuer
from referral_engine.referral.service import ReferralService
from referral_engine.shopify.client import ShopifyClient
from referral_engine.storage.db import Database, db


def get_database() -> Database:
    return db


def get_discount_service() -> DiscountService:
    return ShopifyClient()


def get_customer_lookup() -> CustomerLookup | None:
    return ShopifyClient()


def get_reward_issuer(
    discounts: DiscountService = Depends(get_discount_service),
    database: Database = Depends(get_database),
) -> RewardIssuer:
    return RewardIssuer(discounts, database)


def get_pipeline(
    issuer: RewardIssuer = Depends(get_reward_issuer),
    database: Database = Depends(get_database),
    customer_lookup: CustomerLookup | None = Depends(get_customer_lookup),
) -> ConversionPipeline:
    return ConversionPipeline(issuer=issuer, database=database, customer_lookup=customer_lookup)


def get_referral_service(
    discounts: DiscountService = Depends(get_discount_service),
    database: Database = Depends(get_database),
) -> ReferralService:
    return ReferralService(database=database, discounts=discounts)


def get_admin_service(
    issuer: RewardIssuer = Depends(get_reward_issuer),
    database: Database = Depends(get_database),
) -> AdminService:
    return AdminService(issuer, database)
