"""Shopify Admin API integration."""

from referral_engine.shopify.client import DiscountResult, ShopifyClient, ShopifyError

__all__ = ["DiscountResult", "ShopifyClient", "ShopifyError"]
