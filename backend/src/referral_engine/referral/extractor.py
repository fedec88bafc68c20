"""Referral code extraction from order events.

The storefront can carry the code in three places. They are tried in
order and the first match wins:

1. A note attribute named ``referral_code`` or ``ref``
2. ``ref: OKURA-XXXXXX`` inside the free-text order note
3. ``ref:OKURA-XXXXXX`` inside the customer tag string
"""

import re
from typing import Callable

from referral_engine.referral.schemas import OrderEvent

REFERRAL_ATTRIBUTE_NAMES = ("referral_code", "ref")

Strategy = Callable[[OrderEvent, str], str | None]


def _note_pattern(prefix: str) -> re.Pattern:
    return re.compile(rf"ref[:\s]*({re.escape(prefix)}-[A-Z0-9]+)", re.IGNORECASE)


def _tag_pattern(prefix: str) -> re.Pattern:
    return re.compile(rf"ref:({re.escape(prefix)}-[A-Z0-9]+)", re.IGNORECASE)


def from_note_attributes(order: OrderEvent, prefix: str) -> str | None:
    """Code from the ``referral_code`` / ``ref`` note attribute."""
    for attribute in order.note_attributes:
        if attribute.name in REFERRAL_ATTRIBUTE_NAMES and attribute.value:
            return attribute.value
    return None


def from_order_note(order: OrderEvent, prefix: str) -> str | None:
    """Code mentioned in the order note."""
    if not order.note:
        return None
    match = _note_pattern(prefix).search(order.note)
    return match.group(1) if match else None


def from_customer_tags(order: OrderEvent, prefix: str) -> str | None:
    """Code stored as a customer tag."""
    if not order.customer or not order.customer.tags:
        return None
    match = _tag_pattern(prefix).search(order.customer.tags)
    return match.group(1) if match else None


EXTRACTION_STRATEGIES: tuple[Strategy, ...] = (
    from_note_attributes,
    from_order_note,
    from_customer_tags,
)


def extract_referral_code(order: OrderEvent, prefix: str = "OKURA") -> str | None:
    """Find the referral code an order was placed with.

    Args:
        order: Validated order event
        prefix: Referral code prefix

    Returns:
        Upper-cased referral code, or None if the order carries none
    """
    for strategy in EXTRACTION_STRATEGIES:
        code = strategy(order, prefix)
        if code and code.strip():
            return code.strip().upper()
    return None
