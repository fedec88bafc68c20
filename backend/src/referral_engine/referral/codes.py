"""Referral and discount code generation."""

import secrets
from typing import Callable

from referral_engine.referral.errors import CodeGenerationError

# No I, O, 0 or 1 to avoid confusion when codes are typed by hand
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

REFERRAL_CODE_LENGTH = 6
DISCOUNT_CODE_LENGTH = 8
MAX_ATTEMPTS = 5


def generate_code(prefix: str, length: int) -> str:
    """Generate a ``PREFIX-XXXX`` code from the unambiguous alphabet."""
    body = "".join(secrets.choice(ALPHABET) for _ in range(length))
    return f"{prefix}-{body}"


def generate_referral_code(prefix: str = "OKURA") -> str:
    """Generate a shareable referral code, e.g. ``OKURA-7KQ2MX``."""
    return generate_code(prefix, REFERRAL_CODE_LENGTH)


def generate_discount_code(prefix: str = "OKREF") -> str:
    """Generate a reward discount code, e.g. ``OKREF-9HX3T7PA``."""
    return generate_code(prefix, DISCOUNT_CODE_LENGTH)


def generate_unique_code(
    generator: Callable[[], str],
    exists: Callable[[str], bool],
    prefix: str,
    max_attempts: int = MAX_ATTEMPTS,
) -> str:
    """Generate a code that does not collide with existing ones.

    Args:
        generator: Produces a candidate code
        exists: Returns True if the candidate is already taken
        prefix: Code prefix, used in the error message
        max_attempts: Number of candidates to try

    Returns:
        A code for which ``exists`` returned False

    Raises:
        CodeGenerationError: If every candidate collided
    """
    for _ in range(max_attempts):
        code = generator()
        if not exists(code):
            return code
    raise CodeGenerationError(prefix, max_attempts)
