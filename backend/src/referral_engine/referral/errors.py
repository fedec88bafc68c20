"""Referral domain errors."""


class ReferralError(Exception):
    """Base error for referral operations."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(ReferralError):
    """Referenced customer, referral or flag does not exist."""


class InvalidStatusError(ReferralError):
    """Status value outside the fixed referral vocabulary."""


class NotEligibleError(ReferralError):
    """Referral is not in a state that allows reward issuance."""


class CodeGenerationError(ReferralError):
    """Every generated code collided with an existing one."""

    def __init__(self, prefix: str, attempts: int):
        self.prefix = prefix
        self.attempts = attempts
        super().__init__(f"Could not generate a unique {prefix} code after {attempts} attempts")
