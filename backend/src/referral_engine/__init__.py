"""Referral program engine.

Tracks referral codes, converts attributed orders into referral records,
flags suspicious conversions and issues discount-code rewards after a
cooldown period.
"""

__version__ = "1.0.0"
