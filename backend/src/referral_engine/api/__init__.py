"""HTTP API for the referral engine."""
