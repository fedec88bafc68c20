"""Persistent referral ledger: models, session management and repositories."""
