"""Shared utilities for CreatorPulse."""
from .clock import Clock, utcnow
from .identity import (
    SESSION_TTL,
    ClientSignals,
    SessionIdentifier,
    account_key,
    derive_session_id,
    is_valid_session_format,
    subject_key,
)
from .pii import SaltedHasher, load_salt_from_secrets_manager, normalize_hashtag

__all__ = [
    "Clock",
    "utcnow",
    "SESSION_TTL",
    "ClientSignals",
    "SessionIdentifier",
    "account_key",
    "derive_session_id",
    "is_valid_session_format",
    "subject_key",
    "SaltedHasher",
    "load_salt_from_secrets_manager",
    "normalize_hashtag",
]
