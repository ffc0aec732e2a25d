"""Anonymous session identifiers.

A session hash is derived once from coarse client signals, a secret salt
and a random nonce, then kept client-side for about a day. Tokens that do
not look like a derived hash are never trusted; a fresh one is derived
instead so forged or guessable ids cannot pollute aggregates.
"""
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

from .pii import SaltedHasher

logger = logging.getLogger(__name__)

SESSION_HASH_LENGTH = 32
SESSION_TTL = timedelta(hours=24)

_SESSION_PATTERN = re.compile(r"^[a-f0-9]{32}$")


@dataclass(frozen=True)
class ClientSignals:
    """Request-level signals used for derivation. Never persisted."""
    user_agent: str = ""
    ip_address: str = ""


def coarsen_user_agent(user_agent: str) -> str:
    """Reduce a user agent to its leading product name, e.g. 'mozilla'."""
    token = user_agent.strip().split(" ", 1)[0]
    return token.split("/", 1)[0].lower()[:32]


def is_valid_session_format(token: Optional[str]) -> bool:
    return isinstance(token, str) and bool(_SESSION_PATTERN.match(token))


def derive_session_id(signals: ClientSignals, salt: str, nonce: Optional[str] = None) -> str:
    """Derive a new anonymous session hash.

    Args:
        signals: Client signals for this request
        salt: Per-install secret salt
        nonce: Random nonce; generated when omitted

    Returns:
        32-char lowercase hex digest
    """
    if nonce is None:
        nonce = secrets.token_hex(16)

    material = "|".join([
        salt,
        coarsen_user_agent(signals.user_agent),
        f"{salt}{signals.ip_address}",
        nonce,
    ])
    return hashlib.sha256(material.encode()).hexdigest()[:SESSION_HASH_LENGTH]


class SessionIdentifier:
    """Resolves presented session tokens, deriving new ones when needed."""

    def __init__(self, hasher: SaltedHasher):
        self._hasher = hasher

    def resolve(self, presented_token: Optional[str], signals: ClientSignals) -> Tuple[str, bool]:
        """Return (session_hash, reused).

        A well-formed presented token is reused as-is. Anything else is
        discarded and a new hash derived.
        """
        if is_valid_session_format(presented_token):
            return presented_token, True

        if presented_token:
            logger.warning(
                "SESSION_TOKEN_REJECTED",
                extra={"token_length": len(presented_token)}
            )

        return derive_session_id(signals, self._hasher.salt), False


def subject_key(subject_id: str) -> str:
    """Storage key for a subject: a well-formed session hash, unchanged.

    Malformed tokens are refused rather than hashed into a new subject;
    callers resolve them through SessionIdentifier first. Account ids
    enter only through account_key.

    Raises:
        ValueError: If subject_id is not a session hash
    """
    if not is_valid_session_format(subject_id):
        raise ValueError("subject_id must be a 32-char session hash")
    return subject_id


def account_key(user_id: str, hasher: SaltedHasher) -> str:
    """Subject key for an authenticated account id.

    The id is salted, hashed and truncated to the session hash shape so
    account subjects share the same key space.

    Raises:
        ValueError: If user_id is empty
    """
    if not user_id or not isinstance(user_id, str):
        raise ValueError("user_id is required")

    return hasher.hash_identifier(f"account:{user_id}")[:SESSION_HASH_LENGTH]
