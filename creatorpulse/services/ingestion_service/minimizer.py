"""Data Minimizer - reduces a raw payload to what its purpose allows.

Fields outside the purpose allow-list (or inside its exclude list) are
dropped. Allowed fields go through a sanitizer for their declared kind:
hashtags and template ids are hashed, platforms are allow-listed,
free text and anything shaped like an IP address is rejected outright.
"""
import ipaddress
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple

from creatorpulse.shared.models import (
    ALLOWED_PLATFORMS,
    ENVELOPE_FIELDS,
    EVENT_SCHEMAS,
    FIELD_ALIASES,
    UNKNOWN_PLATFORM,
    EventType,
    FieldKind,
    PurposePolicy,
)
from creatorpulse.shared.models.events import Scalar
from creatorpulse.shared.utils import SaltedHasher, normalize_hashtag

logger = logging.getLogger(__name__)

MAX_HASHTAG_LENGTH = 100

_TOKEN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_\-]{0,63}$")
_HASHTAG_PATTERN = re.compile(r"^[a-z0-9_]+$")
_INLINE_HASHTAG = re.compile(r"#([A-Za-z0-9_]+)")


class InvalidFieldError(ValueError):
    """A payload field failed validation."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


@dataclass(frozen=True)
class MinimizedPayload:
    fields: Dict[str, Scalar]
    dropped: Tuple[str, ...] = ()


def _looks_like_ip(value: str) -> bool:
    candidate = value.strip().strip("[]")
    if "/" in candidate:
        candidate = candidate.split("/", 1)[0]
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return False
    return True


def sanitize_platform(value: str) -> str:
    platform = value.strip().lower()
    return platform if platform in ALLOWED_PLATFORMS else UNKNOWN_PLATFORM


def extract_hashtags(text: str) -> List[str]:
    """Distinct lowercase hashtags in free text, in order of first use.

    Only the tags are returned; the surrounding text is discarded.
    """
    if not isinstance(text, str):
        return []
    seen: Dict[str, None] = {}
    for match in _INLINE_HASHTAG.findall(text):
        tag = match.lower()[:MAX_HASHTAG_LENGTH]
        seen.setdefault(tag, None)
    return list(seen)


class DataMinimizer:
    """Applies purpose allow-lists and per-field sanitizers."""

    def __init__(self, hasher: SaltedHasher):
        self._hasher = hasher

    def minimize(
        self,
        event_type: EventType,
        raw_payload: Mapping[str, Any],
        policy: PurposePolicy,
    ) -> MinimizedPayload:
        """Minimize a raw payload for a purpose.

        Args:
            event_type: Declared event type (selects the schema)
            raw_payload: Client payload
            policy: Data policy of the declared purpose

        Returns:
            MinimizedPayload with sanitized fields and the dropped names

        Raises:
            InvalidFieldError: On a malformed value or missing required field
        """
        if not isinstance(raw_payload, Mapping):
            raise InvalidFieldError("payload", "must be a mapping")

        schema = EVENT_SCHEMAS[event_type]
        fields: Dict[str, Scalar] = {}
        dropped = []

        for name, value in raw_payload.items():
            if not isinstance(name, str):
                raise InvalidFieldError(str(name), "field names must be strings")

            canonical = FIELD_ALIASES.get(name, name)
            if canonical in ENVELOPE_FIELDS:
                continue
            if not policy.allows(canonical) or canonical not in schema.fields:
                dropped.append(name)
                continue
            if value is None:
                continue
            if canonical in fields:
                raise InvalidFieldError(name, "supplied more than once")

            fields[canonical] = self.sanitize(canonical, value, schema.fields[canonical])

        missing = schema.required - set(fields)
        if missing:
            raise InvalidFieldError(sorted(missing)[0], "required field missing or not allowed for purpose")

        if dropped:
            logger.debug(
                "PAYLOAD_FIELDS_DROPPED",
                extra={
                    "event_type": event_type.value,
                    "purpose": policy.purpose.value,
                    "dropped_count": len(dropped),
                }
            )

        return MinimizedPayload(fields=fields, dropped=tuple(sorted(dropped)))

    def sanitize(self, name: str, value: Any, kind: FieldKind) -> Scalar:
        """Sanitize one allowed field value.

        Raises:
            InvalidFieldError: If the value cannot be stored safely
        """
        if isinstance(value, (dict, list, tuple, set)):
            raise InvalidFieldError(name, "nested values are not allowed")
        if isinstance(value, str) and _looks_like_ip(value):
            raise InvalidFieldError(name, "IP addresses are never stored")

        if kind is FieldKind.HASHTAG:
            return self._hashtag(name, value)
        if kind is FieldKind.DIGEST:
            token = self._token(name, value)
            return self._hasher.hash_template(token)
        if kind is FieldKind.PLATFORM:
            if not isinstance(value, str):
                raise InvalidFieldError(name, "must be a string")
            return sanitize_platform(value)
        if kind is FieldKind.TOKEN:
            return self._token(name, value)
        if kind is FieldKind.INTEGER:
            return self._integer(name, value)
        if kind is FieldKind.NUMBER:
            return self._number(name, value)
        if kind is FieldKind.BOOLEAN:
            if not isinstance(value, bool):
                raise InvalidFieldError(name, "must be a boolean")
            return value

        raise InvalidFieldError(name, f"unsupported field kind {kind}")

    def _hashtag(self, name: str, value: Any) -> str:
        if not isinstance(value, str):
            raise InvalidFieldError(name, "must be a string")
        tag = normalize_hashtag(value)
        if not tag or len(tag) > MAX_HASHTAG_LENGTH or not _HASHTAG_PATTERN.match(tag):
            raise InvalidFieldError(name, "not a valid hashtag")
        return self._hasher.hash_hashtag(tag)

    @staticmethod
    def _token(name: str, value: Any) -> str:
        if not isinstance(value, str):
            raise InvalidFieldError(name, "must be a string")
        token = value.strip().lower()
        if not _TOKEN_PATTERN.match(token):
            raise InvalidFieldError(name, "free text is not allowed")
        return token

    @staticmethod
    def _integer(name: str, value: Any) -> int:
        if isinstance(value, bool):
            raise InvalidFieldError(name, "must be an integer")
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if not isinstance(value, int):
            raise InvalidFieldError(name, "must be an integer")
        if value < 0:
            raise InvalidFieldError(name, "must not be negative")
        return value

    @staticmethod
    def _number(name: str, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidFieldError(name, "must be a number")
        if not math.isfinite(value):
            raise InvalidFieldError(name, "must be finite")
        return value
