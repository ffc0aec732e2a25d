"""Analytics event types, their payload schemas, and ingestion results.

Every event type has a typed schema. Payloads are validated against it at
ingestion so downstream aggregation reads known fields of known types.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Union

from .purposes import Purpose

Scalar = Union[str, int, float, bool]

ALLOWED_PLATFORMS: FrozenSet[str] = frozenset({
    "instagram", "twitter", "facebook", "tiktok", "linkedin",
})
UNKNOWN_PLATFORM = "unknown"


class EventType(Enum):
    HASHTAG_ADDED = "hashtag_added"
    PLATFORM_SELECTED = "platform_selected"
    TONE_SELECTED = "tone_selected"
    TEMPLATE_USED = "template_used"
    CONTENT_GENERATED = "content_generated"
    FEATURE_USED = "feature_used"
    ERROR_REPORTED = "error_reported"
    METRIC_RECORDED = "metric_recorded"

    @classmethod
    def parse(cls, value) -> Optional["EventType"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class FieldKind(Enum):
    """How a payload field is sanitized."""
    HASHTAG = "hashtag"     # Raw tag in, salted hash out
    DIGEST = "digest"       # Opaque id in, salted hash out
    PLATFORM = "platform"   # Allow-listed platform name
    TOKEN = "token"         # Short slug; free text rejected
    INTEGER = "integer"     # Non-negative int
    NUMBER = "number"       # Finite int or float
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class EventSchema:
    """Typed payload schema for one event type."""
    fields: Mapping[str, FieldKind]
    required: FrozenSet[str] = frozenset()

    def __post_init__(self):
        missing = self.required - set(self.fields)
        if missing:
            raise ValueError(f"Required fields not in schema: {sorted(missing)}")


_P = FieldKind.PLATFORM
_T = FieldKind.TOKEN
_I = FieldKind.INTEGER

EVENT_SCHEMAS: Dict[EventType, EventSchema] = {
    EventType.HASHTAG_ADDED: EventSchema(
        fields={
            "hashtag_hash": FieldKind.HASHTAG, "platform": _P, "tone": _T,
            "content_type": _T, "source": _T, "usage_count": _I,
        },
        required=frozenset({"hashtag_hash"}),
    ),
    EventType.PLATFORM_SELECTED: EventSchema(
        fields={"platform": _P, "previous_platform": _P, "feature": _T},
        required=frozenset({"platform"}),
    ),
    EventType.TONE_SELECTED: EventSchema(
        fields={"tone": _T, "platform": _P, "feature": _T},
        required=frozenset({"tone"}),
    ),
    EventType.TEMPLATE_USED: EventSchema(
        fields={
            "template_hash": FieldKind.DIGEST, "platform": _P, "tone": _T,
            "completion_status": _T, "customizations_made": _I,
        },
        required=frozenset({"template_hash"}),
    ),
    EventType.CONTENT_GENERATED: EventSchema(
        fields={
            "feature": _T, "platform": _P, "tone": _T, "success": FieldKind.BOOLEAN,
            "processing_time_ms": _I, "content_length": _I,
        },
    ),
    EventType.FEATURE_USED: EventSchema(
        fields={"feature": _T, "action": _T, "platform": _P, "session_duration": _I},
        required=frozenset({"feature"}),
    ),
    EventType.ERROR_REPORTED: EventSchema(
        fields={"error_type": _T, "error_context": _T, "browser_type": _T, "feature": _T},
        required=frozenset({"error_type"}),
    ),
    EventType.METRIC_RECORDED: EventSchema(
        fields={
            "metric_type": _T, "value": FieldKind.NUMBER, "context": _T,
            "feature": _T, "processing_time_ms": _I, "success": FieldKind.BOOLEAN,
        },
        required=frozenset({"metric_type"}),
    ),
}

# Client-facing names that are stored under a hashed field
FIELD_ALIASES: Dict[str, str] = {
    "hashtag": "hashtag_hash",
    "template_id": "template_hash",
}


@dataclass(frozen=True)
class Event:
    """A minimized, anonymized analytics event. Never updated after insert."""
    event_id: str
    event_type: EventType
    session_hash: str
    purpose: Purpose
    timestamp: datetime
    retention_until: datetime
    payload: Mapping[str, Scalar] = field(default_factory=dict)
    platform: Optional[str] = None

    def __post_init__(self):
        if self.retention_until < self.timestamp:
            raise ValueError("retention_until must not precede timestamp")
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def get(self, name: str, default=None):
        return self.payload.get(name, default)


class RejectionReason(Enum):
    CONSENT_MISSING = "consent_missing"
    INVALID_FIELD = "invalid_field"
    UNKNOWN_PURPOSE = "unknown_purpose"


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingestion attempt.

    A rejection is a normal outcome, not an error. Consent denials in
    particular are routine and surface to clients as "not tracked".
    """
    event_id: Optional[str] = None
    rejection: Optional[RejectionReason] = None
    detail: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.event_id is not None

    @classmethod
    def accept(cls, event_id: str) -> "IngestResult":
        return cls(event_id=event_id)

    @classmethod
    def reject(cls, reason: RejectionReason, detail: Optional[str] = None) -> "IngestResult":
        return cls(rejection=reason, detail=detail)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "tracked": self.accepted,
            "event_id": self.event_id,
            "reason": self.rejection.value if self.rejection else None,
            "detail": self.detail,
        }
