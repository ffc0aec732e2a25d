"""Shared domain models for CreatorPulse."""
from .consent import ConsentRecord
from .events import (
    ALLOWED_PLATFORMS,
    EVENT_SCHEMAS,
    FIELD_ALIASES,
    UNKNOWN_PLATFORM,
    Event,
    EventSchema,
    EventType,
    FieldKind,
    IngestResult,
    RejectionReason,
)
from .insights import (
    Achievement,
    BenchmarkReport,
    BenchmarkResult,
    CommunityBaseline,
    GrowthPattern,
    PerformanceTier,
    SubjectProfile,
    TimeWindow,
    TrendDimension,
    TrendDirection,
    TrendEntry,
)
from .purposes import (
    CONSENT_VERSION,
    DEFAULT_POLICY,
    ENVELOPE_FIELDS,
    POLICY_VERSION,
    PURPOSE_POLICIES,
    ConsentCategory,
    Purpose,
    PurposePolicy,
    policy_for,
)

__all__ = [
    "ConsentRecord",
    "ALLOWED_PLATFORMS",
    "EVENT_SCHEMAS",
    "FIELD_ALIASES",
    "UNKNOWN_PLATFORM",
    "Event",
    "EventSchema",
    "EventType",
    "FieldKind",
    "IngestResult",
    "RejectionReason",
    "Achievement",
    "BenchmarkReport",
    "BenchmarkResult",
    "CommunityBaseline",
    "GrowthPattern",
    "PerformanceTier",
    "SubjectProfile",
    "TimeWindow",
    "TrendDimension",
    "TrendDirection",
    "TrendEntry",
    "CONSENT_VERSION",
    "DEFAULT_POLICY",
    "ENVELOPE_FIELDS",
    "POLICY_VERSION",
    "PURPOSE_POLICIES",
    "ConsentCategory",
    "Purpose",
    "PurposePolicy",
    "policy_for",
]
