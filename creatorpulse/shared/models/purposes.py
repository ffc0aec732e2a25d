"""Consent categories, collection purposes and their data policies.

Each purpose names the consent category it depends on, the payload
fields it may keep, the fields it must never keep, and how long events
collected for it are retained. Adding a purpose means adding an enum
member and a policy entry here; nothing is looked up by free-form string.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

CONSENT_VERSION = "2.0"
POLICY_VERSION = "2026.10.01"


class ConsentCategory(Enum):
    """Independently grantable consent categories."""
    BASIC_ANALYTICS = "basic_analytics"
    HASHTAG_TRENDS = "hashtag_trends"
    PERFORMANCE_BENCHMARKING = "performance_benchmarking"
    PRODUCT_IMPROVEMENT = "product_improvement"

    @classmethod
    def parse(cls, value) -> Optional["ConsentCategory"]:
        """Return the matching category, or None for anything unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class Purpose(Enum):
    """Declared reasons for collecting an event."""
    HASHTAG_TREND_ANALYSIS = "hashtag_trend_analysis"
    SERVICE_IMPROVEMENT = "service_improvement"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"
    DEBUGGING_IMPROVEMENT = "debugging_improvement"
    USER_INSIGHTS = "user_insights"
    PRODUCT_DEVELOPMENT = "product_development"
    # Fallback for purposes not declared above; strictest policy
    UNCLASSIFIED = "unclassified"

    @classmethod
    def parse(cls, value) -> Optional["Purpose"]:
        """Return the matching declared purpose, or None.

        UNCLASSIFIED is never returned for caller input.
        """
        if isinstance(value, cls):
            return None if value is cls.UNCLASSIFIED else value
        try:
            purpose = cls(value)
        except ValueError:
            return None
        return None if purpose is cls.UNCLASSIFIED else purpose


# Fields carried on the event envelope rather than the payload
ENVELOPE_FIELDS: FrozenSet[str] = frozenset({"timestamp", "event_type"})


@dataclass(frozen=True)
class PurposePolicy:
    """Data policy for one purpose."""
    purpose: Purpose
    required_category: ConsentCategory
    collect: FrozenSet[str]
    exclude: FrozenSet[str]
    retention_days: int

    def __post_init__(self):
        if self.retention_days <= 0:
            raise ValueError(f"retention_days must be positive, got {self.retention_days}")
        overlap = self.collect & self.exclude
        if overlap:
            raise ValueError(f"Fields both collected and excluded: {sorted(overlap)}")

    def allows(self, field_name: str) -> bool:
        return field_name in self.collect and field_name not in self.exclude

    @property
    def payload_fields(self) -> FrozenSet[str]:
        """Allowed fields that are stored in the payload."""
        return self.collect - self.exclude - ENVELOPE_FIELDS


PURPOSE_POLICIES: Dict[Purpose, PurposePolicy] = {
    Purpose.HASHTAG_TREND_ANALYSIS: PurposePolicy(
        purpose=Purpose.HASHTAG_TREND_ANALYSIS,
        required_category=ConsentCategory.HASHTAG_TRENDS,
        collect=frozenset({
            "timestamp", "event_type", "hashtag_hash", "platform",
            "tone", "content_type", "source", "usage_count",
        }),
        exclude=frozenset({
            "hashtag_text", "user_content", "personal_identifiers", "ip_address",
        }),
        retention_days=180,
    ),
    Purpose.SERVICE_IMPROVEMENT: PurposePolicy(
        purpose=Purpose.SERVICE_IMPROVEMENT,
        required_category=ConsentCategory.BASIC_ANALYTICS,
        collect=frozenset({
            "timestamp", "event_type", "feature", "action", "platform",
            "previous_platform", "tone", "session_duration", "success",
            "processing_time_ms", "content_length",
        }),
        exclude=frozenset({"user_id", "ip_address", "detailed_content", "personal_data"}),
        retention_days=365,
    ),
    Purpose.PERFORMANCE_OPTIMIZATION: PurposePolicy(
        purpose=Purpose.PERFORMANCE_OPTIMIZATION,
        required_category=ConsentCategory.BASIC_ANALYTICS,
        collect=frozenset({
            "timestamp", "event_type", "metric_type", "value", "context",
            "feature", "processing_time_ms", "success",
        }),
        exclude=frozenset({"personal_data", "identifying_information", "content_details"}),
        retention_days=365,
    ),
    Purpose.DEBUGGING_IMPROVEMENT: PurposePolicy(
        purpose=Purpose.DEBUGGING_IMPROVEMENT,
        required_category=ConsentCategory.BASIC_ANALYTICS,
        collect=frozenset({
            "timestamp", "event_type", "error_type", "error_context",
            "browser_type", "feature",
        }),
        exclude=frozenset({"user_credentials", "personal_content", "full_stack_trace"}),
        retention_days=90,
    ),
    Purpose.USER_INSIGHTS: PurposePolicy(
        purpose=Purpose.USER_INSIGHTS,
        required_category=ConsentCategory.PERFORMANCE_BENCHMARKING,
        collect=frozenset({
            "timestamp", "event_type", "platform", "previous_platform", "tone",
            "feature", "action", "hashtag_hash", "template_hash",
            "completion_status", "customizations_made", "content_type", "source",
        }),
        exclude=frozenset({"user_id", "ip_address", "user_content"}),
        retention_days=730,
    ),
    Purpose.PRODUCT_DEVELOPMENT: PurposePolicy(
        purpose=Purpose.PRODUCT_DEVELOPMENT,
        required_category=ConsentCategory.PRODUCT_IMPROVEMENT,
        collect=frozenset({
            "timestamp", "event_type", "feature", "action", "platform",
            "template_hash", "completion_status", "customizations_made",
        }),
        exclude=frozenset({"personal_data", "user_content"}),
        retention_days=730,
    ),
    Purpose.UNCLASSIFIED: PurposePolicy(
        purpose=Purpose.UNCLASSIFIED,
        required_category=ConsentCategory.BASIC_ANALYTICS,
        collect=frozenset({"timestamp", "event_type", "platform"}),
        exclude=frozenset(),
        retention_days=90,
    ),
}

DEFAULT_POLICY = PURPOSE_POLICIES[Purpose.UNCLASSIFIED]


def policy_for(purpose: Optional[Purpose]) -> PurposePolicy:
    """Policy for a purpose; the strict default when purpose is None or unmapped."""
    if purpose is None:
        return DEFAULT_POLICY
    return PURPOSE_POLICIES.get(purpose, DEFAULT_POLICY)
