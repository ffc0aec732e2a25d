"""Derived analytics models: windows, baselines, profiles, trends, benchmarks.

None of these are persisted as ground truth. They are recomputed from
the event store and, for baselines, cached briefly.
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..utils.clock import utcnow


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time range [start, end)."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is not None or self.end.tzinfo is not None:
            raise ValueError("Window bounds must be naive UTC datetimes")
        if self.end <= self.start:
            raise ValueError(f"Window end {self.end} must be after start {self.start}")

    @classmethod
    def trailing(cls, days: int, now: Optional[datetime] = None) -> "TimeWindow":
        now = now or utcnow()
        return cls(now - timedelta(days=days), now)

    @classmethod
    def for_month(cls, year: int, month: int) -> "TimeWindow":
        start = datetime(year, month, 1)
        end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        return cls(start, end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def key(self) -> str:
        return f"{self.start.isoformat()}/{self.end.isoformat()}"

    def previous(self) -> "TimeWindow":
        """The immediately preceding window of equal duration."""
        return TimeWindow(self.start - self.duration, self.start)

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end

    def days(self) -> List[date]:
        """Calendar days touched by the window, in order."""
        first = self.start.date()
        last = (self.end - timedelta(microseconds=1)).date()
        return [first + timedelta(days=i) for i in range((last - first).days + 1)]

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class CommunityBaseline:
    """Community-wide averages over a window.

    top_hashtags preserves rank order (most used first).
    """
    window_start: datetime
    window_end: datetime
    average_engagement: float
    platform_averages: Dict[str, float]
    top_hashtags: Dict[str, int]
    average_session_count: float
    metric_averages: Dict[str, float] = field(default_factory=dict)
    subject_count: int = 0
    event_count: int = 0
    computed_at: datetime = field(default_factory=utcnow)
    stale: bool = False

    def metric_average(self, metric_name: str) -> float:
        return self.metric_averages.get(metric_name, 0.0)

    def as_stale(self) -> "CommunityBaseline":
        return replace(self, stale=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window": {"start": self.window_start.isoformat(), "end": self.window_end.isoformat()},
            "average_engagement": self.average_engagement,
            "platform_averages": dict(self.platform_averages),
            "top_hashtags": [
                {"hashtag_hash": h, "count": c} for h, c in self.top_hashtags.items()
            ],
            "average_session_count": self.average_session_count,
            "metric_averages": dict(self.metric_averages),
            "subject_count": self.subject_count,
            "event_count": self.event_count,
            "computed_at": self.computed_at.isoformat(),
            "stale": self.stale,
        }


@dataclass(frozen=True)
class SubjectProfile:
    """One subject's activity over a trailing window."""
    subject_id: str
    window_start: datetime
    window_end: datetime
    total_events: int = 0
    platforms: Dict[str, int] = field(default_factory=dict)
    tones: Dict[str, int] = field(default_factory=dict)
    features: Dict[str, int] = field(default_factory=dict)
    hashtag_usage: Dict[str, int] = field(default_factory=dict)
    template_usage: Dict[str, int] = field(default_factory=dict)
    activity_pattern: Dict[int, int] = field(default_factory=dict)
    consistency_score: float = 0.0
    most_used_platform: Optional[str] = None
    most_used_tone: Optional[str] = None
    most_active_hour: Optional[int] = None

    def __post_init__(self):
        if not 0.0 <= self.consistency_score <= 1.0:
            raise ValueError(f"consistency_score must be 0.0-1.0, got {self.consistency_score}")

    @property
    def platform_diversity(self) -> int:
        return len(self.platforms)

    @property
    def is_empty(self) -> bool:
        return self.total_events == 0


class PerformanceTier(Enum):
    EXCELLENT = "excellent"
    ABOVE_AVERAGE = "above_average"
    AVERAGE = "average"
    BELOW_AVERAGE = "below_average"
    NEEDS_IMPROVEMENT = "needs_improvement"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class BenchmarkResult:
    metric_name: str
    subject_score: float
    community_average: float
    relative_delta_pct: Optional[float]
    performance_tier: PerformanceTier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "subject_score": self.subject_score,
            "community_average": self.community_average,
            "relative_delta_pct": self.relative_delta_pct,
            "performance_tier": self.performance_tier.value,
        }


@dataclass(frozen=True)
class Achievement:
    name: str
    score: float
    level: int
    thresholds: Tuple[int, ...]
    next_milestone: Optional[int]

    @property
    def max_level(self) -> int:
        return len(self.thresholds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "score": self.score,
            "level": self.level,
            "max_level": self.max_level,
            "next_milestone": self.next_milestone,
        }


@dataclass(frozen=True)
class BenchmarkReport:
    """Per-metric results plus the summary scores for one subject.

    insufficient_data marks a subject with no events; stale marks a report
    built against a fallback baseline after a failed recomputation.
    """
    subject_id: str
    results: List[BenchmarkResult]
    overall_score: float
    percentile_rank: Optional[int]
    insufficient_data: bool = False
    stale: bool = False
    achievements: List[Achievement] = field(default_factory=list)

    @property
    def strengths(self) -> List[str]:
        return [
            r.metric_name for r in self.results
            if r.performance_tier in (PerformanceTier.EXCELLENT, PerformanceTier.ABOVE_AVERAGE)
        ]

    @property
    def improvement_areas(self) -> List[str]:
        return [
            r.metric_name for r in self.results
            if r.performance_tier in (PerformanceTier.BELOW_AVERAGE, PerformanceTier.NEEDS_IMPROVEMENT)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "overall_score": self.overall_score,
            "percentile_rank": self.percentile_rank,
            "insufficient_data": self.insufficient_data,
            "stale": self.stale,
            "strengths": self.strengths,
            "improvement_areas": self.improvement_areas,
            "achievements": [a.to_dict() for a in self.achievements],
        }


class TrendDimension(Enum):
    HASHTAG = "hashtag"
    PLATFORM = "platform"
    TONE = "tone"


class TrendDirection(Enum):
    RISING = "rising"
    STABLE = "stable"
    DECLINING = "declining"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class TrendEntry:
    key: str
    dimension: TrendDimension
    current_usage: int
    previous_usage: int
    growth_rate: float
    unique_subjects: int
    trend_score: float
    direction: TrendDirection
    platforms: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "dimension": self.dimension.value,
            "current_usage": self.current_usage,
            "previous_usage": self.previous_usage,
            "growth_rate": self.growth_rate,
            "unique_subjects": self.unique_subjects,
            "trend_score": self.trend_score,
            "direction": self.direction.value,
            "platforms": dict(self.platforms),
        }


@dataclass(frozen=True)
class GrowthPattern:
    """Least-squares classification of a usage series."""
    trend: TrendDirection
    slope: float = 0.0
    volatility: float = 0.0
    mean: float = 0.0
    confidence: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trend": self.trend.value,
            "slope": self.slope,
            "volatility": self.volatility,
            "mean": self.mean,
            "confidence": self.confidence,
        }
