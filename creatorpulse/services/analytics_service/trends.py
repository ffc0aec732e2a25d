"""Trend Analyzer - what is rising, what is fading, and when people post.

Trend entries compare a window with the equal-length window before it.
Growth-pattern classification fits an ordinary least-squares line to a
daily usage series. Both use fixed, explainable formulas.
"""
import logging
import statistics
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Set

from creatorpulse.shared.models import (
    UNKNOWN_PLATFORM,
    Event,
    EventType,
    GrowthPattern,
    SubjectProfile,
    TimeWindow,
    TrendDimension,
    TrendDirection,
    TrendEntry,
)

from ..ingestion_service import EventStore

logger = logging.getLogger(__name__)

MIN_CANDIDATE_USAGE = 3
NEW_ENTRANT_THRESHOLD = 5
NEW_ENTRANT_GROWTH = 100.0
GROWTH_THRESHOLD_PCT = 20.0
HIGH_USAGE_THRESHOLD = 10
SLOPE_THRESHOLD = 1.0
VOLATILITY_CONFIDENCE_RATIO = 0.3
USER_TRENDING_LIMIT = 15
FALLBACK_TRENDING_LIMIT = 10

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def growth_rate(current: int, previous: int) -> float:
    """Percent growth from previous to current, rounded to one decimal.

    With no previous usage, a key with at least NEW_ENTRANT_THRESHOLD
    uses counts as a new trend (100%); anything smaller as 0%.
    """
    if previous > 0:
        return round((current - previous) / previous * 100, 1)
    return NEW_ENTRANT_GROWTH if current >= NEW_ENTRANT_THRESHOLD else 0.0


def trend_score(current: int, growth: float, unique_subjects: int) -> float:
    """Bounded composite of volume (50), momentum (30) and breadth (20)."""
    return round(
        min(50.0, current * 2) + min(30.0, growth * 0.3) + min(20.0, unique_subjects * 2),
        1,
    )


def direction_for(growth: float) -> TrendDirection:
    if growth >= GROWTH_THRESHOLD_PCT:
        return TrendDirection.RISING
    if growth <= -GROWTH_THRESHOLD_PCT:
        return TrendDirection.DECLINING
    return TrendDirection.STABLE


def classify_growth(series: Sequence[float]) -> GrowthPattern:
    """Classify a usage series with a least-squares slope.

    slope > 1 is rising, slope < -1 declining, otherwise stable.
    Confidence is high when the population standard deviation is below
    30% of the mean.
    """
    n = len(series)
    if n < 2:
        return GrowthPattern(trend=TrendDirection.INSUFFICIENT_DATA)

    x = range(1, n + 1)
    sum_x = sum(x)
    sum_y = float(sum(series))
    sum_xy = sum(xi * yi for xi, yi in zip(x, series))
    sum_x2 = sum(xi * xi for xi in x)
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x ** 2)

    if slope > SLOPE_THRESHOLD:
        trend = TrendDirection.RISING
    elif slope < -SLOPE_THRESHOLD:
        trend = TrendDirection.DECLINING
    else:
        trend = TrendDirection.STABLE

    mean = sum_y / n
    volatility = statistics.pstdev(series)

    return GrowthPattern(
        trend=trend,
        slope=round(slope, 2),
        volatility=round(volatility, 2),
        mean=round(mean, 2),
        confidence="high" if volatility < mean * VOLATILITY_CONFIDENCE_RATIO else "medium",
    )


def known_platform(event: Event) -> Optional[str]:
    """The event platform, or None when absent or unrecognized."""
    if event.platform and event.platform != UNKNOWN_PLATFORM:
        return event.platform
    return None


def dimension_key(event: Event, dimension: TrendDimension) -> Optional[str]:
    if dimension is TrendDimension.HASHTAG:
        if event.event_type is EventType.HASHTAG_ADDED:
            return event.get("hashtag_hash")
        return None
    if dimension is TrendDimension.PLATFORM:
        return known_platform(event)
    return event.get("tone")


@dataclass
class KeyUsage:
    count: int = 0
    subjects: Set[str] = field(default_factory=set)
    platforms: Counter = field(default_factory=Counter)


def usage_by_key(events: Sequence[Event], dimension: TrendDimension) -> Dict[str, KeyUsage]:
    usage: Dict[str, KeyUsage] = {}
    for event in events:
        key = dimension_key(event, dimension)
        if not key:
            continue
        entry = usage.setdefault(key, KeyUsage())
        entry.count += 1
        entry.subjects.add(event.session_hash)
        platform = known_platform(event)
        if platform:
            entry.platforms[platform] += 1
    return usage


def daily_series(events: Sequence[Event], window: TimeWindow) -> List[int]:
    """Event counts per calendar day of window, zero-filled."""
    per_day: Dict[date, int] = Counter(e.timestamp.date() for e in events)
    return [per_day.get(day, 0) for day in window.days()]


class TrendAnalyzer:
    """Computes trend entries and monthly trend views from the event store."""

    def __init__(self, event_store: EventStore):
        self._store = event_store

    def compute_trends(
        self,
        current_window: TimeWindow,
        previous_window: Optional[TimeWindow] = None,
        top_n: Optional[int] = 20,
        dimension: TrendDimension = TrendDimension.HASHTAG,
    ) -> List[TrendEntry]:
        """Rank keys of a dimension by trend score.

        Args:
            current_window: Window being evaluated
            previous_window: Comparison window; defaults to the equal-length
                window immediately before current_window
            top_n: Maximum entries returned; None for all
            dimension: hashtag, platform or tone

        Returns:
            Entries sorted by trend score, then usage, then key

        Raises:
            ValueError: If the windows differ in length or top_n is below 1
            StorageError: If the store is unavailable
        """
        if top_n is not None and top_n < 1:
            raise ValueError("top_n must be at least 1")
        previous_window = previous_window or current_window.previous()
        if previous_window.duration != current_window.duration:
            raise ValueError("Trend windows must have equal duration")

        current = usage_by_key(self._store.find_in_window(current_window), dimension)
        previous = usage_by_key(self._store.find_in_window(previous_window), dimension)

        entries = []
        for key, usage in current.items():
            if usage.count < MIN_CANDIDATE_USAGE:
                continue
            prev_count = previous[key].count if key in previous else 0
            growth = growth_rate(usage.count, prev_count)
            if growth < GROWTH_THRESHOLD_PCT and usage.count < HIGH_USAGE_THRESHOLD:
                continue

            entries.append(TrendEntry(
                key=key,
                dimension=dimension,
                current_usage=usage.count,
                previous_usage=prev_count,
                growth_rate=growth,
                unique_subjects=len(usage.subjects),
                trend_score=trend_score(usage.count, growth, len(usage.subjects)),
                direction=direction_for(growth),
                platforms=dict(usage.platforms),
            ))

        entries.sort(key=lambda e: (-e.trend_score, -e.current_usage, e.key))

        logger.info(
            "TRENDS_COMPUTED",
            extra={
                "dimension": dimension.value,
                "window": current_window.key,
                "candidates": len(current),
                "returned": len(entries[:top_n]),
            }
        )
        return entries[:top_n]

    def hashtag_growth(self, window: TimeWindow, limit: int = 10) -> List[Dict[str, Any]]:
        """Growth pattern of the most used hashtags across window."""
        events = self._store.find_in_window(window, event_types=[EventType.HASHTAG_ADDED])
        usage = usage_by_key(events, TrendDimension.HASHTAG)
        top = sorted(usage, key=lambda k: (-usage[k].count, k))[:limit]

        results = []
        for key in top:
            series = daily_series([e for e in events if e.get("hashtag_hash") == key], window)
            results.append({
                "hashtag_hash": key,
                "total_usage": usage[key].count,
                "unique_users": len(usage[key].subjects),
                "growth_pattern": classify_growth(series).to_dict(),
            })
        return results

    def platform_trends(self, window: TimeWindow) -> Dict[str, Dict[str, Any]]:
        """Per-platform usage trend and distinct-user trend across window."""
        events = [e for e in self._store.find_in_window(window) if known_platform(e)]
        days = window.days()

        results: Dict[str, Dict[str, Any]] = {}
        for platform in sorted({e.platform for e in events}):
            platform_events = [e for e in events if e.platform == platform]
            users_per_day: Dict[date, Set[str]] = {}
            for e in platform_events:
                users_per_day.setdefault(e.timestamp.date(), set()).add(e.session_hash)

            results[platform] = {
                "total_usage": len(platform_events),
                "unique_users": len({e.session_hash for e in platform_events}),
                "usage_trend": classify_growth(daily_series(platform_events, window)).to_dict(),
                "user_growth": classify_growth(
                    [len(users_per_day.get(day, ())) for day in days]
                ).to_dict(),
            }
        return results

    def engagement_patterns(self, window: TimeWindow) -> Dict[str, Any]:
        """Hourly and weekday activity histograms with their peaks."""
        events = self._store.find_in_window(window)
        hourly = Counter(e.timestamp.hour for e in events)
        daily = Counter(WEEKDAYS[e.timestamp.weekday()] for e in events)

        return {
            "hourly": {hour: hourly.get(hour, 0) for hour in range(24)},
            "daily": {day: daily.get(day, 0) for day in WEEKDAYS},
            "peak_hours": [h for h, _ in sorted(hourly.items(), key=lambda i: (-i[1], i[0]))[:3]],
            "peak_days": [
                d for d, _ in sorted(daily.items(), key=lambda i: (-i[1], WEEKDAYS.index(i[0])))[:3]
            ],
        }

    def rising_platforms(self, window: TimeWindow, limit: int = 5) -> List[TrendEntry]:
        entries = self.compute_trends(
            window, top_n=None, dimension=TrendDimension.PLATFORM,
        )
        rising = [e for e in entries if e.direction is TrendDirection.RISING]
        return sorted(rising, key=lambda e: (-e.growth_rate, e.key))[:limit]

    def popular_tones(self, window: TimeWindow, limit: int = 10) -> List[Dict[str, Any]]:
        """Most used (tone, platform) pairs."""
        combos: Dict[tuple, KeyUsage] = {}
        for event in self._store.find_in_window(window):
            tone = event.get("tone")
            if not tone:
                continue
            usage = combos.setdefault((tone, event.platform or "unknown"), KeyUsage())
            usage.count += 1
            usage.subjects.add(event.session_hash)

        ranked = sorted(combos.items(), key=lambda i: (-i[1].count, i[0]))[:limit]
        return [
            {"tone": tone, "platform": platform, "usage": u.count, "unique_users": len(u.subjects)}
            for (tone, platform), u in ranked
        ]

    def optimal_timing(self, window: TimeWindow, limit: int = 5) -> List[Dict[str, Any]]:
        """Busiest (weekday, hour) slots."""
        slots = Counter(
            (e.timestamp.weekday(), e.timestamp.hour) for e in self._store.find_in_window(window)
        )
        ranked = sorted(slots.items(), key=lambda i: (-i[1], i[0]))[:limit]
        return [
            {"weekday": WEEKDAYS[day], "hour": hour, "usage": count}
            for (day, hour), count in ranked
        ]

    def monthly_report(self, year: int, month: int) -> Dict[str, Any]:
        """Full trend view for a calendar month."""
        window = TimeWindow.for_month(year, month)
        report = {
            "period": f"{year:04d}-{month:02d}",
            "window": window.to_dict(),
            "hashtag_growth": self.hashtag_growth(window),
            "platform_trends": self.platform_trends(window),
            "engagement_patterns": self.engagement_patterns(window),
            "rising_platforms": [e.to_dict() for e in self.rising_platforms(window)],
            "popular_tones": self.popular_tones(window),
            "timing_insights": self.optimal_timing(window),
        }
        logger.info("MONTHLY_TREND_REPORT_BUILT", extra={"period": report["period"]})
        return report

    def user_report(self, profile: SubjectProfile, window: TimeWindow) -> Dict[str, Any]:
        """Trends narrowed to the platforms a subject actually uses.

        Trending hashtags are limited to those seen on the subject's
        platforms; a subject with no platform history gets the overall
        top hashtags instead. Each used platform is compared with the
        community's per-user usage over the same window.

        Args:
            profile: Subject profile; only its platform counts are read
            window: Current trend window

        Returns:
            Dict with window, trending_hashtags and platform_insights
        """
        entries = self.compute_trends(window, top_n=None)
        user_platforms = set(profile.platforms)

        if user_platforms:
            trending = [e for e in entries if user_platforms & set(e.platforms)][:USER_TRENDING_LIMIT]
        else:
            trending = entries[:FALLBACK_TRENDING_LIMIT]

        community = self.platform_trends(window)
        insights = {}
        for platform, usage in profile.platforms.items():
            stats = community.get(platform)
            average = stats["total_usage"] / stats["unique_users"] if stats else 0.0
            insights[platform] = {
                "your_usage": usage,
                "community_average": round(average, 1),
                "usage_trend": stats["usage_trend"] if stats else None,
            }

        logger.info(
            "USER_TREND_REPORT_BUILT",
            extra={
                "subject_hash": profile.subject_id[:8],
                "platforms": len(user_platforms),
                "trending": len(trending),
            }
        )
        return {
            "window": window.to_dict(),
            "personalized": bool(user_platforms),
            "trending_hashtags": [e.to_dict() for e in trending],
            "platform_insights": insights,
        }
