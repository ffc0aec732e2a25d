"""Benchmarker - a subject's metrics against the community baseline.

Every metric is classified the same way, from its relative delta to the
community average. The overall score and percentile rank are coarse on
purpose: the community sample is small and the numbers should not
suggest more precision than they have.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from creatorpulse.shared.models import (
    Achievement,
    BenchmarkReport,
    BenchmarkResult,
    CommunityBaseline,
    PerformanceTier,
    SubjectProfile,
)

from .metrics import (
    CONTENT_VELOCITY,
    ENGAGEMENT,
    METRIC_NAMES,
    compute_metrics,
    engagement_score,
)

logger = logging.getLogger(__name__)

# (minimum overall score, percentile)
PERCENTILE_STEPS: Tuple[Tuple[int, int], ...] = (
    (80, 90),
    (70, 75),
    (60, 60),
    (50, 50),
    (40, 35),
    (30, 25),
)
PERCENTILE_FLOOR = 10

BETA_CONTRIBUTION_THRESHOLD = 50
MONTHLY_IMPROVEMENT_PCT = 25.0


def classify_relative_performance(
    subject_value: float,
    community_average: float,
) -> Tuple[Optional[float], PerformanceTier]:
    """Relative delta (percent, one decimal) and its tier.

    A zero community average has no meaningful delta: (None, UNKNOWN).
    """
    if community_average == 0:
        return None, PerformanceTier.UNKNOWN

    delta = (subject_value - community_average) / community_average * 100

    if delta >= 20:
        tier = PerformanceTier.EXCELLENT
    elif delta >= 10:
        tier = PerformanceTier.ABOVE_AVERAGE
    elif delta > -10:
        tier = PerformanceTier.AVERAGE
    elif delta > -20:
        tier = PerformanceTier.BELOW_AVERAGE
    else:
        tier = PerformanceTier.NEEDS_IMPROVEMENT

    return round(delta, 1), tier


def overall_score(scores: Sequence[float]) -> float:
    """Mean of the non-zero scores; 0 when none are non-zero."""
    computable = [s for s in scores if s != 0]
    if not computable:
        return 0.0
    return round(sum(computable) / len(computable), 1)


def percentile_rank(score: float) -> int:
    for minimum, percentile in PERCENTILE_STEPS:
        if score >= minimum:
            return percentile
    return PERCENTILE_FLOOR


def _achievement(name: str, score: float, thresholds: Tuple[int, ...]) -> Achievement:
    level = sum(1 for t in thresholds if score >= t)
    next_milestone = thresholds[level] if level < len(thresholds) else None
    return Achievement(
        name=name,
        score=score,
        level=level,
        thresholds=thresholds,
        next_milestone=next_milestone,
    )


def contribution_score(profile: SubjectProfile) -> int:
    return min(
        1000,
        len(profile.hashtag_usage) * 2
        + len(profile.template_usage)
        + profile.platform_diversity * 3
        + int(profile.consistency_score * 50),
    )


def compute_achievements(profile: SubjectProfile) -> List[Achievement]:
    """Trend spotter, data contributor and platform master levels."""
    return [
        _achievement("trend_spotter", min(100, len(profile.hashtag_usage) * 5), (20, 50, 100)),
        _achievement("data_contributor", contribution_score(profile), (100, 500, 1000)),
        _achievement("platform_master", profile.platform_diversity, (2, 4, 6)),
    ]


def beta_eligible(profile: SubjectProfile) -> bool:
    return contribution_score(profile) >= BETA_CONTRIBUTION_THRESHOLD


def monthly_figures(profile: SubjectProfile) -> Dict[str, float]:
    return {
        "events_tracked": float(profile.total_events),
        "platforms_used": float(profile.platform_diversity),
        "hashtags_used": float(sum(profile.hashtag_usage.values())),
        "engagement_score": round(engagement_score(profile), 1),
    }


def change_percent(current: float, previous: float) -> float:
    """Percent change, 0 when there is nothing to compare against."""
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def _change_entry(item: Tuple[str, float]) -> Dict[str, Any]:
    return {"metric": item[0], "change_percent": item[1]}


class Benchmarker:
    """Builds BenchmarkReports from a profile and a baseline."""

    def benchmark(self, profile: SubjectProfile, baseline: CommunityBaseline) -> BenchmarkReport:
        """Compare a subject profile with the community baseline.

        Args:
            profile: Subject's trailing-window profile
            baseline: Community baseline (possibly stale)

        Returns:
            BenchmarkReport. A subject without events gets every tier
            UNKNOWN, overall 0, no percentile, and insufficient_data set.
        """
        if profile.is_empty:
            logger.info(
                "BENCHMARK_INSUFFICIENT_DATA",
                extra={"subject_hash": profile.subject_id[:8]}
            )
            return BenchmarkReport(
                subject_id=profile.subject_id,
                results=[
                    BenchmarkResult(
                        metric_name=name,
                        subject_score=0.0,
                        community_average=self._community_average(name, baseline),
                        relative_delta_pct=None,
                        performance_tier=PerformanceTier.UNKNOWN,
                    )
                    for name in METRIC_NAMES
                ],
                overall_score=0.0,
                percentile_rank=None,
                insufficient_data=True,
                stale=baseline.stale,
                achievements=compute_achievements(profile),
            )

        scores = compute_metrics(profile, baseline.top_hashtags, baseline.platform_averages)

        results = []
        for name in METRIC_NAMES:
            average = self._community_average(name, baseline)
            delta, tier = classify_relative_performance(scores[name], average)
            results.append(BenchmarkResult(
                metric_name=name,
                subject_score=round(scores[name], 2),
                community_average=round(average, 2),
                relative_delta_pct=delta,
                performance_tier=tier,
            ))

        overall = overall_score(list(scores.values()))
        report = BenchmarkReport(
            subject_id=profile.subject_id,
            results=results,
            overall_score=overall,
            percentile_rank=percentile_rank(overall),
            stale=baseline.stale,
            achievements=compute_achievements(profile),
        )

        logger.info(
            "BENCHMARK_COMPUTED",
            extra={
                "subject_hash": profile.subject_id[:8],
                "overall_score": overall,
                "percentile_rank": report.percentile_rank,
                "stale_baseline": baseline.stale,
            }
        )
        return report

    @staticmethod
    def _community_average(metric_name: str, baseline: CommunityBaseline) -> float:
        if metric_name == ENGAGEMENT:
            return baseline.average_engagement
        if metric_name == CONTENT_VELOCITY:
            return baseline.average_session_count
        return baseline.metric_average(metric_name)

    def monthly_comparison(
        self,
        current: SubjectProfile,
        previous: SubjectProfile,
        baseline: CommunityBaseline,
    ) -> Dict[str, Any]:
        """Month-over-month view of one subject, plus the month's community.

        Args:
            current: Subject profile for the month
            previous: Subject profile for the month before
            baseline: Community baseline over the current month

        Returns:
            Dict with month_over_month, community_comparison,
            biggest_improvement, biggest_decline and improvements
        """
        now_figures = monthly_figures(current)
        then_figures = monthly_figures(previous)

        month_over_month = {}
        changes = {}
        for name, value in now_figures.items():
            before = then_figures[name]
            change = change_percent(value, before)
            month_over_month[name] = {
                "current": value,
                "previous": before,
                "change_percent": change,
                "direction": "up" if change > 0 else "down" if change < 0 else "stable",
            }
            if before > 0:
                changes[name] = change

        community = {}
        for name, average in (
            ("events_tracked", baseline.average_session_count),
            ("engagement_score", baseline.average_engagement),
        ):
            delta, tier = classify_relative_performance(now_figures[name], average)
            community[name] = {
                "your_value": now_figures[name],
                "community_average": round(average, 1),
                "vs_community": delta,
                "performance_tier": tier.value,
            }

        ranked = sorted(changes.items(), key=lambda i: (-i[1], i[0]))
        improvements = [
            {"metric": name, "change_percent": change}
            for name, change in ranked
            if change >= MONTHLY_IMPROVEMENT_PCT
        ]

        logger.info(
            "MONTHLY_COMPARISON_COMPUTED",
            extra={
                "subject_hash": current.subject_id[:8],
                "comparable_metrics": len(changes),
                "improvements": len(improvements),
            }
        )
        return {
            "subject_id": current.subject_id,
            "insufficient_data": current.is_empty,
            "stale": baseline.stale,
            "month_over_month": month_over_month,
            "community_comparison": community,
            "biggest_improvement": _change_entry(ranked[0]) if ranked else None,
            "biggest_decline": _change_entry(ranked[-1]) if ranked else None,
            "improvements": improvements,
        }
