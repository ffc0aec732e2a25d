"""Per-subject benchmark metrics.

The same formulas feed both the community baseline (averaged over
subjects) and an individual benchmark, so subject scores and community
averages are always comparable.
"""
from typing import Dict, Iterable, Mapping

from creatorpulse.shared.models import SubjectProfile

ENGAGEMENT = "engagement_score"
HASHTAG_EFFECTIVENESS = "hashtag_effectiveness"
CONTENT_CONSISTENCY = "content_consistency"
TREND_ALIGNMENT = "trend_alignment"
PLATFORM_OPTIMIZATION = "platform_optimization"
CONTENT_VELOCITY = "content_velocity"

METRIC_NAMES = (
    ENGAGEMENT,
    HASHTAG_EFFECTIVENESS,
    CONTENT_CONSISTENCY,
    TREND_ALIGNMENT,
    PLATFORM_OPTIMIZATION,
    CONTENT_VELOCITY,
)


def engagement_score(profile: SubjectProfile) -> float:
    """0-100 composite of diversity, consistency, volume and feature breadth."""
    if profile.is_empty:
        return 0.0
    return (
        min(25.0, profile.platform_diversity * 5)
        + profile.consistency_score * 25
        + min(25.0, profile.total_events / 20 * 25)
        + min(25.0, len(profile.features) * 3)
    )


def hashtag_effectiveness(profile: SubjectProfile, top_hashtags: Iterable[str]) -> float:
    """How much of the subject's hashtag set overlaps community favourites."""
    used = set(profile.hashtag_usage)
    if not used:
        return 0.0
    overlap_pct = len(used & set(top_hashtags)) / len(used) * 100
    return min(100.0, overlap_pct * 1.5)


def content_consistency(profile: SubjectProfile) -> float:
    return profile.consistency_score * 100


def trend_alignment(profile: SubjectProfile) -> float:
    if profile.is_empty:
        return 0.0
    return min(
        100.0,
        50 + profile.platform_diversity * 10 + min(30, len(profile.hashtag_usage) * 2),
    )


def platform_optimization(profile: SubjectProfile, platform_averages: Mapping[str, float]) -> float:
    """Mean per-platform usage relative to the community, capped at 100."""
    if not profile.platforms:
        return 0.0
    scores = [
        min(100.0, usage / max(1.0, platform_averages.get(platform, 0.0)) * 50)
        for platform, usage in profile.platforms.items()
    ]
    return sum(scores) / len(scores)


def content_velocity(profile: SubjectProfile) -> float:
    return float(profile.total_events)


def compute_metrics(
    profile: SubjectProfile,
    top_hashtags: Iterable[str],
    platform_averages: Mapping[str, float],
) -> Dict[str, float]:
    return {
        ENGAGEMENT: engagement_score(profile),
        HASHTAG_EFFECTIVENESS: hashtag_effectiveness(profile, top_hashtags),
        CONTENT_CONSISTENCY: content_consistency(profile),
        TREND_ALIGNMENT: trend_alignment(profile),
        PLATFORM_OPTIMIZATION: platform_optimization(profile, platform_averages),
        CONTENT_VELOCITY: content_velocity(profile),
    }
