"""Subject profiles built from a subject's events.

A profile counts what a subject used (platforms, tones, features,
hashtags, templates, active hours) and derives a consistency score
from how concentrated that usage is.
"""
import statistics
from collections import Counter
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, TypeVar

from creatorpulse.shared.models import UNKNOWN_PLATFORM, Event, EventType, SubjectProfile, TimeWindow

K = TypeVar("K", bound=Hashable)

# Variance of hourly activity counts at which timing consistency bottoms out
TIMING_VARIANCE_SCALE = 100.0


def most_used(counts: Mapping[K, int]) -> Optional[K]:
    """Key with the highest count; ties go to the first key encountered."""
    best = None
    best_count = 0
    for key, count in counts.items():
        if count > best_count:
            best, best_count = key, count
    return best


def population_variance(values: List[float]) -> float:
    if len(values) < 2:
        return 0.0
    return statistics.pvariance(values)


def consistency_score(
    platforms: Mapping[str, int],
    tones: Mapping[str, int],
    activity_pattern: Mapping[int, int],
) -> float:
    """Mean of the available consistency factors, in [0, 1].

    Factors: share of the top platform, share of the top tone, and
    timing regularity (1 - normalized variance of hourly counts).
    A factor only counts when the subject has data for it.
    """
    factors = []

    platform_total = sum(platforms.values())
    if platform_total:
        factors.append(max(platforms.values()) / platform_total)

    tone_total = sum(tones.values())
    if tone_total:
        factors.append(max(tones.values()) / tone_total)

    if activity_pattern:
        variance = population_variance([float(v) for v in activity_pattern.values()])
        factors.append(1.0 - min(1.0, variance / TIMING_VARIANCE_SCALE))

    if not factors:
        return 0.0
    return sum(factors) / len(factors)


def _ordered(counter: Counter) -> Dict:
    # Counter keeps insertion order, which is first-seen order here
    return dict(counter)


def build_profile(subject_id: str, events: Iterable[Event], window: TimeWindow) -> SubjectProfile:
    """Aggregate one subject's events inside window.

    Args:
        subject_id: Subject key the events belong to
        events: The subject's events; need not be pre-filtered by time
        window: Trailing window to aggregate over

    Returns:
        SubjectProfile (empty when no events fall in the window)
    """
    in_window = sorted(
        (e for e in events if window.contains(e.timestamp)),
        key=lambda e: e.timestamp,
    )

    platforms: Counter = Counter()
    tones: Counter = Counter()
    features: Counter = Counter()
    hashtags: Counter = Counter()
    templates: Counter = Counter()
    hours: Counter = Counter()

    for event in in_window:
        hours[event.timestamp.hour] += 1
        if event.platform and event.platform != UNKNOWN_PLATFORM:
            platforms[event.platform] += 1
        tone = event.get("tone")
        if tone:
            tones[tone] += 1
        feature = event.get("feature")
        if feature:
            features[feature] += 1
        if event.event_type is EventType.HASHTAG_ADDED and event.get("hashtag_hash"):
            hashtags[event.get("hashtag_hash")] += 1
        template = event.get("template_hash")
        if template:
            templates[template] += 1

    return SubjectProfile(
        subject_id=subject_id,
        window_start=window.start,
        window_end=window.end,
        total_events=len(in_window),
        platforms=_ordered(platforms),
        tones=_ordered(tones),
        features=_ordered(features),
        hashtag_usage=_ordered(hashtags),
        template_usage=_ordered(templates),
        activity_pattern=_ordered(hours),
        consistency_score=consistency_score(platforms, tones, hours),
        most_used_platform=most_used(platforms),
        most_used_tone=most_used(tones),
        most_active_hour=most_used(hours),
    )
