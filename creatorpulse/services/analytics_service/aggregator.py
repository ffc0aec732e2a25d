"""Aggregator - community baselines over a sliding window.

Deliberately simple statistics: arithmetic means over subjects that
cleared a minimum activity threshold, and top hashtags by raw count.
Everything is recomputable from the event store.
"""
import logging
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional

from creatorpulse.shared.database import StorageError
from creatorpulse.shared.models import CommunityBaseline, Event, EventType, TimeWindow
from creatorpulse.shared.utils import Clock, utcnow

from ..ingestion_service import EventStore
from .errors import AggregationCancelled, AggregationIncomplete
from .metrics import ENGAGEMENT, METRIC_NAMES, compute_metrics
from .profile import build_profile

logger = logging.getLogger(__name__)

MIN_SUBJECT_ACTIVITY = 3
TOP_HASHTAG_LIMIT = 50


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def rank_hashtags(events: List[Event], limit: int) -> Dict[str, int]:
    """Top hashtag hashes by count; ties go to the earliest first-seen.

    events must be in ascending timestamp order.
    """
    counts: Dict[str, int] = {}
    first_seen: Dict[str, datetime] = {}

    for event in events:
        if event.event_type is not EventType.HASHTAG_ADDED:
            continue
        tag = event.get("hashtag_hash")
        if not tag:
            continue
        counts[tag] = counts.get(tag, 0) + 1
        first_seen.setdefault(tag, event.timestamp)

    ranked = sorted(counts, key=lambda t: (-counts[t], first_seen[t], t))
    return OrderedDict((tag, counts[tag]) for tag in ranked[:limit])


class Aggregator:
    """Computes CommunityBaseline values from the event store."""

    def __init__(
        self,
        event_store: EventStore,
        min_activity: int = MIN_SUBJECT_ACTIVITY,
        top_hashtag_limit: int = TOP_HASHTAG_LIMIT,
        clock: Clock = utcnow,
    ):
        self._store = event_store
        self._min_activity = min_activity
        self._top_limit = top_hashtag_limit
        self._clock = clock

    def compute_baseline(
        self,
        window: TimeWindow,
        cancel_event: Optional[threading.Event] = None,
    ) -> CommunityBaseline:
        """Compute the community baseline for window.

        Args:
            window: Time window to aggregate
            cancel_event: Checked between subjects; set it to stop early

        Returns:
            CommunityBaseline

        Raises:
            AggregationIncomplete: If the store read fails
            AggregationCancelled: If cancel_event was set
        """
        try:
            events = self._store.find_in_window(window)
        except StorageError as e:
            logger.error(
                "BASELINE_READ_FAILED",
                extra={"window": window.key, "error": str(e)}
            )
            raise AggregationIncomplete(f"Event store read failed: {e}") from e

        by_subject: Dict[str, List[Event]] = {}
        for event in events:
            by_subject.setdefault(event.session_hash, []).append(event)

        eligible = {
            subject: subject_events
            for subject, subject_events in by_subject.items()
            if len(subject_events) >= self._min_activity
        }

        profiles = []
        for subject, subject_events in eligible.items():
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("BASELINE_CANCELLED", extra={"window": window.key})
                raise AggregationCancelled("Baseline computation cancelled")
            profiles.append(build_profile(subject, subject_events, window))

        eligible_events = [e for e in events if e.session_hash in eligible]
        top_hashtags = rank_hashtags(eligible_events, self._top_limit)

        platform_usage: Dict[str, List[float]] = {}
        for profile in profiles:
            for platform, count in profile.platforms.items():
                platform_usage.setdefault(platform, []).append(float(count))
        platform_averages = {p: _mean(v) for p, v in platform_usage.items()}

        per_metric: Dict[str, List[float]] = {name: [] for name in METRIC_NAMES}
        for profile in profiles:
            for name, value in compute_metrics(profile, top_hashtags, platform_averages).items():
                per_metric[name].append(value)
        metric_averages = {name: _mean(values) for name, values in per_metric.items()}

        baseline = CommunityBaseline(
            window_start=window.start,
            window_end=window.end,
            average_engagement=metric_averages[ENGAGEMENT],
            platform_averages=platform_averages,
            top_hashtags=dict(top_hashtags),
            average_session_count=_mean([float(p.total_events) for p in profiles]),
            metric_averages=metric_averages,
            subject_count=len(profiles),
            event_count=len(eligible_events),
            computed_at=self._clock(),
        )

        logger.info(
            "BASELINE_COMPUTED",
            extra={
                "window": window.key,
                "subjects_total": len(by_subject),
                "subjects_eligible": len(profiles),
                "events": len(events),
            }
        )
        return baseline
