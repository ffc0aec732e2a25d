"""Tests for community baselines and the baseline cache."""
import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from creatorpulse.services.analytics_service import (
    AggregationCancelled,
    AggregationIncomplete,
    Aggregator,
    BaselineCache,
    build_profile,
    rank_hashtags,
)
from creatorpulse.services.analytics_service.metrics import engagement_score
from creatorpulse.services.ingestion_service import EventStore
from creatorpulse.shared.database import StorageError
from creatorpulse.shared.models import CommunityBaseline, Event, EventType, Purpose, TimeWindow

NOW = datetime(2026, 7, 1, 12, 0, 0)
WINDOW = TimeWindow(NOW - timedelta(days=30), NOW)

_counter = iter(range(1_000_000))


def make_event(session, ts, event_type=EventType.FEATURE_USED, platform=None, **payload):
    if platform:
        payload["platform"] = platform
    return Event(
        event_id=f"evt_{next(_counter)}",
        event_type=event_type,
        session_hash=session,
        purpose=Purpose.USER_INSIGHTS,
        timestamp=ts,
        retention_until=ts + timedelta(days=730),
        payload=payload,
        platform=platform,
    )


def baseline(**overrides):
    params = dict(
        window_start=WINDOW.start,
        window_end=WINDOW.end,
        average_engagement=40.0,
        platform_averages={"instagram": 3.0},
        top_hashtags={"h1": 5},
        average_session_count=6.0,
    )
    params.update(overrides)
    return CommunityBaseline(**params)


@pytest.fixture
def store():
    return EventStore()


class TestRankHashtags:
    """Top hashtags by count, ties by first-seen."""

    def test_ties_broken_by_first_seen(self):
        t0 = NOW - timedelta(days=3)
        events = [
            make_event("a" * 32, t0, EventType.HASHTAG_ADDED, hashtag_hash="first_tag"),
            make_event("a" * 32, t0 + timedelta(hours=1), EventType.HASHTAG_ADDED, hashtag_hash="second_tag"),
            make_event("a" * 32, t0 + timedelta(hours=2), EventType.HASHTAG_ADDED, hashtag_hash="second_tag"),
            make_event("a" * 32, t0 + timedelta(hours=3), EventType.HASHTAG_ADDED, hashtag_hash="first_tag"),
            make_event("a" * 32, t0 + timedelta(hours=4), EventType.HASHTAG_ADDED, hashtag_hash="rare"),
        ]

        ranked = rank_hashtags(events, limit=50)

        assert list(ranked.items()) == [("first_tag", 2), ("second_tag", 2), ("rare", 1)]

    def test_limit(self):
        events = [
            make_event("a" * 32, NOW - timedelta(hours=i), EventType.HASHTAG_ADDED, hashtag_hash=f"h{i}")
            for i in range(10)
        ]

        assert len(rank_hashtags(sorted(events, key=lambda e: e.timestamp), limit=3)) == 3


class TestAggregator:
    """Tests for Aggregator.compute_baseline."""

    def test_low_activity_subjects_excluded(self, store):
        for i in range(3):
            store.append(make_event("a" * 32, NOW - timedelta(days=i + 1), platform="instagram"))
        for i in range(2):
            store.append(make_event("b" * 32, NOW - timedelta(days=i + 1), platform="tiktok"))

        result = Aggregator(store).compute_baseline(WINDOW)

        assert result.subject_count == 1
        assert result.average_session_count == 3.0
        assert "tiktok" not in result.platform_averages

    def test_means_over_eligible_subjects(self, store):
        events_a = [make_event("a" * 32, NOW - timedelta(days=i + 1), platform="instagram") for i in range(4)]
        events_c = [
            make_event("c" * 32, NOW - timedelta(days=1), platform="instagram"),
            make_event("c" * 32, NOW - timedelta(days=2), platform="tiktok"),
            make_event("c" * 32, NOW - timedelta(days=3), platform="tiktok"),
            make_event("c" * 32, NOW - timedelta(days=4), platform="tiktok"),
        ]
        for e in events_a + events_c:
            store.append(e)

        result = Aggregator(store).compute_baseline(WINDOW)

        assert result.platform_averages == {"instagram": 2.5, "tiktok": 3.0}
        assert result.average_session_count == 4.0
        expected = (
            engagement_score(build_profile("a" * 32, events_a, WINDOW))
            + engagement_score(build_profile("c" * 32, events_c, WINDOW))
        ) / 2
        assert result.average_engagement == pytest.approx(expected)
        assert result.metric_averages["engagement_score"] == pytest.approx(expected)

    def test_unknown_platform_not_averaged(self, store):
        for i in range(3):
            store.append(make_event("a" * 32, NOW - timedelta(days=i + 1), platform="instagram"))
            store.append(make_event("b" * 32, NOW - timedelta(days=i + 1), platform="unknown"))

        result = Aggregator(store).compute_baseline(WINDOW)

        assert result.platform_averages == {"instagram": 3.0}

    def test_events_outside_window_ignored(self, store):
        for i in range(3):
            store.append(make_event("a" * 32, NOW - timedelta(days=40 + i)))

        result = Aggregator(store).compute_baseline(WINDOW)

        assert result.subject_count == 0
        assert result.average_engagement == 0.0

    def test_store_failure_is_incomplete(self):
        failing = MagicMock()
        failing.find_in_window.side_effect = StorageError("down")

        with pytest.raises(AggregationIncomplete):
            Aggregator(failing).compute_baseline(WINDOW)

    def test_cancellation(self, store):
        for i in range(3):
            store.append(make_event("a" * 32, NOW - timedelta(days=i + 1)))
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(AggregationCancelled):
            Aggregator(store).compute_baseline(WINDOW, cancel_event=cancel)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestBaselineCache:
    """Tests for BaselineCache."""

    def test_hit_within_ttl(self):
        clock = FakeClock(NOW)
        cache = BaselineCache(ttl_seconds=3600, clock=clock)
        compute = MagicMock(return_value=baseline())

        cache.get_or_compute("k", compute)
        clock.now += timedelta(minutes=59)
        cache.get_or_compute("k", compute)

        assert compute.call_count == 1
        assert cache.hits == 1
        assert cache.hit_rate == 0.5

    def test_recomputes_after_ttl(self):
        clock = FakeClock(NOW)
        cache = BaselineCache(ttl_seconds=3600, clock=clock)
        compute = MagicMock(return_value=baseline())

        cache.get_or_compute("k", compute)
        clock.now += timedelta(hours=1)
        cache.get_or_compute("k", compute)

        assert compute.call_count == 2

    def test_failure_falls_back_to_stale(self):
        clock = FakeClock(NOW)
        cache = BaselineCache(ttl_seconds=3600, clock=clock)
        good = baseline(average_engagement=42.0)
        cache.get_or_compute("k", lambda: good)
        clock.now += timedelta(hours=2)

        failing = MagicMock(side_effect=AggregationIncomplete("read failed"))
        result = cache.get_or_compute("k", failing)

        assert result.stale is True
        assert result.average_engagement == 42.0

    def test_failure_does_not_overwrite_cache(self):
        clock = FakeClock(NOW)
        cache = BaselineCache(ttl_seconds=3600, clock=clock)
        good = baseline()
        cache.get_or_compute("k", lambda: good)
        clock.now += timedelta(hours=2)

        cache.get_or_compute("k", MagicMock(side_effect=AggregationCancelled("shutdown")))
        recovered = cache.get_or_compute("k", lambda: baseline(average_engagement=1.0))

        assert recovered.stale is False
        assert recovered.average_engagement == 1.0

    def test_failure_without_previous_raises(self):
        cache = BaselineCache()

        with pytest.raises(AggregationIncomplete):
            cache.get_or_compute("k", MagicMock(side_effect=AggregationIncomplete("down")))

    def test_invalidate_forces_recompute(self):
        cache = BaselineCache(clock=FakeClock(NOW))
        compute = MagicMock(return_value=baseline())
        cache.get_or_compute("k", compute)

        cache.invalidate()
        cache.get_or_compute("k", compute)

        assert compute.call_count == 2
        assert cache.get("k") is not None

    def test_counters_consistent_under_concurrency(self):
        cache = BaselineCache(clock=FakeClock(NOW))
        compute = MagicMock(return_value=baseline())
        cache.get_or_compute("k", compute)
        start = threading.Barrier(8)

        def worker():
            start.wait()
            for _ in range(250):
                cache.get_or_compute("k", compute)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.hits + cache.misses == 1 + 8 * 250
        assert cache.hits == 8 * 250
