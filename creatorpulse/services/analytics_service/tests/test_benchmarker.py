"""Tests for benchmarking a subject against the community baseline."""
from datetime import datetime, timedelta

import pytest

from creatorpulse.services.analytics_service import (
    Benchmarker,
    beta_eligible,
    classify_relative_performance,
    compute_achievements,
    overall_score,
    percentile_rank,
)
from creatorpulse.shared.models import CommunityBaseline, PerformanceTier, SubjectProfile

NOW = datetime(2026, 7, 1)
START = NOW - timedelta(days=90)


def make_profile(**kwargs):
    params = dict(subject_id="b" * 32, window_start=START, window_end=NOW)
    params.update(kwargs)
    return SubjectProfile(**params)


def make_baseline(**kwargs):
    params = dict(
        window_start=START,
        window_end=NOW,
        average_engagement=30.0,
        platform_averages={"instagram": 4.0},
        top_hashtags={"h1": 9, "h2": 4},
        average_session_count=8.0,
        metric_averages={
            "hashtag_effectiveness": 50.0,
            "content_consistency": 80.0,
            "trend_alignment": 60.0,
            "platform_optimization": 50.0,
        },
        subject_count=12,
    )
    params.update(kwargs)
    return CommunityBaseline(**params)


class TestClassifyRelativePerformance:
    """Tier boundaries on the relative delta."""

    @pytest.mark.parametrize("value,expected_delta,expected_tier", [
        (65.0, 30.0, PerformanceTier.EXCELLENT),
        (60.0, 20.0, PerformanceTier.EXCELLENT),
        (55.0, 10.0, PerformanceTier.ABOVE_AVERAGE),
        (54.0, 8.0, PerformanceTier.AVERAGE),
        (46.0, -8.0, PerformanceTier.AVERAGE),
        (45.0, -10.0, PerformanceTier.BELOW_AVERAGE),
        (40.0, -20.0, PerformanceTier.NEEDS_IMPROVEMENT),
    ])
    def test_tiers(self, value, expected_delta, expected_tier):
        delta, tier = classify_relative_performance(value, 50.0)

        assert delta == expected_delta
        assert tier is expected_tier

    def test_zero_average_is_unknown(self):
        assert classify_relative_performance(12.0, 0.0) == (None, PerformanceTier.UNKNOWN)


class TestSummaryScores:
    """Tests for overall_score and percentile_rank."""

    def test_overall_ignores_zero_scores(self):
        assert overall_score([0.0, 50.0, 70.0]) == 60.0

    def test_overall_all_zero(self):
        assert overall_score([0.0, 0.0]) == 0.0

    @pytest.mark.parametrize("score,expected", [
        (95.0, 90),
        (80.0, 90),
        (79.9, 75),
        (60.0, 60),
        (50.0, 50),
        (40.0, 35),
        (30.0, 25),
        (29.9, 10),
        (0.0, 10),
    ])
    def test_percentile_steps(self, score, expected):
        assert percentile_rank(score) == expected


class TestAchievements:
    """Tests for achievement levels."""

    def test_levels_and_next_milestone(self):
        profile = make_profile(
            total_events=10,
            hashtag_usage={f"h{i}": 1 for i in range(10)},
            platforms={"instagram": 5, "tiktok": 5},
        )

        achievements = {a.name: a for a in compute_achievements(profile)}

        assert achievements["trend_spotter"].score == 50
        assert achievements["trend_spotter"].level == 2
        assert achievements["trend_spotter"].next_milestone == 100
        assert achievements["platform_master"].level == 1
        assert achievements["platform_master"].next_milestone == 4
        assert achievements["data_contributor"].level == 0

    def test_max_level_has_no_next_milestone(self):
        profile = make_profile(
            total_events=6,
            platforms={p: 1 for p in ("a", "b", "c", "d", "e", "f")},
        )

        master = {a.name: a for a in compute_achievements(profile)}["platform_master"]

        assert master.level == master.max_level
        assert master.next_milestone is None

    def test_beta_eligibility(self):
        assert not beta_eligible(make_profile())
        assert beta_eligible(make_profile(
            total_events=30,
            hashtag_usage={f"h{i}": 1 for i in range(25)},
        ))


class TestBenchmarker:
    """Tests for Benchmarker.benchmark."""

    def test_subject_without_events(self):
        report = Benchmarker().benchmark(make_profile(), make_baseline())

        assert report.insufficient_data is True
        assert report.overall_score == 0.0
        assert report.percentile_rank is None
        assert all(r.performance_tier is PerformanceTier.UNKNOWN for r in report.results)
        assert all(r.relative_delta_pct is None for r in report.results)

    def test_engagement_against_average(self):
        # engagement = 5 + 25 + 5 + 3 = 38 against 30
        profile = make_profile(
            total_events=4,
            platforms={"instagram": 4},
            features={"caption_writer": 4},
            activity_pattern={10: 4},
            consistency_score=1.0,
        )

        report = Benchmarker().benchmark(profile, make_baseline())
        engagement = next(r for r in report.results if r.metric_name == "engagement_score")

        assert engagement.subject_score == 38.0
        assert engagement.relative_delta_pct == 26.7
        assert engagement.performance_tier is PerformanceTier.EXCELLENT
        assert report.insufficient_data is False
        assert report.percentile_rank is not None

    def test_velocity_against_session_count(self):
        profile = make_profile(total_events=4, platforms={"instagram": 4}, consistency_score=1.0)

        report = Benchmarker().benchmark(profile, make_baseline(average_session_count=8.0))
        velocity = next(r for r in report.results if r.metric_name == "content_velocity")

        assert velocity.relative_delta_pct == -50.0
        assert velocity.performance_tier is PerformanceTier.NEEDS_IMPROVEMENT
        assert "content_velocity" in report.improvement_areas

    def test_missing_community_average_is_unknown(self):
        profile = make_profile(total_events=4, platforms={"instagram": 4}, consistency_score=1.0)

        report = Benchmarker().benchmark(profile, make_baseline(metric_averages={}))
        consistency = next(r for r in report.results if r.metric_name == "content_consistency")

        assert consistency.performance_tier is PerformanceTier.UNKNOWN

    def test_stale_baseline_flagged(self):
        profile = make_profile(total_events=4, platforms={"instagram": 4}, consistency_score=1.0)

        report = Benchmarker().benchmark(profile, make_baseline().as_stale())

        assert report.stale is True
        assert report.to_dict()["stale"] is True


class TestMonthlyComparison:
    """Tests for Benchmarker.monthly_comparison."""

    def test_month_over_month(self):
        current = make_profile(
            total_events=10,
            platforms={"instagram": 6, "tiktok": 4},
            hashtag_usage={"h1": 5},
            consistency_score=0.5,
        )
        previous = make_profile(
            total_events=5,
            platforms={"instagram": 5},
            hashtag_usage={"h1": 6},
            consistency_score=0.5,
        )

        result = Benchmarker().monthly_comparison(current, previous, make_baseline())

        events = result["month_over_month"]["events_tracked"]
        assert (events["current"], events["previous"]) == (10.0, 5.0)
        assert events["change_percent"] == 100.0
        assert events["direction"] == "up"
        hashtags = result["month_over_month"]["hashtags_used"]
        assert hashtags["change_percent"] == -16.7
        assert hashtags["direction"] == "down"
        assert result["biggest_improvement"] == {"metric": "events_tracked", "change_percent": 100.0}
        assert result["biggest_decline"] == {"metric": "hashtags_used", "change_percent": -16.7}
        assert [i["metric"] for i in result["improvements"]] == [
            "events_tracked", "platforms_used", "engagement_score",
        ]

    def test_community_comparison(self):
        # engagement = 10 + 12.5 + 12.5 + 0 = 35 against 30; 10 events against 8
        current = make_profile(
            total_events=10,
            platforms={"instagram": 6, "tiktok": 4},
            consistency_score=0.5,
        )

        result = Benchmarker().monthly_comparison(current, make_profile(), make_baseline())

        community = result["community_comparison"]
        assert community["events_tracked"]["vs_community"] == 25.0
        assert community["events_tracked"]["performance_tier"] == "excellent"
        assert community["engagement_score"]["your_value"] == 35.0
        assert community["engagement_score"]["performance_tier"] == "above_average"

    def test_no_previous_month(self):
        current = make_profile(total_events=3, platforms={"instagram": 3}, consistency_score=1.0)

        result = Benchmarker().monthly_comparison(current, make_profile(), make_baseline())

        assert all(m["direction"] == "stable" for m in result["month_over_month"].values())
        assert result["biggest_improvement"] is None
        assert result["biggest_decline"] is None
        assert result["improvements"] == []
        assert result["insufficient_data"] is False

    def test_empty_month_is_insufficient(self):
        result = Benchmarker().monthly_comparison(make_profile(), make_profile(), make_baseline())

        assert result["insufficient_data"] is True
