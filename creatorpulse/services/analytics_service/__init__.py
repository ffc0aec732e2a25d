"""Analytics Service - community baselines, trends and benchmarks.

All results are derived from the event store on demand. Baselines are
cached briefly; nothing here is persisted as ground truth.
"""

from .aggregator import MIN_SUBJECT_ACTIVITY, TOP_HASHTAG_LIMIT, Aggregator, rank_hashtags
from .baseline_cache import BaselineCache
from .benchmarker import (
    Benchmarker,
    beta_eligible,
    change_percent,
    classify_relative_performance,
    compute_achievements,
    monthly_figures,
    overall_score,
    percentile_rank,
)
from .errors import AggregationCancelled, AggregationIncomplete
from .metrics import METRIC_NAMES, compute_metrics
from .profile import build_profile, consistency_score, most_used
from .trends import TrendAnalyzer, classify_growth, growth_rate, trend_score

__all__ = [
    "MIN_SUBJECT_ACTIVITY",
    "TOP_HASHTAG_LIMIT",
    "Aggregator",
    "rank_hashtags",
    "BaselineCache",
    "Benchmarker",
    "beta_eligible",
    "change_percent",
    "classify_relative_performance",
    "compute_achievements",
    "monthly_figures",
    "overall_score",
    "percentile_rank",
    "AggregationCancelled",
    "AggregationIncomplete",
    "METRIC_NAMES",
    "compute_metrics",
    "build_profile",
    "consistency_score",
    "most_used",
    "TrendAnalyzer",
    "classify_growth",
    "growth_rate",
    "trend_score",
]
