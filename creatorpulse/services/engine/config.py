"""Insights engine configuration.

Windows, thresholds and job intervals for the analytics core. Values
come from ANALYTICS_* environment variables; the hashing salt may be
pulled from AWS Secrets Manager instead of the environment.
"""
import logging
import os
from dataclasses import dataclass, field

from creatorpulse.shared.utils import load_salt_from_secrets_manager
from creatorpulse.shared.utils.pii import MIN_SALT_LENGTH

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("memory", "postgres")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for the insights engine."""

    salt: str = field(repr=False)

    # Trailing windows (days)
    baseline_window_days: int = 30
    profile_window_days: int = 90

    baseline_cache_ttl_seconds: int = 3600
    min_subject_activity: int = 3
    top_hashtag_limit: int = 50
    trend_top_n: int = 20

    erasure_grace_days: int = 30
    reject_unknown_purpose: bool = False

    # Background jobs
    sweep_interval_hours: int = 24
    baseline_refresh_minutes: int = 60

    storage_backend: str = "memory"

    def __post_init__(self):
        if len(self.salt) < MIN_SALT_LENGTH:
            raise ValueError(f"Salt must be at least {MIN_SALT_LENGTH} characters")
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(f"Unknown storage backend: {self.storage_backend!r}")
        for name in ("baseline_window_days", "profile_window_days", "min_subject_activity",
                     "top_hashtag_limit", "trend_top_n", "sweep_interval_hours",
                     "baseline_refresh_minutes"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.erasure_grace_days < 0:
            raise ValueError("erasure_grace_days must not be negative")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables.

        Environment variables:
            ANALYTICS_SALT: Hashing salt (32+ characters)
            ANALYTICS_SALT_SECRET_ID: Secrets Manager id to read the salt from
                when ANALYTICS_SALT is unset
            ANALYTICS_AWS_REGION: Region for Secrets Manager (default us-east-1)
            ANALYTICS_BASELINE_WINDOW_DAYS: Baseline window (default 30)
            ANALYTICS_PROFILE_WINDOW_DAYS: Subject profile window (default 90)
            ANALYTICS_BASELINE_CACHE_TTL: Baseline cache TTL seconds (default 3600)
            ANALYTICS_MIN_SUBJECT_ACTIVITY: Events needed to count in a baseline (default 3)
            ANALYTICS_TOP_HASHTAG_LIMIT: Hashtags kept in a baseline (default 50)
            ANALYTICS_TREND_TOP_N: Default trend list length (default 20)
            ANALYTICS_ERASURE_GRACE_DAYS: Days between withdraw-all and erasure (default 30)
            ANALYTICS_STRICT_PURPOSE: Reject events with unknown purposes (default false)
            ANALYTICS_SWEEP_INTERVAL_HOURS: Retention sweep interval (default 24)
            ANALYTICS_BASELINE_REFRESH_MINUTES: Baseline refresh interval (default 60)
            ANALYTICS_STORAGE_BACKEND: memory or postgres (default memory)
        """
        salt = os.getenv("ANALYTICS_SALT")
        if not salt:
            secret_id = os.getenv("ANALYTICS_SALT_SECRET_ID")
            if not secret_id:
                raise ValueError("ANALYTICS_SALT or ANALYTICS_SALT_SECRET_ID must be set")
            salt = load_salt_from_secrets_manager(
                secret_id, region=os.getenv("ANALYTICS_AWS_REGION", "us-east-1"),
            )
            logger.info("SALT_LOADED_FROM_SECRETS_MANAGER", extra={"secret_id": secret_id})

        return cls(
            salt=salt,
            baseline_window_days=int(os.getenv("ANALYTICS_BASELINE_WINDOW_DAYS", "30")),
            profile_window_days=int(os.getenv("ANALYTICS_PROFILE_WINDOW_DAYS", "90")),
            baseline_cache_ttl_seconds=int(os.getenv("ANALYTICS_BASELINE_CACHE_TTL", "3600")),
            min_subject_activity=int(os.getenv("ANALYTICS_MIN_SUBJECT_ACTIVITY", "3")),
            top_hashtag_limit=int(os.getenv("ANALYTICS_TOP_HASHTAG_LIMIT", "50")),
            trend_top_n=int(os.getenv("ANALYTICS_TREND_TOP_N", "20")),
            erasure_grace_days=int(os.getenv("ANALYTICS_ERASURE_GRACE_DAYS", "30")),
            reject_unknown_purpose=_env_bool("ANALYTICS_STRICT_PURPOSE", False),
            sweep_interval_hours=int(os.getenv("ANALYTICS_SWEEP_INTERVAL_HOURS", "24")),
            baseline_refresh_minutes=int(os.getenv("ANALYTICS_BASELINE_REFRESH_MINUTES", "60")),
            storage_backend=os.getenv("ANALYTICS_STORAGE_BACKEND", "memory"),
        )
