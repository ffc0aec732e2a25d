"""Short-lived cache of community baselines.

Advisory only: a baseline can always be recomputed. A failed
recomputation never replaces a cached entry; callers get the previous
baseline marked stale instead.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from creatorpulse.shared.models import CommunityBaseline
from creatorpulse.shared.utils import Clock, utcnow

from .errors import AggregationIncomplete

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


@dataclass(frozen=True)
class _Entry:
    baseline: CommunityBaseline
    stored_at: datetime


class BaselineCache:
    """Keyed baseline cache with a TTL and hit/miss counters."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Clock = utcnow):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def hit_rate(self) -> float:
        with self._lock:
            hits, misses = self.hits, self.misses
        total = hits + misses
        return hits / total if total else 0.0

    def _fresh(self, entry: Optional[_Entry]) -> bool:
        return entry is not None and self._clock() - entry.stored_at < self._ttl

    def get(self, key: str) -> Optional[CommunityBaseline]:
        """Fresh cached baseline, or None."""
        with self._lock:
            entry = self._entries.get(key)
        return entry.baseline if self._fresh(entry) else None

    def store(self, key: str, baseline: CommunityBaseline) -> None:
        with self._lock:
            self._entries[key] = _Entry(baseline, self._clock())

    def invalidate(self, key: Optional[str] = None) -> None:
        """Expire one key, or everything. Entries stay as stale fallbacks."""
        epoch = datetime.min
        with self._lock:
            keys = [key] if key is not None else list(self._entries)
            for k in keys:
                if k in self._entries:
                    self._entries[k] = _Entry(self._entries[k].baseline, epoch)

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], CommunityBaseline],
    ) -> CommunityBaseline:
        """Return a fresh cached baseline or compute and cache a new one.

        Raises:
            AggregationIncomplete: If computation fails and nothing was cached before
        """
        with self._lock:
            entry = self._entries.get(key)
            fresh = self._fresh(entry)
            if fresh:
                self.hits += 1
            else:
                self.misses += 1

        if fresh:
            logger.debug("BASELINE_CACHE_HIT", extra={"key": key})
            return entry.baseline

        try:
            baseline = compute()
        except AggregationIncomplete as e:
            if entry is None:
                logger.error(
                    "BASELINE_UNAVAILABLE",
                    extra={"key": key, "error": str(e)}
                )
                raise
            logger.warning(
                "BASELINE_STALE_FALLBACK",
                extra={"key": key, "error": str(e), "stored_at": entry.stored_at.isoformat()}
            )
            return entry.baseline.as_stale()

        self.store(key, baseline)
        return baseline
