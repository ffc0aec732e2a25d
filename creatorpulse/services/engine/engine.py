"""Insights engine - the single entry point to the analytics core.

Wires consent, ingestion, retention and the analytics services together
and exposes the operations used by the HTTP adapter and the scheduler.
Components are passed in explicitly; build() assembles the defaults.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from creatorpulse.shared.database import ConnectionManager, DatabaseConfig
from creatorpulse.shared.models import (
    Achievement,
    BenchmarkReport,
    CommunityBaseline,
    ConsentRecord,
    IngestResult,
    SubjectProfile,
    TimeWindow,
    TrendDimension,
    TrendEntry,
)
from creatorpulse.shared.utils import (
    ClientSignals,
    Clock,
    SaltedHasher,
    SessionIdentifier,
    account_key,
    subject_key,
    utcnow,
)

from ..analytics_service import (
    Aggregator,
    BaselineCache,
    Benchmarker,
    TrendAnalyzer,
    build_profile,
    compute_achievements,
)
from ..consent_service import AuditAction, ConsentAuditLog, ConsentGate, ConsentRepository
from ..ingestion_service import (
    ComplianceMonitor,
    ComplianceReport,
    DataMinimizer,
    ErasureProcessor,
    EventIngestor,
    EventStore,
    RetentionSweeper,
)
from .config import EngineConfig

logger = logging.getLogger(__name__)

USER_TREND_DAYS = 7


class InsightsEngine:
    """Consent-gated ingestion plus on-demand community statistics."""

    def __init__(
        self,
        config: EngineConfig,
        hasher: SaltedHasher,
        event_store: EventStore,
        consent_gate: ConsentGate,
        audit_log: ConsentAuditLog,
        connection_manager: Optional[ConnectionManager] = None,
        clock: Clock = utcnow,
    ):
        self.config = config
        self._hasher = hasher
        self._store = event_store
        self._consent = consent_gate
        self._audit = audit_log
        self._connection_manager = connection_manager
        self._clock = clock

        self._ingestor = EventIngestor(
            consent_gate,
            DataMinimizer(hasher),
            event_store,
            clock=clock,
            reject_unknown_purpose=config.reject_unknown_purpose,
        )
        self._aggregator = Aggregator(
            event_store,
            min_activity=config.min_subject_activity,
            top_hashtag_limit=config.top_hashtag_limit,
            clock=clock,
        )
        self._baseline_cache = BaselineCache(config.baseline_cache_ttl_seconds, clock=clock)
        self._trends = TrendAnalyzer(event_store)
        self._benchmarker = Benchmarker()
        self._sweeper = RetentionSweeper(event_store, audit_log, clock=clock)
        self._erasures = ErasureProcessor(consent_gate, event_store, audit_log, clock=clock)
        self._compliance = ComplianceMonitor(event_store, clock=clock)
        self._sessions = SessionIdentifier(hasher)

        logger.info(
            "INSIGHTS_ENGINE_INITIALIZED",
            extra={
                "backend": self.backend,
                "baseline_window_days": config.baseline_window_days,
                "profile_window_days": config.profile_window_days,
            }
        )

    @classmethod
    def build(
        cls,
        config: EngineConfig,
        connection_manager: Optional[ConnectionManager] = None,
        clock: Clock = utcnow,
    ) -> "InsightsEngine":
        """Assemble an engine with the default components.

        Args:
            config: Engine configuration
            connection_manager: Postgres connections; created from DB_*
                environment variables when the postgres backend is configured
                and none is given
            clock: Source of naive UTC timestamps

        Returns:
            InsightsEngine
        """
        if config.storage_backend == "postgres" and connection_manager is None:
            connection_manager = ConnectionManager(DatabaseConfig.from_env())
        if connection_manager is not None and not connection_manager.initialized:
            connection_manager.initialize()

        hasher = SaltedHasher(config.salt)
        audit_log = ConsentAuditLog(hasher, connection_manager, clock=clock)
        consent_gate = ConsentGate(
            ConsentRepository(connection_manager),
            audit_log,
            clock=clock,
            erasure_grace_period=timedelta(days=config.erasure_grace_days),
        )
        return cls(
            config,
            hasher,
            EventStore(connection_manager),
            consent_gate,
            audit_log,
            connection_manager=connection_manager,
            clock=clock,
        )

    @property
    def backend(self) -> str:
        return "postgresql" if self._connection_manager is not None else "memory"

    @property
    def baseline_cache(self) -> BaselineCache:
        return self._baseline_cache

    def now(self) -> datetime:
        return self._clock()

    def create_schema(self) -> None:
        """Create the event, consent and audit tables if missing."""
        self._store.create_schema()
        self._consent.create_schema()

    def status(self) -> Dict[str, Any]:
        """Readiness details: backend, database health and cache counters."""
        result: Dict[str, Any] = {
            "backend": self.backend,
            "baseline_cache_hit_rate": round(self._baseline_cache.hit_rate, 3),
        }
        if self._connection_manager is not None:
            database = self._connection_manager.health_check()
            result["database"] = database
            result["ready"] = bool(database.get("healthy"))
        else:
            result["ready"] = True
        return result

    # Identity

    def resolve_session(
        self,
        presented_token: Optional[str],
        signals: ClientSignals,
    ) -> Tuple[str, bool]:
        """Session hash for a request: the presented token if well formed,
        otherwise a freshly derived one.

        Returns:
            (session_hash, reused)
        """
        return self._sessions.resolve(presented_token, signals)

    def account_subject(self, user_id: str) -> str:
        """Subject key for an authenticated account id."""
        return account_key(user_id, self._hasher)

    # Ingestion

    def ingest_event(
        self,
        event_type: Any,
        payload: Mapping[str, Any],
        purpose: Any,
        subject_id: str,
    ) -> IngestResult:
        """Consent-gated, minimized capture of one event.

        Raises:
            StorageError: If the event store is unavailable
        """
        return self._ingestor.ingest(event_type, payload, purpose, subject_id)

    def ingest_caption_hashtags(
        self,
        text: str,
        subject_id: str,
        platform: Optional[str] = None,
        tone: Optional[str] = None,
    ) -> List[IngestResult]:
        """One hashtag event per tag typed into caption input; the text is dropped."""
        return self._ingestor.ingest_hashtags(text, subject_id, platform=platform, tone=tone)

    # Consent

    def has_consent(self, subject_id: str, category: Any) -> bool:
        return self._consent.has_consent(subject_id, category)

    def set_consent(self, subject_id: str, category: Any, granted: bool = True) -> ConsentRecord:
        return self._consent.set_consent(subject_id, category, granted)

    def set_consents(self, subject_id: str, choices: Mapping[str, bool]) -> List[ConsentRecord]:
        return self._consent.set_consents(subject_id, choices)

    def get_consents(self, subject_id: str) -> Dict[str, bool]:
        return self._consent.get_consents(subject_id)

    def withdraw_consent(self, subject_id: str, category: Any = None) -> Optional[ConsentRecord]:
        """Withdraw one category, or everything when category is None.

        Withdrawing everything schedules erasure after the grace period.
        """
        if category is None:
            self.withdraw_all(subject_id)
            return None
        return self._consent.withdraw_consent(subject_id, category)

    def withdraw_all(self, subject_id: str) -> None:
        self._consent.withdraw_all(subject_id)

    def pending_erasure(self, subject_id: str) -> Optional[datetime]:
        return self._consent.pending_erasure(subject_id)

    def consent_statistics(self) -> Dict[str, int]:
        return self._consent.consent_statistics()

    # Baselines, trends, benchmarks

    def _trailing_key(self) -> str:
        return f"trailing:{self.config.baseline_window_days}d"

    def get_baseline(
        self,
        window: Optional[TimeWindow] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CommunityBaseline:
        """Cached community baseline, computed on a miss.

        Args:
            window: Fixed window; defaults to the trailing baseline window
            cancel_event: Stops a computation in progress when set

        Returns:
            CommunityBaseline, marked stale when recomputation failed and a
            previous result was served instead

        Raises:
            AggregationIncomplete: If computation failed and nothing was cached
        """
        if window is None:
            key = self._trailing_key()

            def compute() -> CommunityBaseline:
                trailing = TimeWindow.trailing(self.config.baseline_window_days, self._clock())
                return self._aggregator.compute_baseline(trailing, cancel_event)
        else:
            key = window.key

            def compute() -> CommunityBaseline:
                return self._aggregator.compute_baseline(window, cancel_event)

        return self._baseline_cache.get_or_compute(key, compute)

    def refresh_baseline(self, cancel_event: Optional[threading.Event] = None) -> CommunityBaseline:
        """Recompute the trailing baseline regardless of cache age."""
        self._baseline_cache.invalidate(self._trailing_key())
        return self.get_baseline(cancel_event=cancel_event)

    def get_trends(
        self,
        current_window: Optional[TimeWindow] = None,
        previous_window: Optional[TimeWindow] = None,
        top_n: Optional[int] = None,
        dimension: TrendDimension = TrendDimension.HASHTAG,
    ) -> List[TrendEntry]:
        """Ranked trend entries for current_window against the window before it.

        Raises:
            ValueError: If the windows differ in length or top_n is below 1
        """
        current_window = current_window or TimeWindow.trailing(
            self.config.baseline_window_days, self._clock()
        )
        return self._trends.compute_trends(
            current_window,
            previous_window,
            top_n=self.config.trend_top_n if top_n is None else top_n,
            dimension=dimension,
        )

    def get_monthly_report(self, year: int, month: int) -> Dict[str, Any]:
        return self._trends.monthly_report(year, month)

    def _profile(self, subject_id: str, window: Optional[TimeWindow]) -> SubjectProfile:
        key = subject_key(subject_id)
        window = window or TimeWindow.trailing(self.config.profile_window_days, self._clock())
        events = self._store.find_by_subject(key, since=window.start)
        return build_profile(key, events, window)

    def get_benchmarks(
        self,
        subject_id: str,
        window: Optional[TimeWindow] = None,
    ) -> BenchmarkReport:
        """Benchmark one subject against the trailing community baseline.

        Args:
            subject_id: Session hash or account key
            window: Profile window; defaults to the trailing profile window

        Raises:
            AggregationIncomplete: If no baseline can be produced
        """
        profile = self._profile(subject_id, window)
        return self._benchmarker.benchmark(profile, self.get_baseline())

    def get_achievements(self, subject_id: str) -> List[Achievement]:
        return compute_achievements(self._profile(subject_id, None))

    def get_user_trend_report(self, subject_id: str, days: int = USER_TREND_DAYS) -> Dict[str, Any]:
        """Trending hashtags and platform insights for the subject's platforms."""
        window = TimeWindow.trailing(days, self._clock())
        profile = self._profile(subject_id, None)
        return self._trends.user_report(profile, window)

    def get_monthly_comparison(self, subject_id: str, year: int, month: int) -> Dict[str, Any]:
        """A subject's month against the month before and the month's community.

        Raises:
            AggregationIncomplete: If no baseline for the month can be produced
        """
        current = TimeWindow.for_month(year, month)
        previous = TimeWindow.for_month(year - 1, 12) if month == 1 else TimeWindow.for_month(year, month - 1)
        return self._benchmarker.monthly_comparison(
            self._profile(subject_id, current),
            self._profile(subject_id, previous),
            self.get_baseline(current),
        )

    # Lifecycle

    def delete_subject_data(self, subject_id: str) -> int:
        """Erase a subject's events and consent history now.

        The consent audit trail is kept; it only holds hashed keys.

        Returns:
            Number of events deleted
        """
        key = subject_key(subject_id)
        deleted = self._store.delete_by_subject(key)
        self._consent.forget_subject(key)
        self._audit.log(
            AuditAction.SUBJECT_DATA_DELETED,
            subject_key=key,
            details={"events_deleted": deleted},
        )
        if deleted:
            self._baseline_cache.invalidate()

        logger.info(
            "SUBJECT_DATA_DELETED",
            extra={"subject_hash": key[:8], "events_deleted": deleted}
        )
        return deleted

    def run_retention_sweep(self, force: bool = False) -> Dict[str, int]:
        counts = self._sweeper.run(force=force)
        if sum(counts.values()):
            self._baseline_cache.invalidate()
        return counts

    def run_scheduled_erasures(self) -> int:
        deleted = self._erasures.run()
        if deleted:
            self._baseline_cache.invalidate()
        return deleted

    def compliance_report(self) -> ComplianceReport:
        return self._compliance.check()

    def close(self) -> None:
        if self._connection_manager is not None:
            self._connection_manager.close()
