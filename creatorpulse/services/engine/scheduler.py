"""Background jobs for the insights engine.

Runs the retention sweep, the baseline refresh and due erasures on
APScheduler interval triggers. Every job allows a single running
instance and coalesces missed runs.
"""
import logging
import threading
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from creatorpulse.shared.database import RepositoryError

from ..analytics_service import AggregationCancelled, AggregationIncomplete
from .engine import InsightsEngine

logger = logging.getLogger(__name__)

RETENTION_SWEEP_JOB = "retention_sweep"
BASELINE_REFRESH_JOB = "baseline_refresh"
SCHEDULED_ERASURES_JOB = "scheduled_erasures"


class AnalyticsScheduler:
    """Owns the APScheduler instance driving the engine's periodic jobs."""

    def __init__(self, engine: InsightsEngine, scheduler: Optional[BackgroundScheduler] = None):
        """Initialize scheduler.

        Args:
            engine: Engine whose jobs are run
            scheduler: APScheduler instance (injected for testing)
        """
        self._engine = engine
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._cancel = threading.Event()

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def start(self) -> None:
        config = self._engine.config
        job_options = {"replace_existing": True, "max_instances": 1, "coalesce": True}

        self._scheduler.add_job(
            self.run_retention_sweep,
            "interval",
            hours=config.sweep_interval_hours,
            id=RETENTION_SWEEP_JOB,
            **job_options
        )
        self._scheduler.add_job(
            self.refresh_baseline,
            "interval",
            minutes=config.baseline_refresh_minutes,
            id=BASELINE_REFRESH_JOB,
            **job_options
        )
        self._scheduler.add_job(
            self.run_scheduled_erasures,
            "interval",
            days=1,
            id=SCHEDULED_ERASURES_JOB,
            **job_options
        )
        self._scheduler.start()

        logger.info(
            "ANALYTICS_SCHEDULER_STARTED",
            extra={
                "sweep_interval_hours": config.sweep_interval_hours,
                "baseline_refresh_minutes": config.baseline_refresh_minutes,
            }
        )

    def job_ids(self) -> List[str]:
        return sorted(job.id for job in self._scheduler.get_jobs())

    def shutdown(self, wait: bool = True) -> None:
        """Cancel in-flight aggregation, then stop the scheduler."""
        self._cancel.set()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        logger.info("ANALYTICS_SCHEDULER_STOPPED")

    def run_retention_sweep(self) -> Optional[dict]:
        try:
            return self._engine.run_retention_sweep()
        except RepositoryError as e:
            logger.error("RETENTION_SWEEP_FAILED", extra={"error": str(e)})
            return None

    def refresh_baseline(self):
        if self._cancel.is_set():
            return None
        try:
            return self._engine.refresh_baseline(cancel_event=self._cancel)
        except AggregationCancelled:
            logger.info("BASELINE_REFRESH_CANCELLED")
            return None
        except AggregationIncomplete as e:
            logger.error("BASELINE_REFRESH_FAILED", extra={"error": str(e)})
            return None

    def run_scheduled_erasures(self) -> Optional[int]:
        try:
            return self._engine.run_scheduled_erasures()
        except RepositoryError as e:
            logger.error("SCHEDULED_ERASURES_FAILED", extra={"error": str(e)})
            return None
