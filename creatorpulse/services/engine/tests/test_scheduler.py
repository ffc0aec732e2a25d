"""Tests for the background job scheduler."""
from unittest.mock import MagicMock

import pytest

from creatorpulse.services.analytics_service import AggregationCancelled, AggregationIncomplete
from creatorpulse.services.engine import AnalyticsScheduler, EngineConfig
from creatorpulse.services.engine.scheduler import (
    BASELINE_REFRESH_JOB,
    RETENTION_SWEEP_JOB,
    SCHEDULED_ERASURES_JOB,
)
from creatorpulse.shared.database import StorageError

SALT = "scheduler_test_salt_that_is_long_enough"


@pytest.fixture
def engine():
    mock = MagicMock()
    mock.config = EngineConfig(salt=SALT, sweep_interval_hours=24, baseline_refresh_minutes=60)
    return mock


@pytest.fixture
def apscheduler():
    mock = MagicMock()
    mock.running = True
    return mock


class TestStart:
    """Job registration."""

    def test_registers_three_jobs(self, engine, apscheduler):
        AnalyticsScheduler(engine, scheduler=apscheduler).start()

        ids = [c.kwargs["id"] for c in apscheduler.add_job.call_args_list]
        assert ids == [RETENTION_SWEEP_JOB, BASELINE_REFRESH_JOB, SCHEDULED_ERASURES_JOB]
        apscheduler.start.assert_called_once()

    def test_single_instance_and_coalesced(self, engine, apscheduler):
        AnalyticsScheduler(engine, scheduler=apscheduler).start()

        for call in apscheduler.add_job.call_args_list:
            assert call.kwargs["max_instances"] == 1
            assert call.kwargs["coalesce"] is True

    def test_intervals_from_config(self, engine, apscheduler):
        AnalyticsScheduler(engine, scheduler=apscheduler).start()

        calls = {c.kwargs["id"]: c for c in apscheduler.add_job.call_args_list}
        assert calls[RETENTION_SWEEP_JOB].kwargs["hours"] == 24
        assert calls[BASELINE_REFRESH_JOB].kwargs["minutes"] == 60
        assert calls[SCHEDULED_ERASURES_JOB].kwargs["days"] == 1

    def test_real_scheduler_lifecycle(self, engine):
        scheduler = AnalyticsScheduler(engine)
        scheduler.start()
        try:
            assert scheduler.running
            assert scheduler.job_ids() == sorted(
                [RETENTION_SWEEP_JOB, BASELINE_REFRESH_JOB, SCHEDULED_ERASURES_JOB]
            )
        finally:
            scheduler.shutdown(wait=False)

        assert not scheduler.running


class TestShutdown:
    def test_sets_cancel_event_first(self, engine, apscheduler):
        scheduler = AnalyticsScheduler(engine, scheduler=apscheduler)

        scheduler.shutdown()

        assert scheduler.cancel_event.is_set()
        apscheduler.shutdown.assert_called_once_with(wait=True)

    def test_refresh_skipped_after_shutdown(self, engine, apscheduler):
        scheduler = AnalyticsScheduler(engine, scheduler=apscheduler)
        scheduler.shutdown()

        assert scheduler.refresh_baseline() is None
        engine.refresh_baseline.assert_not_called()


class TestJobs:
    """Job bodies log failures instead of killing the scheduler thread."""

    def test_retention_sweep(self, engine, apscheduler):
        engine.run_retention_sweep.return_value = {"user_insights": 2}

        result = AnalyticsScheduler(engine, scheduler=apscheduler).run_retention_sweep()

        assert result == {"user_insights": 2}

    def test_retention_sweep_storage_failure(self, engine, apscheduler):
        engine.run_retention_sweep.side_effect = StorageError("down")

        assert AnalyticsScheduler(engine, scheduler=apscheduler).run_retention_sweep() is None

    def test_refresh_passes_cancel_event(self, engine, apscheduler):
        scheduler = AnalyticsScheduler(engine, scheduler=apscheduler)

        scheduler.refresh_baseline()

        engine.refresh_baseline.assert_called_once_with(cancel_event=scheduler.cancel_event)

    @pytest.mark.parametrize("error", [
        AggregationIncomplete("read failed"),
        AggregationCancelled("shutdown"),
    ])
    def test_refresh_failure(self, engine, apscheduler, error):
        engine.refresh_baseline.side_effect = error

        assert AnalyticsScheduler(engine, scheduler=apscheduler).refresh_baseline() is None

    def test_scheduled_erasures(self, engine, apscheduler):
        engine.run_scheduled_erasures.return_value = 7

        assert AnalyticsScheduler(engine, scheduler=apscheduler).run_scheduled_erasures() == 7

    def test_scheduled_erasures_storage_failure(self, engine, apscheduler):
        engine.run_scheduled_erasures.side_effect = StorageError("down")

        assert AnalyticsScheduler(engine, scheduler=apscheduler).run_scheduled_erasures() is None
