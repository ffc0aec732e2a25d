"""Retention Sweeper and scheduled erasure.

The sweeper deletes events past their purpose retention. It refuses to
run concurrently with itself and, unless forced, runs at most once per
UTC day. Deletes are idempotent, so a forced re-run simply finds nothing.
"""
import logging
import threading
from datetime import date, timedelta
from typing import Dict, Optional

from creatorpulse.shared.models import PURPOSE_POLICIES
from creatorpulse.shared.utils import Clock, utcnow

from ..consent_service import AuditAction, ConsentAuditLog, ConsentGate
from .event_store import EventStore

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Deletes events older than their purpose-specific retention window."""

    def __init__(
        self,
        event_store: EventStore,
        audit_log: Optional[ConsentAuditLog] = None,
        clock: Clock = utcnow,
    ):
        self._store = event_store
        self._audit = audit_log
        self._clock = clock
        self._lock = threading.Lock()
        self._last_run: Optional[date] = None

    @property
    def last_run(self) -> Optional[date]:
        return self._last_run

    def run(self, force: bool = False) -> Dict[str, int]:
        """Sweep every purpose.

        Args:
            force: Ignore the already-ran-today marker

        Returns:
            Deleted count per purpose value. Empty if another sweep holds
            the lock; all zeros if today's sweep already ran.

        Raises:
            StorageError: If the store fails mid-sweep
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("RETENTION_SWEEP_ALREADY_RUNNING")
            return {}

        try:
            now = self._clock()
            if not force and self._last_run == now.date():
                logger.info("RETENTION_SWEEP_SKIPPED", extra={"reason": "already_ran_today"})
                return {purpose.value: 0 for purpose in PURPOSE_POLICIES}

            counts: Dict[str, int] = {}
            for purpose, policy in PURPOSE_POLICIES.items():
                cutoff = now - timedelta(days=policy.retention_days)
                counts[purpose.value] = self._store.delete_expired(purpose, now, cutoff)

            self._last_run = now.date()
        finally:
            self._lock.release()

        total = sum(counts.values())
        if self._audit is not None:
            self._audit.log(AuditAction.RETENTION_SWEEP, details={"deleted": counts})

        logger.info(
            "RETENTION_SWEEP_COMPLETED",
            extra={"total_deleted": total, "per_purpose": counts}
        )
        return counts


class ErasureProcessor:
    """Carries out erasures whose grace period has elapsed."""

    def __init__(
        self,
        consent_gate: ConsentGate,
        event_store: EventStore,
        audit_log: ConsentAuditLog,
        clock: Clock = utcnow,
    ):
        self._consent = consent_gate
        self._store = event_store
        self._audit = audit_log
        self._clock = clock

    def run(self) -> int:
        """Erase every due subject.

        Returns:
            Total events deleted
        """
        total = 0
        due = self._consent.due_erasures(self._clock())

        for key in due:
            deleted = self._store.delete_by_subject(key)
            self._consent.forget_subject(key)
            self._audit.log(
                AuditAction.ERASURE_COMPLETED,
                subject_key=key,
                details={"events_deleted": deleted},
            )
            total += deleted

        if due:
            logger.info(
                "SCHEDULED_ERASURES_COMPLETED",
                extra={"subjects": len(due), "events_deleted": total}
            )
        return total
