"""Consent record storage.

Consent history is append-only: the newest record per (subject, category)
is the current state. Records are only removed when the subject is erased.
Scheduled erasures live alongside so a withdraw-all survives restarts.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from creatorpulse.shared.database import BaseRepository, ConnectionManager
from creatorpulse.shared.models import ConsentCategory, ConsentRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledErasure:
    subject_id: str
    due_at: datetime
    scheduled_at: datetime


class _ConsentTable(BaseRepository[ConsentRecord]):

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS consent_records (
            record_id TEXT PRIMARY KEY,
            subject_id TEXT NOT NULL,
            category TEXT NOT NULL,
            granted BOOLEAN NOT NULL,
            version TEXT NOT NULL,
            granted_at TIMESTAMP,
            withdrawn_at TIMESTAMP,
            recorded_at TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_consent_subject
            ON consent_records (subject_id, category, recorded_at)
    """

    def _row_to_entity(self, row: tuple) -> ConsentRecord:
        return ConsentRecord(
            record_id=row[0],
            subject_id=row[1],
            category=ConsentCategory(row[2]),
            granted=row[3],
            version=row[4],
            granted_at=row[5],
            withdrawn_at=row[6],
            recorded_at=row[7],
        )

    def _entity_to_params(self, entity: ConsentRecord) -> Dict[str, Any]:
        return {
            "record_id": entity.record_id,
            "subject_id": entity.subject_id,
            "category": entity.category.value,
            "granted": entity.granted,
            "version": entity.version,
            "granted_at": entity.granted_at,
            "withdrawn_at": entity.withdrawn_at,
            "recorded_at": entity.recorded_at,
        }

    def granted_counts(self) -> Dict[str, int]:
        rows = self._run(
            """
            SELECT category, COUNT(*) FROM (
                SELECT DISTINCT ON (subject_id, category) category, granted
                FROM consent_records
                ORDER BY subject_id, category, recorded_at DESC
            ) latest
            WHERE granted
            GROUP BY category
            """,
            fetch="all",
        ) or []
        return {row[0]: row[1] for row in rows}


class _ErasureTable(BaseRepository[ScheduledErasure]):

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS scheduled_erasures (
            subject_id TEXT PRIMARY KEY,
            due_at TIMESTAMP NOT NULL,
            scheduled_at TIMESTAMP NOT NULL
        )
    """

    def _row_to_entity(self, row: tuple) -> ScheduledErasure:
        return ScheduledErasure(subject_id=row[0], due_at=row[1], scheduled_at=row[2])

    def _entity_to_params(self, entity: ScheduledErasure) -> Dict[str, Any]:
        return {
            "subject_id": entity.subject_id,
            "due_at": entity.due_at,
            "scheduled_at": entity.scheduled_at,
        }

    def upsert(self, erasure: ScheduledErasure) -> None:
        self._run(
            f"""
            INSERT INTO {self.table_name} (subject_id, due_at, scheduled_at)
            VALUES (%s, %s, %s)
            ON CONFLICT (subject_id) DO UPDATE
            SET due_at = EXCLUDED.due_at, scheduled_at = EXCLUDED.scheduled_at
            """,
            (erasure.subject_id, erasure.due_at, erasure.scheduled_at),
        )


class ConsentRepository:
    """Repository for consent history and pending erasures.

    Uses PostgreSQL when a connection manager is given, otherwise an
    in-process store.
    """

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        self._lock = threading.Lock()
        self._records: Dict[str, List[ConsentRecord]] = {}
        self._erasures: Dict[str, ScheduledErasure] = {}

        if connection_manager is not None:
            self._consent_table = _ConsentTable(connection_manager, "consent_records")
            self._erasure_table = _ErasureTable(connection_manager, "scheduled_erasures")
        else:
            self._consent_table = None
            self._erasure_table = None

        logger.info(
            "CONSENT_REPOSITORY_INITIALIZED",
            extra={"backend": "postgresql" if connection_manager else "memory"}
        )

    @property
    def _postgres(self) -> bool:
        return self._consent_table is not None

    def create_schema(self) -> None:
        if self._postgres:
            self._consent_table._run(_ConsentTable.SCHEMA)
            self._erasure_table._run(_ErasureTable.SCHEMA)

    def append(self, record: ConsentRecord) -> None:
        if self._postgres:
            self._consent_table.insert(record)
            return
        with self._lock:
            self._records.setdefault(record.subject_id, []).append(record)

    def history(self, subject_id: str) -> List[ConsentRecord]:
        """All records for a subject, oldest first."""
        if self._postgres:
            return self._consent_table.select(
                "subject_id = %s", (subject_id,), order_by="recorded_at"
            )
        with self._lock:
            return list(self._records.get(subject_id, ()))

    def current_states(self, subject_id: str) -> Dict[ConsentCategory, ConsentRecord]:
        """Newest record per category."""
        states: Dict[ConsentCategory, ConsentRecord] = {}
        for record in self.history(subject_id):
            states[record.category] = record
        return states

    def latest(self, subject_id: str, category: ConsentCategory) -> Optional[ConsentRecord]:
        return self.current_states(subject_id).get(category)

    def granted_counts(self) -> Dict[str, int]:
        """Number of subjects currently granting each category."""
        if self._postgres:
            return self._consent_table.granted_counts()

        with self._lock:
            latest: Dict[tuple, ConsentRecord] = {}
            for subject_id, records in self._records.items():
                for record in records:
                    latest[(subject_id, record.category)] = record

        counts: Dict[str, int] = {}
        for record in latest.values():
            if record.granted:
                counts[record.category.value] = counts.get(record.category.value, 0) + 1
        return counts

    def schedule_erasure(self, subject_id: str, due_at: datetime, scheduled_at: datetime) -> None:
        erasure = ScheduledErasure(subject_id, due_at, scheduled_at)
        if self._postgres:
            self._erasure_table.upsert(erasure)
            return
        with self._lock:
            self._erasures[subject_id] = erasure

    def cancel_erasure(self, subject_id: str) -> bool:
        """Drop a pending erasure. Returns True if one existed."""
        if self._postgres:
            return self._erasure_table.delete_where("subject_id = %s", (subject_id,)) > 0
        with self._lock:
            return self._erasures.pop(subject_id, None) is not None

    def pending_erasure(self, subject_id: str) -> Optional[ScheduledErasure]:
        if self._postgres:
            rows = self._erasure_table.select("subject_id = %s", (subject_id,))
            return rows[0] if rows else None
        with self._lock:
            return self._erasures.get(subject_id)

    def due_erasures(self, now: datetime) -> List[ScheduledErasure]:
        if self._postgres:
            return self._erasure_table.select("due_at <= %s", (now,), order_by="due_at")
        with self._lock:
            return sorted(
                (e for e in self._erasures.values() if e.due_at <= now),
                key=lambda e: e.due_at,
            )

    def delete_subject(self, subject_id: str) -> int:
        """Remove all consent history and any pending erasure for a subject.

        Returns:
            Number of consent records deleted
        """
        if self._postgres:
            deleted = self._consent_table.delete_where("subject_id = %s", (subject_id,))
            self._erasure_table.delete_where("subject_id = %s", (subject_id,))
        else:
            with self._lock:
                deleted = len(self._records.pop(subject_id, ()))
                self._erasures.pop(subject_id, None)

        logger.info(
            "CONSENT_HISTORY_DELETED",
            extra={"subject_hash": subject_id[:8], "records_deleted": deleted}
        )
        return deleted
