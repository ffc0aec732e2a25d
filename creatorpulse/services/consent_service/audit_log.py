"""Consent audit log - append-only, hash-chained trail of consent changes.

Entries carry a hashed subject identifier, never the raw id. The log is
kept far longer than the analytics data it governs so consent decisions
stay provable after events have been swept.
"""
import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from creatorpulse.shared.database import BaseRepository, ConnectionManager
from creatorpulse.shared.utils import Clock, SaltedHasher, utcnow

logger = logging.getLogger(__name__)

AUDIT_RETENTION = timedelta(days=3 * 365)
GENESIS_HASH = "genesis"


class AuditAction(Enum):
    """Consent lifecycle actions that are audited."""
    CONSENT_GRANTED = "consent_granted"
    CONSENT_WITHDRAWN = "consent_withdrawn"
    CONSENT_WITHDRAWN_ALL = "consent_withdrawn_all"
    ERASURE_SCHEDULED = "erasure_scheduled"
    ERASURE_CANCELLED = "erasure_cancelled"
    ERASURE_COMPLETED = "erasure_completed"
    SUBJECT_DATA_DELETED = "subject_data_deleted"
    RETENTION_SWEEP = "retention_sweep"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit log entry."""
    entry_id: str
    timestamp: datetime
    action: AuditAction
    subject_hash: Optional[str]
    category: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""
    entry_hash: str = ""

    def compute_hash(self) -> str:
        """SHA-256 over the canonical JSON of every field but entry_hash."""
        content = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "subject_hash": self.subject_hash,
            "category": self.category,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        content_str = json.dumps(content, sort_keys=True, default=str)
        return hashlib.sha256(content_str.encode()).hexdigest()


class _AuditTable(BaseRepository[AuditEntry]):
    """PostgreSQL storage for audit entries. INSERT and SELECT only."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS consent_audit_log (
            entry_id TEXT PRIMARY KEY,
            timestamp TIMESTAMP NOT NULL,
            action TEXT NOT NULL,
            subject_hash TEXT,
            category TEXT,
            details JSONB NOT NULL DEFAULT '{}',
            previous_hash TEXT NOT NULL,
            entry_hash TEXT NOT NULL,
            seq BIGSERIAL
        )
    """

    def _row_to_entity(self, row: tuple) -> AuditEntry:
        details = row[5]
        if isinstance(details, str):
            details = json.loads(details)
        return AuditEntry(
            entry_id=row[0],
            timestamp=row[1],
            action=AuditAction(row[2]),
            subject_hash=row[3],
            category=row[4],
            details=details or {},
            previous_hash=row[6],
            entry_hash=row[7],
        )

    def _entity_to_params(self, entity: AuditEntry) -> Dict[str, Any]:
        return {
            "entry_id": entity.entry_id,
            "timestamp": entity.timestamp,
            "action": entity.action.value,
            "subject_hash": entity.subject_hash,
            "category": entity.category,
            "details": json.dumps(entity.details, default=str),
            "previous_hash": entity.previous_hash,
            "entry_hash": entity.entry_hash,
        }

    def last_hash(self) -> str:
        row = self._run(
            f"SELECT entry_hash FROM {self.table_name} ORDER BY seq DESC LIMIT 1",
            fetch="one",
        )
        return row[0] if row else GENESIS_HASH


class ConsentAuditLog:
    """Hash-chained audit log of consent state changes.

    Uses PostgreSQL when a connection manager is given, otherwise an
    in-process list.
    """

    def __init__(
        self,
        hasher: SaltedHasher,
        connection_manager: Optional[ConnectionManager] = None,
        clock: Clock = utcnow,
    ):
        self._hasher = hasher
        self._clock = clock
        self._lock = threading.Lock()
        self._table = (
            _AuditTable(connection_manager, "consent_audit_log")
            if connection_manager is not None else None
        )
        self._entries: List[AuditEntry] = []
        self._last_hash: Optional[str] = None if self._table else GENESIS_HASH

        logger.info(
            "AUDIT_LOG_INITIALIZED",
            extra={"backend": "postgresql" if self._table else "memory"}
        )

    def create_schema(self) -> None:
        if self._table is not None:
            self._table._run(_AuditTable.SCHEMA)

    def hash_subject(self, subject_key: str) -> str:
        return self._hasher.hash_identifier(f"audit:{subject_key}")

    def log(
        self,
        action: AuditAction,
        subject_key: Optional[str] = None,
        category: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """Append an audit entry.

        Args:
            action: Action being audited
            subject_key: Subject storage key; hashed before it is written
            category: Consent category value, if the action concerns one
            details: Additional non-identifying context

        Returns:
            Created AuditEntry

        Raises:
            StorageError: If the PostgreSQL append fails
        """
        subject_hash = self.hash_subject(subject_key) if subject_key else None

        with self._lock:
            if self._last_hash is None:
                self._last_hash = self._table.last_hash()

            entry = AuditEntry(
                entry_id=f"audit_{uuid.uuid4().hex[:16]}",
                timestamp=self._clock(),
                action=action,
                subject_hash=subject_hash,
                category=category,
                details=details or {},
                previous_hash=self._last_hash,
            )
            entry = replace(entry, entry_hash=entry.compute_hash())

            if self._table is not None:
                self._table.insert(entry)
            else:
                self._entries.append(entry)
            self._last_hash = entry.entry_hash

        logger.info(
            "AUDIT_ENTRY_CREATED",
            extra={
                "entry_id": entry.entry_id,
                "action": action.value,
                "category": category,
                "subject_hash": subject_hash[:16] if subject_hash else None,
                "entry_hash": entry.entry_hash[:16],
            }
        )
        return entry

    def entries(self) -> List[AuditEntry]:
        if self._table is not None:
            return self._table.select(order_by="seq")
        with self._lock:
            return list(self._entries)

    def verify_chain(self) -> bool:
        """Verify integrity of the audit chain.

        Returns:
            True if chain is valid, False if tampered
        """
        expected_prev = GENESIS_HASH
        entries = self.entries()

        for entry in entries:
            if entry.previous_hash != expected_prev:
                logger.critical(
                    "AUDIT_CHAIN_VERIFICATION_FAILED",
                    extra={
                        "entry_id": entry.entry_id,
                        "expected_prev": expected_prev[:16],
                        "actual_prev": entry.previous_hash[:16],
                    }
                )
                return False

            computed = entry.compute_hash()
            if computed != entry.entry_hash:
                logger.critical(
                    "AUDIT_ENTRY_HASH_MISMATCH",
                    extra={
                        "entry_id": entry.entry_id,
                        "computed": computed[:16],
                        "stored": entry.entry_hash[:16],
                    }
                )
                return False

            expected_prev = entry.entry_hash

        logger.info("AUDIT_CHAIN_VERIFIED", extra={"entry_count": len(entries)})
        return True

    def query(
        self,
        subject_key: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start_date: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """Filter audit entries by subject, action or start date."""
        results = self.entries()

        if subject_key:
            subject_hash = self.hash_subject(subject_key)
            results = [e for e in results if e.subject_hash == subject_hash]
        if action:
            results = [e for e in results if e.action == action]
        if start_date:
            results = [e for e in results if e.timestamp >= start_date]

        return results
