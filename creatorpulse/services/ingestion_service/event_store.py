"""Event Store - append-only storage of minimized events.

The single source of truth for every aggregate. Events are inserted once
and never updated; they leave only through retention or erasure deletes.
Readers get a snapshot list, so scans tolerate concurrent appends.
"""
import json
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from creatorpulse.shared.database import BaseRepository, ConnectionManager
from creatorpulse.shared.models import Event, EventType, Purpose, TimeWindow

logger = logging.getLogger(__name__)


class _EventTable(BaseRepository[Event]):

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS analytics_events (
            event_id TEXT PRIMARY KEY,
            event_type TEXT NOT NULL,
            session_hash CHAR(32) NOT NULL,
            platform TEXT,
            purpose TEXT NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}',
            timestamp TIMESTAMP NOT NULL,
            retention_until TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_events_timestamp ON analytics_events (timestamp);
        CREATE INDEX IF NOT EXISTS idx_events_session ON analytics_events (session_hash);
        CREATE INDEX IF NOT EXISTS idx_events_retention ON analytics_events (purpose, retention_until)
    """

    def _row_to_entity(self, row: tuple) -> Event:
        payload = row[5]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return Event(
            event_id=row[0],
            event_type=EventType(row[1]),
            session_hash=row[2],
            platform=row[3],
            purpose=Purpose(row[4]),
            payload=payload or {},
            timestamp=row[6],
            retention_until=row[7],
        )

    def _entity_to_params(self, entity: Event) -> Dict[str, Any]:
        return {
            "event_id": entity.event_id,
            "event_type": entity.event_type.value,
            "session_hash": entity.session_hash,
            "platform": entity.platform,
            "purpose": entity.purpose.value,
            "payload": json.dumps(dict(entity.payload)),
            "timestamp": entity.timestamp,
            "retention_until": entity.retention_until,
        }


class EventStore:
    """Append-only event storage.

    Uses PostgreSQL when a connection manager is given, otherwise an
    in-process list guarded by a lock held only for the append or copy.
    """

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        self._table = (
            _EventTable(connection_manager, "analytics_events")
            if connection_manager is not None else None
        )
        self._events: List[Event] = []
        self._lock = threading.Lock()

        logger.info(
            "EVENT_STORE_INITIALIZED",
            extra={"backend": "postgresql" if self._table else "memory"}
        )

    def create_schema(self) -> None:
        if self._table is not None:
            self._table._run(_EventTable.SCHEMA)

    def append(self, event: Event) -> str:
        """Append an event.

        Returns:
            The event id

        Raises:
            StorageError: If the store is unavailable
        """
        if self._table is not None:
            self._table.insert(event)
        else:
            with self._lock:
                self._events.append(event)

        logger.debug(
            "EVENT_APPENDED",
            extra={"event_id": event.event_id, "event_type": event.event_type.value}
        )
        return event.event_id

    def _snapshot(self) -> List[Event]:
        with self._lock:
            return list(self._events)

    def find_in_window(
        self,
        window: TimeWindow,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> List[Event]:
        """Events with window.start <= timestamp < window.end, oldest first.

        Raises:
            StorageError: If the store is unavailable
        """
        types = set(event_types) if event_types else None

        if self._table is not None:
            where = "timestamp >= %s AND timestamp < %s"
            params: List[Any] = [window.start, window.end]
            if types:
                where += " AND event_type = ANY(%s)"
                params.append(sorted(t.value for t in types))
            return self._table.select(where, params, order_by="timestamp, event_id")

        events = [
            e for e in self._snapshot()
            if window.contains(e.timestamp) and (types is None or e.event_type in types)
        ]
        return sorted(events, key=lambda e: e.timestamp)

    def find_by_subject(self, session_hash: str, since: Optional[datetime] = None) -> List[Event]:
        """A subject's events, oldest first."""
        if self._table is not None:
            where = "session_hash = %s"
            params: List[Any] = [session_hash]
            if since is not None:
                where += " AND timestamp >= %s"
                params.append(since)
            return self._table.select(where, params, order_by="timestamp, event_id")

        events = [
            e for e in self._snapshot()
            if e.session_hash == session_hash and (since is None or e.timestamp >= since)
        ]
        return sorted(events, key=lambda e: e.timestamp)

    def find_all(self) -> List[Event]:
        if self._table is not None:
            return self._table.select(order_by="timestamp, event_id")
        return self._snapshot()

    def delete_by_subject(self, session_hash: str) -> int:
        """Delete every event of one subject.

        Returns:
            Number of events deleted
        """
        if self._table is not None:
            deleted = self._table.delete_where("session_hash = %s", (session_hash,))
        else:
            with self._lock:
                before = len(self._events)
                self._events = [e for e in self._events if e.session_hash != session_hash]
                deleted = before - len(self._events)

        logger.info(
            "SUBJECT_EVENTS_DELETED",
            extra={"subject_hash": session_hash[:8], "events_deleted": deleted}
        )
        return deleted

    def delete_expired(self, purpose: Purpose, now: datetime, cutoff: datetime) -> int:
        """Delete a purpose's events past retention.

        An event expires when its stamped retention_until has passed or it
        is older than cutoff (the purpose's current retention).

        Returns:
            Number of events deleted
        """
        if self._table is not None:
            return self._table.delete_where(
                "purpose = %s AND (retention_until <= %s OR timestamp < %s)",
                (purpose.value, now, cutoff),
            )

        def expired(e: Event) -> bool:
            return e.purpose is purpose and (e.retention_until <= now or e.timestamp < cutoff)

        with self._lock:
            before = len(self._events)
            self._events = [e for e in self._events if not expired(e)]
            return before - len(self._events)

    def count(self) -> int:
        if self._table is not None:
            return self._table.count()
        with self._lock:
            return len(self._events)
