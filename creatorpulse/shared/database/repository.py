"""Base repository pattern for append-only PostgreSQL tables.

Rows in the analytics tables are never updated in place: repositories
insert, select and delete. Every driver failure is converted into a
StorageError so callers can decide whether to retry.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

import psycopg2

from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class StorageError(RepositoryError):
    """The backing store is unavailable or rejected the operation.

    Transient by nature; callers may retry with backoff. Appends are
    safe to retry because events carry no dedup key.
    """
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations.

    Subclasses implement row mapping while inheriting:
    - Connection management
    - Error translation into StorageError
    - Logging patterns
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str,
    ):
        """Initialize repository.

        Args:
            connection_manager: Database connection manager
            table_name: Name of the database table
        """
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name}
        )

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row to entity."""
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Convert entity to a column -> value mapping."""
        pass

    def _run(self, query: str, params: Sequence[Any] = (), fetch: Optional[str] = None):
        """Execute a statement and commit.

        Args:
            query: SQL with %s placeholders
            params: Positional parameters
            fetch: None for rowcount, "one" or "all" to fetch rows

        Returns:
            Row count, a single row, or a list of rows

        Raises:
            StorageError: On any driver failure
        """
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, tuple(params))
                    if fetch == "one":
                        result = cur.fetchone()
                    elif fetch == "all":
                        result = cur.fetchall()
                    else:
                        result = cur.rowcount
                conn.commit()
                return result
        except psycopg2.Error as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise StorageError(f"{self.table_name}: {e}") from e

    def insert(self, entity: T) -> None:
        """Append a row. Existing rows are never touched."""
        params = self._entity_to_params(entity)
        columns = list(params.keys())
        placeholders = ", ".join(["%s"] * len(columns))

        self._run(
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) VALUES ({placeholders})",
            list(params.values()),
        )

    def select(self, where: str = "TRUE", params: Sequence[Any] = (), order_by: str = "") -> List[T]:
        """Select rows matching a WHERE clause."""
        query = f"SELECT * FROM {self.table_name} WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        rows = self._run(query, params, fetch="all") or []
        return [self._row_to_entity(row) for row in rows]

    def delete_where(self, where: str, params: Sequence[Any] = ()) -> int:
        """Delete rows matching a WHERE clause.

        Returns:
            Number of rows deleted
        """
        return self._run(f"DELETE FROM {self.table_name} WHERE {where}", params) or 0

    def count(self) -> int:
        """Count total rows."""
        row = self._run(f"SELECT COUNT(*) FROM {self.table_name}", fetch="one")
        return row[0] if row else 0
