"""Database connection management for CreatorPulse services.

Provides connection pooling, health checks, and the append-only
repository base class used by the event and consent stores.
"""

from .connection import (
    DatabaseConfig,
    ConnectionManager,
)
from .repository import (
    BaseRepository,
    RepositoryError,
    StorageError,
)

__all__ = [
    "DatabaseConfig",
    "ConnectionManager",
    "BaseRepository",
    "RepositoryError",
    "StorageError",
]
