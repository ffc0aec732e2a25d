"""PostgreSQL access for the event and consent stores.

One ThreadedConnectionPool is shared by every ingesting thread. Each
session is tagged with an application name and a statement timeout so a
slow baseline scan cannot hold a connection indefinitely.
"""
import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict

import boto3
from psycopg2 import pool

logger = logging.getLogger(__name__)

APPLICATION_NAME = "creatorpulse-analytics"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class DatabaseConfig:
    """Where the analytics tables live and how many connections to hold.

    DB_* environment variables cover local runs; deployments read the
    credentials secret instead.
    """
    host: str
    port: int = 5432
    database: str = "creatorpulse"
    username: str = ""
    password: str = ""
    min_connections: int = 2
    max_connections: int = 20
    connect_timeout: int = 10
    ssl_mode: str = "require"
    statement_timeout_ms: int = 30000

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Read DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD, DB_MIN_CONN,
        DB_MAX_CONN, DB_SSL_MODE and DB_STATEMENT_TIMEOUT_MS."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=_env_int("DB_PORT", 5432),
            database=os.getenv("DB_NAME", "creatorpulse"),
            username=os.getenv("DB_USER", ""),
            password=os.getenv("DB_PASSWORD", ""),
            min_connections=_env_int("DB_MIN_CONN", 2),
            max_connections=_env_int("DB_MAX_CONN", 20),
            ssl_mode=os.getenv("DB_SSL_MODE", "require"),
            statement_timeout_ms=_env_int("DB_STATEMENT_TIMEOUT_MS", 30000),
        )

    @classmethod
    def from_secrets_manager(cls, secret_arn: str, region: str = "us-east-1") -> "DatabaseConfig":
        """Credentials from a Secrets Manager JSON secret.

        Keys missing from the secret fall back to the DB_* variables.
        Lookup failures are logged and re-raised.
        """
        try:
            client = boto3.client("secretsmanager", region_name=region)
            secret = json.loads(client.get_secret_value(SecretId=secret_arn)["SecretString"])
        except Exception as e:
            logger.error(
                "DB_SECRET_LOAD_FAILED",
                extra={"error": str(e), "secret_arn": secret_arn}
            )
            raise

        env = cls.from_env()
        return cls(
            host=secret.get("host", env.host),
            port=int(secret.get("port", env.port)),
            database=secret.get("dbname", env.database),
            username=secret.get("username", ""),
            password=secret.get("password", ""),
            min_connections=env.min_connections,
            max_connections=env.max_connections,
            ssl_mode=env.ssl_mode,
            statement_timeout_ms=env.statement_timeout_ms,
        )

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg2.connect."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.username,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "sslmode": self.ssl_mode,
            "application_name": APPLICATION_NAME,
            "options": f"-c statement_timeout={self.statement_timeout_ms}",
        }


class ConnectionManager:
    """Lazily created connection pool shared by the repositories."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = None

        logger.info(
            "DB_POOL_CONFIGURED",
            extra={
                "host": config.host,
                "database": config.database,
                "max_connections": config.max_connections,
            }
        )

    @property
    def initialized(self) -> bool:
        return self._pool is not None

    def initialize(self) -> None:
        """Open the pool. Repeated calls are no-ops."""
        if self._pool is not None:
            return

        try:
            self._pool = pool.ThreadedConnectionPool(
                minconn=self.config.min_connections,
                maxconn=self.config.max_connections,
                **self.config.connect_kwargs(),
            )
        except Exception as e:
            logger.error("DB_POOL_OPEN_FAILED", extra={"error": str(e)})
            raise

        logger.info(
            "DB_POOL_OPENED",
            extra={"host": self.config.host, "database": self.config.database}
        )

    @contextmanager
    def get_connection(self):
        """Borrow a connection for one unit of work.

        An exception inside the block rolls back the open transaction
        before the connection goes back to the pool.
        """
        if self._pool is None:
            self.initialize()

        conn = self._pool.getconn()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def health_check(self) -> Dict[str, Any]:
        """Round-trip a SELECT 1; used by the readiness endpoint."""
        if self._pool is None:
            return {"status": "not_initialized", "healthy": False}

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
        except Exception as e:
            logger.error("DB_HEALTH_CHECK_FAILED", extra={"error": str(e)})
            return {"status": "error", "healthy": False, "error": str(e)}

        return {
            "status": "connected",
            "healthy": True,
            "host": self.config.host,
            "database": self.config.database,
        }

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("DB_POOL_CLOSED")
