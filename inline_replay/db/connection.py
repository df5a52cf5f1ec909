"""Database Connection Management for the inline replay harness.

Provides PostgreSQL connection utilities using psycopg v3:
- Bounded connection pooling sized to compiler thread concurrency
- Pool lifecycle management
- The exception taxonomy shared by every store-facing component

Every error raised from this package is fatal to the caller. Nothing
here retries, and nothing catches a store error and continues.
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg
from psycopg_pool import ConnectionPool

from inline_replay.config import Settings, get_settings

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Base exception for store operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the store cannot be reached."""

    pass


class ProtocolViolationError(DatabaseError):
    """Raised when a statement returns an unexpected result status."""

    pass


class IntegrityViolationError(ProtocolViolationError):
    """Raised when an identity lookup returns zero or several rows.

    Signals either a concurrent race between insert and select or a
    corrupt dataset. Never retried and never merged.
    """

    def __init__(self, message: str, row_count: int) -> None:
        super().__init__(message)
        self.row_count = row_count


class InlineSetNotFoundError(IntegrityViolationError):
    """Raised when a replayed inline set has not been provisioned."""

    def __init__(self, experiment_id: int, name: str, row_count: int = 0) -> None:
        super().__init__(
            f"Inline set {name!r} does not exist for experiment {experiment_id}",
            row_count,
        )
        self.experiment_id = experiment_id
        self.name = name


class MigrationMissingError(ProtocolViolationError):
    """Raised when the required schema migration marker is absent."""

    def __init__(self, app: str, name: str) -> None:
        super().__init__(f"Apply the latest database migration: {app}.{name} is missing")
        self.app = app
        self.name = name


class ParameterCountError(DatabaseError):
    """Raised when a statement's placeholders do not match its parameters."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Statement expects {expected} parameters but {actual} were supplied"
        )
        self.expected = expected
        self.actual = actual


class ParameterFormatError(DatabaseError):
    """Raised when a parameter's kind does not match its placeholder."""

    def __init__(self, position: int, expected: str, actual: str) -> None:
        super().__init__(
            f"Statement parameter {position} expects {expected} but {actual} was supplied"
        )
        self.position = position
        self.expected = expected
        self.actual = actual


def create_pool(settings: Settings | None = None) -> ConnectionPool:
    """Create and open a bounded connection pool.

    The pool replaces a single lock-guarded connection: its maximum size
    is the explicit backpressure point for concurrent compiler threads.
    With ``DB_POOL_MAX_SIZE=1`` every round-trip is serialized.

    Args:
        settings: Settings to read pool bounds from. Defaults to the cached
                  process settings.

    Returns:
        ConnectionPool: An opened pool of autocommit connections.

    Raises:
        DatabaseConnectionError: If the pool cannot reach the store.
    """
    settings = settings or get_settings()
    pool_min, pool_max = settings.pool_bounds

    conn_kwargs: dict[str, Any] = {
        "autocommit": True,
    }

    pool = ConnectionPool(
        conninfo=settings.DATABASE_URL,
        min_size=pool_min,
        max_size=pool_max,
        timeout=settings.DB_POOL_TIMEOUT,
        kwargs=conn_kwargs,
        open=False,
    )

    try:
        pool.open(wait=True, timeout=settings.DB_POOL_TIMEOUT)
    except psycopg.OperationalError as e:
        pool.close()
        logger.error(f"Failed to create connection pool: {e}")
        raise DatabaseConnectionError(f"Can not connect to database: {e}") from e
    except Exception as e:
        # psycopg_pool reports an unreachable store as PoolTimeout
        pool.close()
        logger.error(f"Unexpected error creating connection pool: {e}")
        raise DatabaseConnectionError(f"Can not connect to database: {e}") from e

    logger.info(
        "Database connection pool created",
        extra={"min_size": pool_min, "max_size": pool_max},
    )
    return pool


def get_pool_stats(pool: ConnectionPool | None) -> dict[str, Any]:
    """Get connection pool statistics.

    Returns:
        dict: Pool statistics including size, idle, and waiting requests.
    """
    if pool is None:
        return {"status": "not_initialized"}

    stats = pool.get_stats()
    return {
        "status": "active" if not pool.closed else "closed",
        "min_size": pool.min_size,
        "max_size": pool.max_size,
        "size": stats.get("pool_size", 0),
        "available": stats.get("pool_available", 0),
        "requests_waiting": stats.get("requests_waiting", 0),
    }
