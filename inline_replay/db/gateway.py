"""Query Gateway for the inline replay harness.

Executes one parameterized statement per call against the store and
classifies the outcome:
- Command acknowledgement: no rows expected
- Tuple result: rows expected
- Anything else: a fatal protocol violation

Connections come from a bounded pool; the pool is the process-wide
synchronization point for store round-trips.
"""

from __future__ import annotations

import logging
import re
import time
from enum import Enum
from typing import TYPE_CHECKING, Any

import psycopg
from psycopg.pq import ExecStatus
from psycopg.types.numeric import Int4
from psycopg_pool import PoolTimeout

from inline_replay.db import queries
from inline_replay.db.connection import (
    DatabaseConnectionError,
    IntegrityViolationError,
    MigrationMissingError,
    ParameterCountError,
    ParameterFormatError,
    ProtocolViolationError,
    create_pool,
)
from inline_replay.db.queries import ColumnKind
from inline_replay.observability.metrics import track_query

if TYPE_CHECKING:
    from psycopg_pool import ConnectionPool

    from inline_replay.config import Settings

logger = logging.getLogger(__name__)

Row = tuple[Any, ...]

_PLACEHOLDER = re.compile(r"(?<!%)%([bt])(::boolean)?")


class ResultKind(str, Enum):
    """Outcome a statement is expected to produce."""

    COMMAND = "command"
    TUPLES = "tuples"


_EXPECTED_STATUS: dict[ResultKind, ExecStatus] = {
    ResultKind.COMMAND: ExecStatus.COMMAND_OK,
    ResultKind.TUPLES: ExecStatus.TUPLES_OK,
}


class Params:
    """Ordered statement parameters with their kinds.

    Integers are sent as 32-bit binary values, text as UTF-8 and booleans
    as the text tokens ``true``/``false``. The kinds are checked against
    the statement's placeholders before it is sent.
    """

    def __init__(self) -> None:
        self._values: list[Any] = []
        self._kinds: list[ColumnKind] = []

    def add_text(self, text: str) -> Params:
        self._values.append(text)
        self._kinds.append("text")
        return self

    def add_int(self, value: int) -> Params:
        self._values.append(Int4(value))
        self._kinds.append("int")
        return self

    def add_bool(self, flag: bool) -> Params:
        self._values.append("true" if flag else "false")
        self._kinds.append("bool")
        return self

    @property
    def values(self) -> tuple[Any, ...]:
        return tuple(self._values)

    @property
    def kinds(self) -> tuple[ColumnKind, ...]:
        return tuple(self._kinds)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Params({[int(v) if isinstance(v, Int4) else v for v in self._values]!r})"


def placeholder_kinds(query: str) -> tuple[ColumnKind, ...]:
    """Parameter kinds a statement expects, in placeholder order.

    ``%b`` is an integer, ``%t`` text and ``%t::boolean`` a boolean token.
    """
    kinds: list[ColumnKind] = []
    for fmt, cast in _PLACEHOLDER.findall(query):
        if fmt == "b":
            kinds.append("int")
        elif cast:
            kinds.append("bool")
        else:
            kinds.append("text")
    return tuple(kinds)


def count_placeholders(query: str) -> int:
    """Count psycopg placeholders in a statement."""
    return len(_PLACEHOLDER.findall(query))


class QueryGateway:
    """Executes parameterized statements against the store.

    Every store round-trip of the harness goes through ``_run``; callers
    only ever see rows, identifiers or a raised ``DatabaseError``.

    Example:
        gateway = QueryGateway.connect(settings)
        gateway.verify_migration("project_totus", "0011_add_c2_compile_is_enabled")
        params = Params().add_text("Foo")
        gateway.execute_command(queries.PACKAGE_BASE.insert, params)
        base_id = gateway.fetch_id(queries.PACKAGE_BASE.select, params)
    """

    def __init__(self, pool: ConnectionPool | None) -> None:
        self._pool = pool

    @classmethod
    def connect(cls, settings: Settings | None = None) -> QueryGateway:
        """Open a pool and wrap it in a gateway.

        Raises:
            DatabaseConnectionError: If the store cannot be reached.
        """
        return cls(create_pool(settings))

    @property
    def pool(self) -> ConnectionPool | None:
        return self._pool

    def close(self) -> None:
        """Close the underlying pool."""
        if self._pool is not None:
            self._pool.close()
            logger.info("Database connection pool closed")

    # =========================================================================
    # Execution
    # =========================================================================

    def execute_command(self, query: str, params: Params) -> None:
        """Execute a statement that must be acknowledged without rows."""
        self._execute(query, params, ResultKind.COMMAND)

    def execute_tuples(self, query: str, params: Params) -> list[Row]:
        """Execute a statement that must return a tuple result."""
        return self._execute(query, params, ResultKind.TUPLES)

    def fetch_id(self, query: str, params: Params) -> int:
        """Execute a lookup that must return exactly one identifier.

        Raises:
            IntegrityViolationError: If zero or several rows are returned.
        """
        rows = self.execute_tuples(query, params)
        if len(rows) != 1:
            logger.error(
                f"Database returned {len(rows)} rows where exactly one id was expected",
                extra={"query": query, "params": repr(params)},
            )
            raise IntegrityViolationError(
                f"Expected exactly one id, got {len(rows)} rows", len(rows)
            )
        return int(rows[0][0])

    def verify_migration(self, app: str, name: str) -> None:
        """Check the schema-compatibility marker.

        Raises:
            MigrationMissingError: If the named migration has not been applied.
        """
        params = Params().add_text(app).add_text(name)
        rows = self.execute_tuples(queries.SELECT_MIGRATION, params)
        if len(rows) != 1:
            logger.critical(
                f"Required migration {app}.{name} is not applied",
                extra={"app": app, "migration": name},
            )
            raise MigrationMissingError(app, name)
        logger.debug(f"Migration marker {app}.{name} present")

    def _execute(self, query: str, params: Params, kind: ResultKind) -> Any:
        expected = count_placeholders(query)
        if expected != len(params):
            logger.error(
                "Database parameters mismatched",
                extra={"query": query, "expected": expected, "actual": len(params)},
            )
            raise ParameterCountError(expected, len(params))

        wanted_kinds = placeholder_kinds(query)
        for position, (wanted, given) in enumerate(zip(wanted_kinds, params.kinds)):
            if wanted != given:
                logger.error(
                    f"Database parameter {position} is {given}, statement expects {wanted}",
                    extra={"query": query, "position": position},
                )
                raise ParameterFormatError(position, wanted, given)

        start = time.perf_counter()
        success = False
        try:
            status, rows = self._run(query, params, kind)
            if status != _EXPECTED_STATUS[kind]:
                logger.error(
                    f"Database returned status {status} for a {kind.value} statement",
                    extra={"query": query},
                )
                raise ProtocolViolationError(
                    f"Expected {_EXPECTED_STATUS[kind].name}, got {getattr(status, 'name', status)}"
                )
            success = True
        finally:
            track_query(kind.value, time.perf_counter() - start, success)

        return rows if kind is ResultKind.TUPLES else None

    def _run(
        self,
        query: str,
        params: Params,
        kind: ResultKind,
    ) -> tuple[ExecStatus, list[Row]]:
        """Perform one round-trip and return the result status and rows."""
        if self._pool is None:
            raise DatabaseConnectionError("Gateway has no connection pool")

        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params.values)
                    result = cur.pgresult
                    status = ExecStatus(result.status) if result is not None else None
                    rows = cur.fetchall() if status == ExecStatus.TUPLES_OK else []
        except PoolTimeout as e:
            logger.error(f"Timed out acquiring a database connection: {e}")
            raise DatabaseConnectionError(f"Failed to acquire database connection: {e}") from e
        except psycopg.OperationalError as e:
            logger.error(f"Database connection error: {e}")
            raise DatabaseConnectionError(f"Database connection failed: {e}") from e
        except psycopg.Error as e:
            logger.error(f"Database did not execute statement: {e}", extra={"query": query})
            raise ProtocolViolationError(f"Database did not execute statement: {e}") from e

        return status, rows
