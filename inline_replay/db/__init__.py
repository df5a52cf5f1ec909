"""Inline Replay Database Module.

Provides PostgreSQL access for the harness.

Core Components:
- Bounded connection pooling with psycopg v3
- Parameterized statement execution with result-status checks
- Schema-compatibility gate
- Exception taxonomy for fatal store errors

Example:
    ```python
    from inline_replay.db import Params, QueryGateway, queries

    gateway = QueryGateway.connect()
    gateway.verify_migration("project_totus", "0011_add_c2_compile_is_enabled")
    base_id = gateway.fetch_id(
        queries.PACKAGE_BASE.select, Params().add_text("Foo")
    )
    ```
"""

from inline_replay.db import queries
from inline_replay.db.connection import (
    # Connection management
    create_pool,
    get_pool_stats,
    # Exceptions
    DatabaseError,
    DatabaseConnectionError,
    ProtocolViolationError,
    IntegrityViolationError,
    InlineSetNotFoundError,
    MigrationMissingError,
    ParameterCountError,
    ParameterFormatError,
)
from inline_replay.db.gateway import (
    Params,
    QueryGateway,
    ResultKind,
    Row,
    count_placeholders,
    placeholder_kinds,
)


__all__ = [
    "queries",
    # Connection management
    "create_pool",
    "get_pool_stats",
    # Execution
    "Params",
    "QueryGateway",
    "ResultKind",
    "Row",
    "count_placeholders",
    "placeholder_kinds",
    # Exceptions
    "DatabaseError",
    "DatabaseConnectionError",
    "ProtocolViolationError",
    "IntegrityViolationError",
    "InlineSetNotFoundError",
    "MigrationMissingError",
    "ParameterCountError",
    "ParameterFormatError",
]
