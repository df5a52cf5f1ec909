"""SQL statements for the latest project_totus schema.

Identity entities are described once as ``EntityStatements`` bundles and
their get-or-create statements are derived from that description, so the
insert, select and upsert texts of one entity can never disagree on the
natural key.

Placeholders use psycopg's explicit formats: ``%b`` for 32-bit integers
sent in binary and ``%t`` for UTF-8 text. Booleans travel as the text
tokens ``true``/``false`` and are cast by the server (``%t::boolean``).
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Literal

ColumnKind = Literal["int", "text", "bool"]

_PLACEHOLDERS: dict[str, str] = {
    "int": "%b",
    "text": "%t",
    "bool": "%t::boolean",
}


@dataclass(frozen=True)
class Column:
    """A statement column and the wire format of its parameter."""

    name: str
    kind: ColumnKind

    @property
    def placeholder(self) -> str:
        return _PLACEHOLDERS[self.kind]


@dataclass(frozen=True)
class EntityStatements:
    """Get-or-create statements for one idempotently creatable entity.

    Attributes:
        entity: Entity name used in logs and metrics.
        table: Table holding the entity.
        key: Natural key columns, in parameter order.
        extra: Non-key columns recorded on first insert only.
    """

    entity: str
    table: str
    key: tuple[Column, ...]
    extra: tuple[Column, ...] = ()

    @property
    def columns(self) -> tuple[Column, ...]:
        return self.key + self.extra

    @cached_property
    def insert(self) -> str:
        """Insert that silently no-ops on a natural key conflict."""
        names = ", ".join(c.name for c in self.columns)
        values = ", ".join(c.placeholder for c in self.columns)
        return (
            f"INSERT INTO {self.table} ({names}) VALUES ({values})"
            " ON CONFLICT DO NOTHING"
        )

    @cached_property
    def select(self) -> str:
        """Select of the identifier filtered by the natural key."""
        where = " AND ".join(f"{c.name} = {c.placeholder}" for c in self.key)
        return f"SELECT id FROM {self.table} WHERE {where}"

    @cached_property
    def upsert(self) -> str:
        """Single statement returning the new or the existing identifier.

        The no-op update on conflict makes RETURNING yield the existing
        row, so insert and lookup happen under one row lock.
        """
        names = ", ".join(c.name for c in self.columns)
        values = ", ".join(c.placeholder for c in self.columns)
        conflict = ", ".join(c.name for c in self.key)
        touch = self.key[-1].name
        return (
            f"INSERT INTO {self.table} ({names}) VALUES ({values})"
            f" ON CONFLICT ({conflict}) DO UPDATE SET {touch} = EXCLUDED.{touch}"
            " RETURNING id"
        )


# =============================================================================
# Identity Entities
# =============================================================================


PACKAGE_BASE = EntityStatements(
    entity="package_base",
    table="project_totus_package_base",
    key=(Column("name", "text"),),
)

PACKAGE = EntityStatements(
    entity="package",
    table="project_totus_package",
    key=(Column("base_id", "int"), Column("version", "text")),
)

EXPERIMENT = EntityStatements(
    entity="experiment",
    table="project_totus_experiment",
    key=(Column("package_id", "int"), Column("name", "text")),
)

KLASS = EntityStatements(
    entity="klass",
    table="project_totus_klass",
    key=(Column("package_id", "int"), Column("name", "text")),
)

METHOD = EntityStatements(
    entity="method",
    table="project_totus_method",
    key=(
        Column("klass_id", "int"),
        Column("name", "text"),
        Column("descriptor", "text"),
    ),
    extra=(Column("is_instance_method", "bool"), Column("size", "int")),
)

CALL_SITE = EntityStatements(
    entity="call_site",
    table="project_totus_call_site",
    key=(Column("caller_id", "int"), Column("bci", "int")),
)

METHOD_CALL = EntityStatements(
    entity="method_call",
    table="project_totus_method_call",
    key=(Column("call_site_id", "int"), Column("callee_id", "int")),
)

INLINE_METHOD_CALL = EntityStatements(
    entity="inline_method_call",
    table="project_totus_inline_method_call",
    key=(Column("experiment_id", "int"), Column("method_call_id", "int")),
)

ENTITIES: tuple[EntityStatements, ...] = (
    PACKAGE_BASE,
    PACKAGE,
    EXPERIMENT,
    KLASS,
    METHOD,
    CALL_SITE,
    METHOD_CALL,
    INLINE_METHOD_CALL,
)


# =============================================================================
# Schema Gate
# =============================================================================


SELECT_MIGRATION = "SELECT id FROM django_migrations WHERE app = %t AND name = %t"


# =============================================================================
# Decisions and Facts
# =============================================================================


INSERT_INLINE_DECISION = (
    "INSERT INTO project_totus_inline_decision"
    " (inline_method_call_id, require_inline, sequence)"
    " SELECT %b, %t::boolean, COALESCE(MAX(sequence), 0) + 1"
    " FROM project_totus_inline_decision"
    " WHERE inline_method_call_id = %b"
    " RETURNING sequence"
)

SELECT_INLINE_DECISIONS = (
    "SELECT id, inline_method_call_id, require_inline, sequence"
    " FROM project_totus_inline_decision"
    " WHERE inline_method_call_id = %b"
    " ORDER BY id ASC"
)

INSERT_C2_COMPILE_METHOD = (
    "INSERT INTO project_totus_c2_compile_method"
    " (experiment_id, method_id, bci, is_enabled) VALUES (%b, %b, %b, %t::boolean)"
    " ON CONFLICT DO NOTHING"
)


# =============================================================================
# Replay Sets
# =============================================================================


SELECT_INLINE_SET_ID = (
    "SELECT id FROM project_totus_inline_set WHERE experiment_id = %b AND name = %t"
)

SELECT_INLINE_SET_MEMBERS = (
    "SELECT caller_klass.name, caller.name, caller.descriptor, site.bci,"
    " callee_klass.name, callee.name, callee.descriptor"
    " FROM project_totus_inline_method_call imc"
    " INNER JOIN project_totus_inline_set_method_call isc"
    "   ON imc.id = isc.inline_method_call_id"
    " INNER JOIN project_totus_method_call mc ON imc.method_call_id = mc.id"
    " INNER JOIN project_totus_call_site site ON mc.call_site_id = site.id"
    " INNER JOIN project_totus_method caller ON site.caller_id = caller.id"
    " INNER JOIN project_totus_klass caller_klass ON caller.klass_id = caller_klass.id"
    " INNER JOIN project_totus_method callee ON mc.callee_id = callee.id"
    " INNER JOIN project_totus_klass callee_klass ON callee.klass_id = callee_klass.id"
    " WHERE isc.inline_set_id = %b"
    " ORDER BY caller.name ASC, site.bci ASC, callee.name ASC"
)

SELECT_EARLY_COMPILE_METHODS = (
    "SELECT k.name, m.name, m.descriptor, ccm.bci"
    " FROM project_totus_c2_compile_method ccm"
    " INNER JOIN project_totus_method m ON ccm.method_id = m.id"
    " INNER JOIN project_totus_klass k ON m.klass_id = k.id"
    " WHERE ccm.experiment_id = %b AND ccm.is_enabled = true"
    " ORDER BY k.name ASC, m.name ASC, ccm.bci ASC"
)
