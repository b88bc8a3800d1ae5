"""
pg2lite/type_converter.py
-------------------------
PostgreSQL → SQLite type, default-value and value translation.

Three pure functions:
    map_type()          source type name → one SQLite storage class.
    translate_default() source default expression → column clause.
    coerce_value()      psycopg2 result value → sqlite3-bindable value.

Design Decisions:
    * The type table is data (sets per storage class), not an if/else tree.
      Unknown types map to TEXT; the mapping never raises.
    * Default translation is an ordered table of (matcher, rewriter) rules,
      first match wins.  New dialect quirks are handled by adding a rule.
      Expressions are matched textually; nothing here parses SQL.
    * ``coerce_value`` is the single place where values change shape on
      their way into SQLite.  Its bytes handling is a heuristic: a byte
      string without NUL bytes that decodes as UTF-8 is stored as text,
      anything else as a blob.  That is lossy by nature.
"""
from __future__ import annotations

import datetime
import json
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from psycopg2.extras import Range


class StorageClass(str, Enum):
    """SQLite column types emitted by the schema builder."""
    INTEGER = "INTEGER"
    REAL = "REAL"
    BOOLEAN = "BOOLEAN"
    DATETIME = "DATETIME"
    DATE = "DATE"
    TEXT = "TEXT"
    BLOB = "BLOB"


# ---------------------------------------------------------------------------
# Type category sets
# ---------------------------------------------------------------------------
_INTEGER_TYPES = frozenset(
    {"integer", "smallint", "bigint", "serial", "bigserial", "smallserial", "int", "int2", "int4", "int8"}
)
_REAL_TYPES = frozenset(
    {"real", "double precision", "numeric", "decimal", "money", "float4", "float8"}
)
_BOOLEAN_TYPES = frozenset({"boolean", "bool"})
_DATETIME_TYPES = frozenset(
    {"timestamp", "timestamp without time zone", "timestamp with time zone", "timestamptz"}
)
_DATE_TYPES = frozenset({"date"})
_BLOB_TYPES = frozenset({"bytea"})

# Everything else, including time, json/jsonb, uuid, inet/cidr and the
# geometric types, falls through to TEXT.
_TYPE_MAP = (
    (StorageClass.INTEGER, _INTEGER_TYPES),
    (StorageClass.REAL, _REAL_TYPES),
    (StorageClass.BOOLEAN, _BOOLEAN_TYPES),
    (StorageClass.DATETIME, _DATETIME_TYPES),
    (StorageClass.DATE, _DATE_TYPES),
    (StorageClass.BLOB, _BLOB_TYPES),
)


def map_type(source_type: str) -> StorageClass:
    """
    Map a PostgreSQL ``information_schema`` type name to a SQLite type.

    Examples::

        map_type("bigint")                    →  StorageClass.INTEGER
        map_type("TIMESTAMP WITH TIME ZONE")  →  StorageClass.DATETIME
        map_type("tsvector")                  →  StorageClass.TEXT
    """
    key = (source_type or "").strip().lower()
    for storage_class, names in _TYPE_MAP:
        if key in names:
            return storage_class
    return StorageClass.TEXT


# ---------------------------------------------------------------------------
# Default expressions
# ---------------------------------------------------------------------------

AUTOINCREMENT_CLAUSE = "PRIMARY KEY AUTOINCREMENT"
_CURRENT_TIMESTAMP_SPELLINGS = frozenset({"CURRENT_TIMESTAMP", "now()"})


@dataclass(frozen=True)
class DefaultRule:
    """One entry of the default-expression rule table."""
    name: str
    matches: Callable[[str], bool]
    rewrite: Callable[[str], str]


@dataclass(frozen=True)
class ColumnClause:
    """
    Result of translating a default expression.

    ``replaces_not_null`` is set when the clause makes the column the
    primary key, so no separate NOT NULL is rendered.
    """
    clause: str
    replaces_not_null: bool = False


DEFAULT_RULES: tuple[DefaultRule, ...] = (
    DefaultRule(
        name="sequence",
        matches=lambda expr: expr.startswith("nextval"),
        rewrite=lambda expr: AUTOINCREMENT_CLAUSE,
    ),
    DefaultRule(
        name="current_timestamp",
        matches=lambda expr: expr in _CURRENT_TIMESTAMP_SPELLINGS,
        rewrite=lambda expr: "DEFAULT CURRENT_TIMESTAMP",
    ),
    DefaultRule(
        name="boolean",
        matches=lambda expr: expr in ("true", "false"),
        rewrite=lambda expr: "DEFAULT 1" if expr == "true" else "DEFAULT 0",
    ),
    DefaultRule(
        name="type_cast",
        matches=lambda expr: "::" in expr,
        rewrite=lambda expr: f"DEFAULT {expr.split('::', 1)[0]}",
    ),
    DefaultRule(
        name="verbatim",
        matches=lambda expr: True,
        rewrite=lambda expr: f"DEFAULT {expr}",
    ),
)


def translate_default(
    expression: str | None,
    rules: tuple[DefaultRule, ...] = DEFAULT_RULES,
) -> ColumnClause | None:
    """
    Translate a PostgreSQL default expression into an SQLite column clause.

    Returns None when the column has no default.  No validation is done;
    an expression SQLite cannot parse surfaces when the CREATE runs.

    Examples::

        translate_default("nextval('users_id_seq'::regclass)")
            →  ColumnClause("PRIMARY KEY AUTOINCREMENT", replaces_not_null=True)
        translate_default("'active'::character varying")
            →  ColumnClause("DEFAULT 'active'")
    """
    if expression is None:
        return None
    for rule in rules:
        if rule.matches(expression):
            clause = rule.rewrite(expression)
            return ColumnClause(
                clause=clause,
                replaces_not_null=clause == AUTOINCREMENT_CLAUSE,
            )
    return None


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

def _bytes_to_sqlite(raw: bytes) -> str | bytes:
    if b"\x00" in raw:
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw


def _range_to_text(value: Range) -> str:
    if value.isempty:
        return "empty"
    lower = "" if value.lower is None else coerce_value(value.lower)
    upper = "" if value.upper is None else coerce_value(value.upper)
    return f"{value.bounds[0]}{lower},{upper}{value.bounds[1]}"


def coerce_value(value: Any) -> Any:
    """
    Convert one psycopg2 result value into something sqlite3 can bind.

    * None stays None; booleans become 1/0.
    * bytes/memoryview: text if no NUL byte and valid UTF-8, else blob.
    * Decimal → float; dict/list (json, jsonb, arrays) → JSON text.
    * date/time/datetime → ISO-8601 text; timedelta → text.
    * psycopg2 ranges → range literal text (``[1,5)``, ``empty``).
    * int, float and str pass through; anything else becomes ``str(value)``.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, memoryview):
        return _bytes_to_sqlite(value.tobytes())
    if isinstance(value, (bytes, bytearray)):
        return _bytes_to_sqlite(bytes(value))
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime.datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return str(value)
    if isinstance(value, Range):
        return _range_to_text(value)
    if isinstance(value, (int, float, str)):
        return value
    return str(value)


def coerce_row(row: tuple) -> tuple:
    return tuple(coerce_value(v) for v in row)
