"""
pg2lite/schema_builder.py
-------------------------
Generates and runs the SQLite ``CREATE TABLE`` statements.

All tables are created inside one transaction: if any statement fails the
whole schema phase is rolled back and the destination holds no tables.
Only the primary key implied by a sequence default is carried over;
foreign keys, unique constraints and other indexes are dropped unless
secondary indexes are explicitly requested.
"""
from __future__ import annotations

from typing import Callable, Iterable

from pg2lite.database import DatabaseError, DestinationDatabase, quote_identifier
from pg2lite.errors import SchemaError
from pg2lite.type_converter import map_type, translate_default
from logger import get_logger
from models.schema import ColumnDescriptor, IndexDescriptor, TableDescriptor

log = get_logger(__name__)


def render_column(column: ColumnDescriptor) -> str:
    """
    Render one column definition.

    Examples::

        "name" TEXT NOT NULL DEFAULT 'x'
        "id" INTEGER PRIMARY KEY AUTOINCREMENT
    """
    parts = [quote_identifier(column.name), map_type(column.data_type).value]
    translated = translate_default(column.default)
    if not column.nullable and not (translated and translated.replaces_not_null):
        parts.append("NOT NULL")
    if translated:
        parts.append(translated.clause)
    return " ".join(parts)


def generate_create_table_sql(table: TableDescriptor) -> str:
    """Return the ``CREATE TABLE`` statement for *table*, columns in source order."""
    body = ",\n\t".join(render_column(col) for col in table.columns)
    return f"CREATE TABLE {quote_identifier(table.name)} (\n\t{body}\n)"


def generate_create_index_sql(index: IndexDescriptor) -> str:
    unique = "UNIQUE " if index.unique else ""
    cols = ", ".join(quote_identifier(c) for c in index.columns)
    return (
        f"CREATE {unique}INDEX {quote_identifier(index.name)} "
        f"ON {quote_identifier(index.table)} ({cols})"
    )


class SchemaBuilder:
    """
    Creates destination tables (and optionally indexes) in one transaction.

    Args:
        dest:        Open :class:`DestinationDatabase`.
        progress_cb: Called with a human-readable line per created table.
    """

    def __init__(
        self,
        dest: DestinationDatabase,
        progress_cb: Callable[[str], None] | None = None,
    ) -> None:
        self._dest = dest
        self._progress_cb = progress_cb or (lambda msg: log.info("%s", msg))

    def build(
        self,
        tables: Iterable[TableDescriptor],
        indexes: Iterable[IndexDescriptor] = (),
    ) -> list[str]:
        """
        Create every table, then every index, all-or-nothing.

        The "Created table" progress lines are reported once the schema
        transaction has committed, not as each statement runs, so a build
        that rolls back reports nothing.  An index naming a column its table
        does not have is rejected here; SQLite would otherwise read the
        quoted name as a string literal and index a constant.

        Returns:
            Names of the created tables, in creation order.

        Raises:
            SchemaError: Naming the table (or index) whose statement failed.
                         Nothing created by this call survives.
        """
        tables = list(tables)
        columns_by_table = {t.name: set(t.column_names) for t in tables}
        created: list[str] = []
        lines: list[str] = []
        try:
            with self._dest.transaction():
                for table in tables:
                    statement = generate_create_table_sql(table)
                    log.debug("Creating table %s:\n%s", table.name, statement)
                    try:
                        self._dest.execute(statement)
                    except DatabaseError as exc:
                        raise SchemaError(
                            f"Failed to create table {table.name}: {exc}",
                            table=table.name,
                        ) from exc
                    created.append(table.name)
                    lines.append(f"Created table: {table.name}")

                for index in indexes:
                    missing = [
                        c for c in index.columns
                        if c not in columns_by_table.get(index.table, ())
                    ]
                    if missing:
                        raise SchemaError(
                            f"Failed to create index {index.name}: "
                            f"table {index.table} has no column(s) {', '.join(missing)}",
                            table=index.table,
                        )
                    statement = generate_create_index_sql(index)
                    log.debug("Creating index %s: %s", index.name, statement)
                    try:
                        self._dest.execute(statement)
                    except DatabaseError as exc:
                        raise SchemaError(
                            f"Failed to create index {index.name}: {exc}",
                            table=index.table,
                        ) from exc
        except DatabaseError as exc:
            # BEGIN or COMMIT itself failed
            raise SchemaError(f"Failed to commit schema changes: {exc}") from exc

        for line in lines:
            self._progress_cb(line)
        log.info("Schema created: %d table(s).", len(created))
        return created
