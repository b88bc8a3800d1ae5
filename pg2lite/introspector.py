"""
pg2lite/introspector.py
-----------------------
Reads table and column metadata from the PostgreSQL catalog.

Only base tables of the ``public`` schema are considered.  Tables come back
in catalog name order and columns in ordinal order; both the schema builder
and the data copier rely on that order.  Any catalog failure aborts the
whole introspection: callers never see a partial schema.
"""
from __future__ import annotations

from pg2lite.database import DatabaseError, SourceDatabase
from pg2lite.errors import IntrospectionError
from logger import get_logger
from models.schema import ColumnDescriptor, IndexDescriptor, TableDescriptor

log = get_logger(__name__)

SOURCE_SCHEMA = "public"

_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = %s
      AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = %s
      AND table_name = %s
    ORDER BY ordinal_position
"""

_INDEXES_SQL = """
    SELECT
        i.relname AS index_name,
        array_agg(a.attname::text ORDER BY array_position(ix.indkey::int2[], a.attnum))
            AS column_names,
        ix.indisunique AS is_unique
    FROM pg_class t
    JOIN pg_index ix ON t.oid = ix.indrelid
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
    WHERE t.relkind = 'r'
      AND n.nspname = %s
      AND t.relname = %s
    GROUP BY i.relname, ix.indisunique
    ORDER BY i.relname
"""


class SourceIntrospector:
    """Catalog reader bound to an open :class:`SourceDatabase`."""

    def __init__(self, source: SourceDatabase, schema: str = SOURCE_SCHEMA) -> None:
        self._source = source
        self._schema = schema

    def get_tables(self) -> list[TableDescriptor]:
        """
        Return every base table with its columns.

        Raises:
            IntrospectionError: If any catalog query fails.
        """
        try:
            names = [row[0] for row in self._source.query(_TABLES_SQL, (self._schema,))]
        except DatabaseError as exc:
            raise IntrospectionError(f"Failed to list tables: {exc}") from exc

        tables = [
            TableDescriptor(name=name, columns=tuple(self.get_columns(name)))
            for name in names
        ]
        log.info(
            "Introspected %d table(s), %d column(s) total.",
            len(tables),
            sum(len(t.columns) for t in tables),
        )
        return tables

    def get_columns(self, table_name: str) -> list[ColumnDescriptor]:
        try:
            rows = self._source.query(_COLUMNS_SQL, (self._schema, table_name))
        except DatabaseError as exc:
            raise IntrospectionError(
                f"Failed to read columns of table {table_name}: {exc}",
                table=table_name,
            ) from exc
        return [
            ColumnDescriptor(
                name=name,
                data_type=data_type,
                nullable=is_nullable == "YES",
                default=default,
            )
            for name, data_type, is_nullable, default in rows
        ]

    def list_indexes(self, table_name: str) -> list[IndexDescriptor]:
        """
        Return secondary indexes of *table_name*, primary-key indexes excluded.

        Raises:
            IntrospectionError: If the catalog query fails.
        """
        try:
            rows = self._source.query(_INDEXES_SQL, (self._schema, table_name))
        except DatabaseError as exc:
            raise IntrospectionError(
                f"Failed to read indexes of table {table_name}: {exc}",
                table=table_name,
            ) from exc
        indexes = []
        for index_name, column_names, is_unique in rows:
            if index_name.endswith("_pkey"):
                continue
            indexes.append(
                IndexDescriptor(
                    name=index_name,
                    table=table_name,
                    columns=tuple(column_names),
                    unique=bool(is_unique),
                )
            )
        return indexes
