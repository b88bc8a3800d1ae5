"""
pg2lite/copier.py
-----------------
Streams rows from PostgreSQL tables into the SQLite destination.

Design Decisions:
    * One table at a time, in introspection order; no parallelism.
    * Rows are fetched from a server-side cursor ``batch_size`` at a time and
      each batch is inserted and committed in its own transaction.  2500
      rows therefore mean three commits: 1000, 1000 and 500.
    * The INSERT column list comes from the scan's result description, not
      from the introspected columns, and every name is quoted.
    * A failing batch is rolled back and the error propagates.  Batches and
      tables committed before it stay; no retry, no resume point.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from pg2lite.database import (
    DatabaseError,
    DestinationDatabase,
    SourceDatabase,
    quote_identifier,
)
from pg2lite.errors import DataCopyError
from pg2lite.type_converter import coerce_row
from logger import get_logger
from models.schema import TableDescriptor

log = get_logger(__name__)

DEFAULT_BATCH_SIZE = 1000


@dataclass
class CopyResult:
    """Outcome of copying one table."""
    table_name: str
    rows_copied: int = 0
    batches: int = 0
    elapsed_seconds: float = 0.0


@dataclass
class CopySummary:
    results: list[CopyResult] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return sum(r.rows_copied for r in self.results)


def build_insert_sql(table_name: str, columns: list[str]) -> str:
    cols = ", ".join(quote_identifier(c) for c in columns)
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {quote_identifier(table_name)} ({cols}) VALUES ({placeholders})"


class DataCopier:
    """
    Batched, transactional table copier.

    Args:
        source:      Connected :class:`SourceDatabase`.
        dest:        Open :class:`DestinationDatabase` with the schema built.
        batch_size:  Rows per destination transaction.
        progress_cb: Called with a human-readable line per copied table.
    """

    def __init__(
        self,
        source: SourceDatabase,
        dest: DestinationDatabase,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_cb: Callable[[str], None] | None = None,
    ) -> None:
        self._source = source
        self._dest = dest
        self._batch_size = batch_size
        self._progress_cb = progress_cb or (lambda msg: log.info("%s", msg))

    def copy_all(self, tables: Iterable[TableDescriptor]) -> CopySummary:
        """
        Copy every table in order, stopping at the first failure.

        Raises:
            DataCopyError: For the first table that fails; later tables are
                           not attempted.
        """
        summary = CopySummary()
        for table in tables:
            summary.results.append(self.copy_table(table))
            self._progress_cb(f"Migrated data for table: {table.name}")
        return summary

    def copy_table(self, table: TableDescriptor) -> CopyResult:
        start = time.monotonic()
        result = CopyResult(table_name=table.name)
        try:
            with self._source.scan_table(table.name, self._batch_size) as scan:
                insert_sql: str | None = None
                for rows in scan.batches():
                    if insert_sql is None:
                        insert_sql = build_insert_sql(table.name, scan.columns)
                        log.debug("Insert statement for %s: %s", table.name, insert_sql)
                    with self._dest.transaction():
                        self._dest.executemany(insert_sql, (coerce_row(r) for r in rows))
                    result.rows_copied += len(rows)
                    result.batches += 1
                    log.debug(
                        "Batch %d committed for %s: %d rows (%d total).",
                        result.batches, table.name, len(rows), result.rows_copied,
                    )
        except DatabaseError as exc:
            log.error("Data copy failed for table %s: %s", table.name, exc)
            raise DataCopyError(
                f"Failed to migrate data for table {table.name}: {exc}",
                table=table.name,
            ) from exc

        result.elapsed_seconds = time.monotonic() - start
        log.info(
            "Copied %d row(s) into %s in %d batch(es), %.2fs",
            result.rows_copied, table.name, result.batches, result.elapsed_seconds,
        )
        return result
