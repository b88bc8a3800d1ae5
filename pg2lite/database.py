"""
pg2lite/database.py
-------------------
Connection wrappers for the PostgreSQL source and the SQLite destination.

Design Decisions:
    * Both wrappers are context managers so callers can use ``with`` and be
      guaranteed the handle is closed on exit.
    * The source session is read-only.  Table scans use a psycopg2 named
      (server-side) cursor so large tables are streamed in fixed-size
      fetches instead of being loaded whole.
    * The destination runs in autocommit mode and transactions are opened
      with an explicit ``BEGIN``; sqlite3's implicit transactions would not
      cover ``CREATE TABLE``.
    * Identifiers are quoted, never interpolated raw; data values always go
      through driver parameters.
    * Driver exceptions are re-raised as :class:`DatabaseError`; the phase
      that called the wrapper decides which migration error it becomes.
"""
from __future__ import annotations

import itertools
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Iterable, Iterator, Sequence

import psycopg2
from psycopg2 import sql

from logger import get_logger

log = get_logger(__name__)

_scan_ids = itertools.count(1)


class DatabaseError(Exception):
    """Raised for database-level failures reported by this module."""


class ConnectionLostError(DatabaseError):
    """Raised when a handle is used before connect() or after close()."""


def quote_identifier(name: str) -> str:
    """Double-quote an SQLite identifier, doubling embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------

class TableScan:
    """
    An open full-table scan on a named cursor.

    ``columns`` is only known after the first fetch; psycopg2 does not
    describe a server-side cursor until rows are requested from it.
    """

    def __init__(self, cursor: Any, table_name: str, batch_size: int) -> None:
        self._cursor = cursor
        self._table_name = table_name
        self._batch_size = batch_size

    @property
    def columns(self) -> list[str]:
        description = self._cursor.description or ()
        return [col[0] for col in description]

    def batches(self) -> Iterator[list[tuple]]:
        """Yield non-empty lists of at most ``batch_size`` rows."""
        while True:
            try:
                rows = self._cursor.fetchmany(self._batch_size)
            except psycopg2.Error as exc:
                raise DatabaseError(
                    f"Row scan of '{self._table_name}' failed: {exc}"
                ) from exc
            if not rows:
                return
            yield rows


class SourceDatabase:
    """
    PostgreSQL connection wrapper.

    Example::

        with SourceDatabase("host=localhost dbname=shop user=app") as src:
            rows = src.query("SELECT 1")
    """

    def __init__(self, dsn: str, label: str = "") -> None:
        self._dsn = dsn
        self._label = label or "<source>"
        self._conn: Any = None

    def __enter__(self) -> "SourceDatabase":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """
        Open the connection and validate it with a round trip.

        Raises:
            DatabaseError: If the server is unreachable or rejects the login.
        """
        log.info("Connecting to PostgreSQL at %s", self._label)
        try:
            self._conn = psycopg2.connect(self._dsn)
            self._conn.set_session(readonly=True)
            with self._conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
            self._conn.rollback()
        except psycopg2.Error as exc:
            self.close()
            raise DatabaseError(
                f"Could not connect to PostgreSQL at {self._label}: {exc}"
            ) from exc
        log.info("Connected to PostgreSQL successfully.")

    def close(self) -> None:
        """Close the connection, logging any cleanup errors."""
        if self._conn is None:
            return
        try:
            if not self._conn.closed:
                self._conn.close()
                log.info("PostgreSQL connection closed.")
        except psycopg2.Error as exc:
            log.warning("Error closing PostgreSQL connection: %s", exc)
        self._conn = None

    @property
    def is_connected(self) -> bool:
        return bool(self._conn is not None and not self._conn.closed)

    def _ensure_connected(self) -> None:
        if not self.is_connected:
            raise ConnectionLostError(
                "Source connection is not open. Call connect() first."
            )

    def _safe_rollback(self) -> None:
        try:
            if self.is_connected:
                self._conn.rollback()
        except psycopg2.Error as exc:
            log.warning("Rollback on source failed: %s", exc)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, statement: Any, params: Sequence[Any] | None = None) -> list[tuple]:
        """
        Run a read-only statement and return all rows.

        Raises:
            ConnectionLostError: If not connected.
            DatabaseError: On PostgreSQL execution errors.
        """
        self._ensure_connected()
        try:
            with self._conn.cursor() as cur:
                cur.execute(statement, params)
                rows = cur.fetchall()
        except psycopg2.Error as exc:
            self._safe_rollback()
            raise DatabaseError(str(exc).strip()) from exc
        self._safe_rollback()
        return rows

    @contextmanager
    def scan_table(self, table_name: str, batch_size: int) -> Generator[TableScan, None, None]:
        """
        Open an unfiltered ``SELECT *`` over *table_name*.

        The cursor is closed and the read transaction ended on exit.
        """
        self._ensure_connected()
        cursor = self._conn.cursor(name=f"pg2lite_scan_{next(_scan_ids)}")
        cursor.itersize = batch_size
        try:
            try:
                cursor.execute(
                    sql.SQL("SELECT * FROM {}").format(sql.Identifier(table_name))
                )
            except psycopg2.Error as exc:
                raise DatabaseError(
                    f"Could not scan table '{table_name}': {exc}"
                ) from exc
            yield TableScan(cursor, table_name, batch_size)
        finally:
            try:
                cursor.close()
            except psycopg2.Error as exc:
                log.debug("Closing scan cursor for '%s' failed: %s", table_name, exc)
            self._safe_rollback()


# ---------------------------------------------------------------------------
# Destination
# ---------------------------------------------------------------------------

class DestinationDatabase:
    """
    SQLite file wrapper with explicit transaction control.

    Example::

        dest = DestinationDatabase(Path("out.db"))
        dest.open()
        with dest.transaction():
            dest.execute('CREATE TABLE "t" ("id" INTEGER)')
        dest.close()
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> "DestinationDatabase":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def open(self, fresh: bool = True) -> None:
        """
        Open the database file, discarding any previous file when *fresh*.

        Foreign-key enforcement is switched on for this session.

        Raises:
            DatabaseError: If the file cannot be removed or created.
        """
        try:
            if fresh:
                self.path.unlink(missing_ok=True)
            self._conn = sqlite3.connect(str(self.path), isolation_level=None)
            self._conn.execute("PRAGMA foreign_keys = ON")
        except (OSError, sqlite3.Error) as exc:
            self.close()
            raise DatabaseError(
                f"Could not create SQLite database '{self.path}': {exc}"
            ) from exc
        log.info("Opened SQLite database '%s'.", self.path)

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            log.warning("Error closing SQLite database: %s", exc)
        self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _ensure_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ConnectionLostError("Destination database is not open.")
        return self._conn

    def execute(self, statement: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        conn = self._ensure_open()
        try:
            return conn.execute(statement, params)
        except sqlite3.Error as exc:
            log.debug("SQLite error: %s | SQL: %.500s", exc, statement)
            raise DatabaseError(str(exc)) from exc

    def executemany(self, statement: str, rows: Iterable[Sequence[Any]]) -> None:
        conn = self._ensure_open()
        try:
            conn.executemany(statement, rows)
        except sqlite3.Error as exc:
            log.debug("SQLite error: %s | SQL: %.500s", exc, statement)
            raise DatabaseError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """
        Explicit transaction: commits on clean exit, rolls back on any exception.

        Example::

            with dest.transaction():
                dest.execute("INSERT INTO ...")
        """
        self.execute("BEGIN")
        try:
            yield
        except BaseException:
            self._safe_rollback()
            raise
        self.execute("COMMIT")
        log.debug("Transaction committed.")

    def _safe_rollback(self) -> None:
        conn = self._conn
        if conn is None or not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
            log.debug("Transaction rolled back.")
        except sqlite3.Error as exc:
            log.warning("Rollback failed: %s", exc)

    def vacuum(self) -> None:
        """Rewrite the file to reclaim space; must run outside a transaction."""
        self.execute("VACUUM")

    def table_names(self) -> list[str]:
        rows = self.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [row[0] for row in rows]
