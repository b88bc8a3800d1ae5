"""
tests/conftest.py
-----------------
Shared fixtures: an in-process stand-in for the PostgreSQL source and a
fresh SQLite destination under ``tmp_path``.
"""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

import psycopg2
import pytest

from pg2lite.database import DestinationDatabase, TableScan


class FakeCursor:
    """Mimics a psycopg2 named cursor: described only after the first fetch."""

    def __init__(self, columns: list[str], rows: list[tuple], fail_at_row: int | None = None) -> None:
        self._columns = columns
        self._rows = rows
        self._pos = 0
        self._fail_at_row = fail_at_row
        self.description = None

    def fetchmany(self, size: int) -> list[tuple]:
        self.description = [(name,) for name in self._columns]
        if self._fail_at_row is not None and self._pos >= self._fail_at_row:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")
        chunk = self._rows[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk


class FakeSource:
    """
    ``SourceDatabase`` stand-in serving table scans from memory.

    Args:
        data: ``{table_name: (column_names, rows)}``.
        fail: ``{table_name: row_index}``; the scan raises once that many
              rows have been fetched.
    """

    def __init__(self, data: dict, fail: dict | None = None) -> None:
        self._data = data
        self._fail = fail or {}
        self.scanned: list[str] = []
        self.closed = False
        self.is_connected = True

    @contextmanager
    def scan_table(self, table_name: str, batch_size: int):
        self.scanned.append(table_name)
        columns, rows = self._data[table_name]
        cursor = FakeCursor(columns, list(rows), self._fail.get(table_name))
        yield TableScan(cursor, table_name, batch_size)

    def close(self) -> None:
        self.closed = True
        self.is_connected = False


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def dest_path(tmp_path: Path) -> Path:
    return tmp_path / "out.db"


@pytest.fixture
def dest(dest_path: Path):
    db = DestinationDatabase(dest_path)
    db.open()
    yield db
    db.close()
