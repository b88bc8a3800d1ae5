"""
tests/test_migrator.py
-----------------------
Unit tests for pg2lite/migrator.py with the PostgreSQL side mocked out.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from pg2lite.database import DatabaseError
from pg2lite.errors import (
    DataCopyError,
    MigrationConnectionError,
    MigrationError,
    SchemaError,
    TunnelError,
)
from pg2lite.migrator import MigrationState, MigrationSummary, Migrator
from models.connection import ConnectionDescriptor, SSHSettings
from models.schema import ColumnDescriptor, IndexDescriptor, TableDescriptor


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

USERS = TableDescriptor(
    name="users",
    columns=(
        ColumnDescriptor("id", "integer", False, "nextval('users_id_seq'::regclass)"),
        ColumnDescriptor("email", "text", False),
        ColumnDescriptor("admin", "boolean", True, "false"),
    ),
)
POSTS = TableDescriptor(
    name="posts",
    columns=(
        ColumnDescriptor("id", "integer", False, "nextval('posts_id_seq'::regclass)"),
        ColumnDescriptor("body", "text", True),
    ),
)
DATA = {
    "posts": (["id", "body"], [(1, "hello"), (2, None)]),
    "users": (["id", "email", "admin"], [(1, "a@x.io", True), (2, "b@x.io", False)]),
}


@pytest.fixture
def introspector():
    with patch("pg2lite.migrator.SourceIntrospector") as cls:
        instance = cls.return_value
        instance.get_tables.return_value = [POSTS, USERS]
        instance.list_indexes.return_value = []
        yield instance


@pytest.fixture
def migrator(make_source, introspector) -> Migrator:
    return Migrator(make_source(DATA), progress_cb=lambda msg: None)


def _tables(path: Path) -> list[str]:
    with sqlite3.connect(path) as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
    return [r[0] for r in rows]


def _rows(path: Path, table: str) -> list[tuple]:
    with sqlite3.connect(path) as conn:
        return conn.execute(f'SELECT * FROM "{table}" ORDER BY 1').fetchall()


# ---------------------------------------------------------------------------
# Migrator.open
# ---------------------------------------------------------------------------

class TestOpen:
    def test_connection_string_wins(self) -> None:
        descriptor = ConnectionDescriptor(
            connection_string="postgresql://u@h/db",
            ssh=SSHSettings(key_path="/k", user="u", host="bastion"),
        )
        with patch("pg2lite.migrator.SourceDatabase") as source_cls, \
                patch("pg2lite.migrator.open_tunnel") as tunnel_fn:
            Migrator.open(descriptor)
        tunnel_fn.assert_not_called()
        assert source_cls.call_args.args[0] == "postgresql://u@h/db"

    def test_direct_descriptor(self) -> None:
        descriptor = ConnectionDescriptor(host="db", port=5433, database="shop", user="app")
        with patch("pg2lite.migrator.SourceDatabase") as source_cls, \
                patch("pg2lite.migrator.open_tunnel") as tunnel_fn:
            migrator = Migrator.open(descriptor)
        tunnel_fn.assert_not_called()
        assert source_cls.call_args.args[0] == "host=db port=5433 dbname=shop user=app"
        source_cls.return_value.connect.assert_called_once()
        assert migrator.state == MigrationState.CONNECTED

    def test_tunnel_rewrites_target(self) -> None:
        ssh = SSHSettings(key_path="/keys/id_ed25519", user="ops", host="bastion")
        descriptor = ConnectionDescriptor(
            host="10.0.0.5", port=5432, database="shop", user="app", password="pw", ssh=ssh,
        )
        tunnel = MagicMock(local_port=40111)
        with patch("pg2lite.migrator.SourceDatabase") as source_cls, \
                patch("pg2lite.migrator.open_tunnel", return_value=tunnel) as tunnel_fn:
            Migrator.open(descriptor)
        tunnel_fn.assert_called_once_with(ssh, "10.0.0.5", 5432)
        assert source_cls.call_args.args[0] == (
            "host=localhost port=40111 dbname=shop user=app password=pw"
        )

    def test_connect_failure_closes_tunnel(self) -> None:
        ssh = SSHSettings(key_path="/k", user="u", host="bastion")
        descriptor = ConnectionDescriptor(host="db", database="d", user="u", ssh=ssh)
        tunnel = MagicMock(local_port=40000)
        with patch("pg2lite.migrator.SourceDatabase") as source_cls, \
                patch("pg2lite.migrator.open_tunnel", return_value=tunnel):
            source_cls.return_value.connect.side_effect = DatabaseError("refused")
            with pytest.raises(MigrationConnectionError):
                Migrator.open(descriptor)
        tunnel.close.assert_called_once()

    def test_tunnel_failure_propagates(self) -> None:
        ssh = SSHSettings(key_path="/k", user="u", host="bastion")
        descriptor = ConnectionDescriptor(host="db", ssh=ssh)
        with patch("pg2lite.migrator.SourceDatabase") as source_cls, \
                patch("pg2lite.migrator.open_tunnel", side_effect=TunnelError("bad key")):
            with pytest.raises(MigrationConnectionError):
                Migrator.open(descriptor)
        source_cls.assert_not_called()


# ---------------------------------------------------------------------------
# Migrator.close
# ---------------------------------------------------------------------------

class TestClose:
    def test_source_closed_before_tunnel(self) -> None:
        manager = MagicMock()
        migrator = Migrator(manager.source, tunnel=manager.tunnel)
        migrator.close()
        closes = [c[0] for c in manager.mock_calls if c[0].endswith("close")]
        assert closes == ["source.close", "tunnel.close"]
        assert migrator.state == MigrationState.CLOSED

    def test_close_is_idempotent(self) -> None:
        source, tunnel = MagicMock(), MagicMock()
        migrator = Migrator(source, tunnel=tunnel)
        migrator.close()
        migrator.close()
        source.close.assert_called_once()
        tunnel.close.assert_called_once()

    def test_context_manager_closes(self, make_source) -> None:
        source = make_source({})
        with Migrator(source):
            pass
        assert source.closed

    def test_migrate_after_close(self, migrator: Migrator, tmp_path: Path) -> None:
        migrator.close()
        with pytest.raises(MigrationError):
            migrator.migrate(tmp_path / "out.db")


# ---------------------------------------------------------------------------
# Migrator.migrate
# ---------------------------------------------------------------------------

class TestMigrate:
    def test_schema_only(self, migrator: Migrator, tmp_path: Path) -> None:
        out = tmp_path / "out.db"
        summary = migrator.migrate(out, include_data=False)
        assert isinstance(summary, MigrationSummary)
        assert summary.tables == ["posts", "users"]
        assert _tables(out) == ["posts", "users"]
        assert _rows(out, "users") == []
        assert migrator.state == MigrationState.FINALIZED

    def test_with_data(self, migrator: Migrator, tmp_path: Path) -> None:
        out = tmp_path / "out.db"
        summary = migrator.migrate(out, include_data=True)
        assert summary.rows_copied == 4
        assert _rows(out, "users") == [(1, "a@x.io", 1), (2, "b@x.io", 0)]
        assert _rows(out, "posts") == [(1, "hello"), (2, None)]

    def test_previous_file_discarded(self, migrator: Migrator, tmp_path: Path) -> None:
        out = tmp_path / "out.db"
        with sqlite3.connect(out) as conn:
            conn.execute("CREATE TABLE stale (x INTEGER)")
        migrator.migrate(out)
        assert "stale" not in _tables(out)

    def test_progress_lines(self, make_source, introspector, tmp_path: Path) -> None:
        lines: list[str] = []
        migrator = Migrator(make_source(DATA), progress_cb=lines.append)
        migrator.migrate(tmp_path / "out.db", include_data=True)
        assert lines == [
            "Created table: posts",
            "Created table: users",
            "Migrated data for table: posts",
            "Migrated data for table: users",
        ]

    def test_schema_failure_leaves_no_tables(self, migrator, introspector, tmp_path: Path) -> None:
        broken = TableDescriptor("zz_broken", (ColumnDescriptor("x", "integer", True, "oops("),))
        introspector.get_tables.return_value = [POSTS, broken, USERS]
        out = tmp_path / "out.db"
        with pytest.raises(SchemaError):
            migrator.migrate(out)
        assert _tables(out) == []
        assert migrator.state == MigrationState.CONNECTED

    def test_copy_failure(self, make_source, introspector, tmp_path: Path) -> None:
        migrator = Migrator(make_source(DATA, fail={"users": 0}))
        out = tmp_path / "out.db"
        with pytest.raises(DataCopyError):
            migrator.migrate(out, include_data=True)
        assert _rows(out, "posts") == [(1, "hello"), (2, None)]
        assert migrator.state == MigrationState.SCHEMA_BUILT

    def test_indexes_only_when_enabled(self, make_source, introspector, tmp_path: Path) -> None:
        Migrator(make_source(DATA)).migrate(tmp_path / "a.db")
        introspector.list_indexes.assert_not_called()

        introspector.list_indexes.side_effect = lambda name: (
            [IndexDescriptor("users_email_key", "users", ("email",), True)]
            if name == "users" else []
        )
        out = tmp_path / "b.db"
        Migrator(make_source(DATA), create_indexes=True).migrate(out)
        with sqlite3.connect(out) as conn:
            names = [r[0] for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'index'"
            )]
        assert "users_email_key" in names

    def test_uncreatable_destination(self, migrator: Migrator, tmp_path: Path) -> None:
        with pytest.raises(MigrationConnectionError):
            migrator.migrate(tmp_path / "missing-dir" / "out.db")
