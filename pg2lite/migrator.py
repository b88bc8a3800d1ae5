"""
pg2lite/migrator.py
-------------------
Migration orchestrator: connect → introspect → build schema → copy data →
vacuum, then release everything on ``close()``.

Design Decisions:
    * The migrator is a plain class with everything passed in: the
      connection descriptor and the migration options.  It never reads the
      environment or any module-level configuration.
    * Progress is reported via a callback (``progress_cb``) so the CLI can
      print lines while library callers just get log records.
    * At most one tunnel exists per migrator.  ``close()`` shuts the source
      connection first and the tunnel second, so no connection is left
      dialing through a session that is already gone.
    * A failed run leaves whatever the destination file holds at that point;
      the file is not deleted and should be treated as invalid.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from pg2lite.copier import DEFAULT_BATCH_SIZE, CopyResult, DataCopier
from pg2lite.database import DatabaseError, DestinationDatabase, SourceDatabase
from pg2lite.errors import MigrationConnectionError, MigrationError
from pg2lite.introspector import SourceIntrospector
from pg2lite.schema_builder import SchemaBuilder
from pg2lite.tunnel import SSHTunnel, open_tunnel
from logger import get_logger
from models.connection import ConnectionDescriptor
from models.schema import IndexDescriptor

log = get_logger(__name__)

ProgressCallback = Callable[[str], None]


class MigrationState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    SCHEMA_BUILT = "schema_built"
    DATA_COPIED = "data_copied"
    FINALIZED = "finalized"
    CLOSED = "closed"


@dataclass
class MigrationSummary:
    """What a successful ``migrate()`` did."""
    destination: Path
    tables: list[str] = field(default_factory=list)
    copy_results: list[CopyResult] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def rows_copied(self) -> int:
        return sum(r.rows_copied for r in self.copy_results)

    def __str__(self) -> str:
        text = f"Migrated {len(self.tables)} table(s) to {self.destination}"
        if self.copy_results:
            text += f" with {self.rows_copied} row(s)"
        return f"{text} in {self.elapsed_seconds:.2f}s"


def _default_progress(msg: str) -> None:
    log.info("%s", msg)


class Migrator:
    """
    Owns the source connection and, when used, the SSH tunnel.

    Obtain one with :meth:`Migrator.open`; always call :meth:`close`
    (or use it as a context manager).

    Example::

        with Migrator.open(descriptor) as migrator:
            migrator.migrate("out.db", include_data=True)
    """

    def __init__(
        self,
        source: SourceDatabase,
        tunnel: SSHTunnel | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        create_indexes: bool = False,
        progress_cb: ProgressCallback | None = None,
    ) -> None:
        self._source = source
        self._tunnel = tunnel
        self._batch_size = batch_size
        self._create_indexes = create_indexes
        self._progress_cb = progress_cb or _default_progress
        self.state = MigrationState.CONNECTED if source.is_connected else MigrationState.IDLE

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def open(
        cls,
        descriptor: ConnectionDescriptor,
        batch_size: int = DEFAULT_BATCH_SIZE,
        create_indexes: bool = False,
        progress_cb: ProgressCallback | None = None,
    ) -> "Migrator":
        """
        Resolve *descriptor*, open the tunnel if needed and connect.

        A raw connection string wins; otherwise an SSH key path means a
        tunnel; otherwise the structured fields are used directly.

        Raises:
            MigrationConnectionError: Tunnel setup or source connection
                                      failed.  Anything already acquired
                                      has been released.
        """
        tunnel: SSHTunnel | None = None
        target = descriptor
        if descriptor.uses_tunnel:
            tunnel = open_tunnel(descriptor.ssh, descriptor.host, descriptor.port)
            target = descriptor.through_local_port(tunnel.local_port)

        source = SourceDatabase(target.dsn(), label=target.describe())
        try:
            source.connect()
        except DatabaseError as exc:
            if tunnel is not None:
                tunnel.close()
            raise MigrationConnectionError(str(exc)) from exc

        return cls(
            source,
            tunnel=tunnel,
            batch_size=batch_size,
            create_indexes=create_indexes,
            progress_cb=progress_cb,
        )

    def __enter__(self) -> "Migrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    def migrate(self, destination: str | Path, include_data: bool = False) -> MigrationSummary:
        """
        Recreate *destination* from the source schema, and data if asked.

        Raises:
            MigrationConnectionError: Destination file could not be created.
            IntrospectionError:       A catalog query failed.
            SchemaError:              A CREATE failed; no tables were kept.
            DataCopyError:            A table's copy failed; earlier tables
                                      stay committed, later ones are skipped.
            MigrationError:           The migrator is closed, or VACUUM failed.
        """
        if self.state == MigrationState.CLOSED:
            raise MigrationError("Migrator is closed.")

        start = time.monotonic()
        dest = DestinationDatabase(destination)
        try:
            dest.open(fresh=True)
        except DatabaseError as exc:
            raise MigrationConnectionError(str(exc)) from exc

        try:
            introspector = SourceIntrospector(self._source)
            tables = introspector.get_tables()

            indexes: list[IndexDescriptor] = []
            if self._create_indexes:
                for table in tables:
                    indexes.extend(introspector.list_indexes(table.name))

            created = SchemaBuilder(dest, self._progress_cb).build(tables, indexes)
            self.state = MigrationState.SCHEMA_BUILT
            summary = MigrationSummary(destination=dest.path, tables=created)

            if include_data:
                copier = DataCopier(
                    self._source, dest,
                    batch_size=self._batch_size,
                    progress_cb=self._progress_cb,
                )
                summary.copy_results = copier.copy_all(tables).results
                self.state = MigrationState.DATA_COPIED

            try:
                dest.vacuum()
            except DatabaseError as exc:
                raise MigrationError(f"Failed to vacuum database: {exc}") from exc
            self.state = MigrationState.FINALIZED
        except MigrationError as exc:
            log.error("Migration failed during %s: %s", exc.phase, exc)
            raise
        finally:
            dest.close()

        summary.elapsed_seconds = time.monotonic() - start
        log.info("%s", summary)
        return summary

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the source connection, then the tunnel.  Safe to call twice."""
        if self.state == MigrationState.CLOSED:
            return
        self._source.close()
        if self._tunnel is not None:
            self._tunnel.close()
            self._tunnel = None
        self.state = MigrationState.CLOSED


def open_migrator(descriptor: ConnectionDescriptor, **kwargs) -> Migrator:
    """Module-level alias for :meth:`Migrator.open`."""
    return Migrator.open(descriptor, **kwargs)
