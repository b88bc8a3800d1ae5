"""
pg2lite/errors.py
-----------------
Exception taxonomy for a migration run.

Every error names the phase it came from and, where one applies, the table
being processed.  Driver exceptions are chained with ``raise ... from exc``.
"""
from __future__ import annotations


class MigrationError(Exception):
    """Base class for all failures reported by the migration engine."""

    phase = "migrate"

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class MigrationConnectionError(MigrationError):
    """Source unreachable, authentication rejected, or destination uncreatable."""

    phase = "connect"


class TunnelError(MigrationConnectionError):
    """SSH tunnel setup failed (bad key, unreachable host, listener bind)."""

    phase = "tunnel"


class IntrospectionError(MigrationError):
    """A catalog query against the source failed."""

    phase = "introspect"


class SchemaError(MigrationError):
    """A destination CREATE statement failed; the schema phase was rolled back."""

    phase = "schema"


class DataCopyError(MigrationError):
    """A row scan or insert failed while copying one table."""

    phase = "copy"
