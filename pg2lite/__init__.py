"""pg2lite/__init__.py"""
from pg2lite.errors import (
    DataCopyError,
    IntrospectionError,
    MigrationConnectionError,
    MigrationError,
    SchemaError,
    TunnelError,
)
from pg2lite.migrator import MigrationState, MigrationSummary, Migrator, open_migrator
from pg2lite.type_converter import StorageClass, coerce_value, map_type, translate_default

__all__ = [
    "DataCopyError",
    "IntrospectionError",
    "MigrationConnectionError",
    "MigrationError",
    "SchemaError",
    "TunnelError",
    "MigrationState",
    "MigrationSummary",
    "Migrator",
    "open_migrator",
    "StorageClass",
    "coerce_value",
    "map_type",
    "translate_default",
]
