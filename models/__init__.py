"""models/__init__.py"""
from models.connection import ConnectionDescriptor, HostKeyPolicy, SSHSettings
from models.schema import ColumnDescriptor, IndexDescriptor, TableDescriptor

__all__ = [
    "ConnectionDescriptor",
    "HostKeyPolicy",
    "SSHSettings",
    "ColumnDescriptor",
    "IndexDescriptor",
    "TableDescriptor",
]
