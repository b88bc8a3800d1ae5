"""
models/schema.py
----------------
Typed descriptors for the source schema discovered by introspection.

Design Decision:
    Descriptors are frozen dataclasses holding tuples, so a schema read once
    at the start of a run cannot be altered while the schema builder and the
    data copier walk it.  Both consume tables and columns in discovery order;
    the copier's positional rows line up with ``TableDescriptor.columns``.
"""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ColumnDescriptor:
    """
    One source column.

    Attributes:
        name:      Column name as reported by the catalog.
        data_type: Source type name (compared case-insensitively).
        nullable:  False when the catalog reports ``is_nullable = 'NO'``.
        default:   Raw source-dialect default expression, or None.
    """
    name: str
    data_type: str
    nullable: bool = True
    default: str | None = None


@dataclass(frozen=True)
class TableDescriptor:
    """A source base table and its columns in ordinal order."""
    name: str
    columns: tuple[ColumnDescriptor, ...] = field(default_factory=tuple)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


@dataclass(frozen=True)
class IndexDescriptor:
    """A secondary (non primary-key) index on a source table."""
    name: str
    table: str
    columns: tuple[str, ...]
    unique: bool = False
