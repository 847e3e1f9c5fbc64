"""
External tables

Client-side tables shipped alongside a query and referenceable by name
within that query's scope.

Usage:
    table = new_table(
        "external_table_1",
        column("col1", "UInt8"),
        column("col2", "String"),
    )
    table.append(1, "value_1")
    ctx = decorate(ctx, with_external_table(table))
"""

import logging
from dataclasses import dataclass
from typing import Any

from core.column_types import ColumnType, parse_type
from core.errors import ArityMismatch, InvalidArgument, TypeMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnDescriptor:
    """External table column: name + ClickHouse type name"""

    name: str
    type: str


def column(name: str, type_name: str) -> ColumnDescriptor:
    """Describe an external table column (validated by new_table)"""
    return ColumnDescriptor(name=name, type=type_name)


class ExternalTable:
    """
    Typed in-memory row buffer

    Invariant: every stored row has one value per column and each value is
    assignable to its column's ClickHouse type. Rows keep insertion order.
    """

    def __init__(self, name: str, columns: list[ColumnDescriptor]):
        if not isinstance(name, str) or not name.strip():
            raise InvalidArgument("External table name cannot be empty")
        if not columns:
            raise InvalidArgument(f"External table '{name}' needs at least one column")

        parsed: list[ColumnType] = []
        seen: set[str] = set()
        for descriptor in columns:
            if not isinstance(descriptor, ColumnDescriptor):
                raise InvalidArgument(f"Malformed column descriptor: {descriptor!r}")
            if not isinstance(descriptor.name, str) or not descriptor.name.strip():
                raise InvalidArgument(f"Column name cannot be empty in table '{name}'")
            if descriptor.name in seen:
                raise InvalidArgument(f"Duplicate column '{descriptor.name}' in table '{name}'")
            seen.add(descriptor.name)
            parsed.append(parse_type(descriptor.type))

        self.name = name
        self.columns: tuple[ColumnDescriptor, ...] = tuple(columns)
        self._types: tuple[ColumnType, ...] = tuple(parsed)
        self._rows: list[tuple[Any, ...]] = []

    def append(self, *values: Any) -> None:
        """
        Append one row

        Raises:
            ArityMismatch: If the value count differs from the column count
            TypeMismatch: If a value is not assignable to its column type
        """
        if len(values) != len(self.columns):
            raise ArityMismatch(
                f"table '{self.name}' has {len(self.columns)} columns, got {len(values)} values"
            )

        for descriptor, column_type, value in zip(self.columns, self._types, values):
            if not column_type.accepts(value):
                raise TypeMismatch(
                    f"column '{descriptor.name}' ({column_type.name}) "
                    f"cannot hold {type(value).__name__} value {value!r}"
                )

        self._rows.append(tuple(values))

    @property
    def rows(self) -> tuple[tuple[Any, ...], ...]:
        return tuple(self._rows)

    @property
    def structure(self) -> list[tuple[str, str]]:
        """(column name, ClickHouse type) pairs"""
        return [(c.name, c.type) for c in self.columns]

    def __len__(self) -> int:
        return len(self._rows)

    def __repr__(self) -> str:
        return f"ExternalTable(name={self.name!r}, columns={len(self.columns)}, rows={len(self)})"

    def to_driver(self) -> dict[str, Any]:
        """Format expected by clickhouse-driver's `external_tables` argument"""
        names = [c.name for c in self.columns]
        return {
            "name": self.name,
            "structure": self.structure,
            "data": [dict(zip(names, row)) for row in self._rows],
        }


def new_table(name: str, *columns: ColumnDescriptor) -> ExternalTable:
    """
    Create an empty external table

    Raises:
        InvalidArgument: If name is empty or a column descriptor is malformed

    Example:
        >>> table = new_table("ext", column("id", "UInt8"), column("label", "String"))
        >>> table.append(1, "one")
        >>> len(table)
        1
    """
    table = ExternalTable(name, list(columns))
    logger.debug(f"Created external table {name} with {len(columns)} columns")
    return table
