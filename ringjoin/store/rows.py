"""
Capability interfaces for moving values between records and store rows.

Callers pass these explicitly:
- RowWriter: extracts column values from an arbitrary record
- PartitionKeyExtractor: turns a record into routing key bytes
- RowReader: turns a store row into a result object

Uses Protocols so any object with the right method can be injected.
"""

from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from ringjoin.errors import SchemaMismatch
from ringjoin.ring.token import compose_routing_key, serialize_value
from ringjoin.store.table import TableDef


class RowWriter(Protocol):
    """Extracts the values of named columns from a record."""

    def column_values(self, record: Any, columns: Sequence[str]) -> list[Any]:
        """
        Return one value per requested column, in column order.

        Raises:
            SchemaMismatch: If the record has no value for a column
        """
        ...


class RowReader(Protocol):
    """Converts a store row (column name -> value) into a result object."""

    def read(self, row: Mapping[str, Any]) -> Any: ...


class PartitionKeyExtractor(Protocol):
    """Pure, deterministic function from a record to routing key bytes."""

    def __call__(self, record: Any) -> bytes: ...


class MappingRowWriter:
    """Reads column values from dict-like records."""

    def column_values(self, record: Any, columns: Sequence[str]) -> list[Any]:
        values = []
        for column in columns:
            try:
                values.append(record[column])
            except (KeyError, TypeError, IndexError) as err:
                raise SchemaMismatch(
                    f"Record has no field for column {column!r}", column=column
                ) from err
        return values


class ObjectRowWriter:
    """Reads column values from attributes (dataclasses, named tuples, plain objects)."""

    def column_values(self, record: Any, columns: Sequence[str]) -> list[Any]:
        values = []
        for column in columns:
            try:
                values.append(getattr(record, column))
            except AttributeError as err:
                raise SchemaMismatch(
                    f"Record of type {type(record).__name__} has no attribute "
                    f"{column!r}",
                    column=column,
                ) from err
        return values


class TupleRowWriter:
    """
    Reads column values positionally from tuples.

    Args:
        column_order: Column name of each tuple position
    """

    def __init__(self, column_order: Sequence[str]):
        self.column_order = list(column_order)

    def column_values(self, record: Any, columns: Sequence[str]) -> list[Any]:
        values = []
        for column in columns:
            if column not in self.column_order:
                raise SchemaMismatch(
                    f"Tuple layout {self.column_order} has no column {column!r}",
                    column=column,
                )
            position = self.column_order.index(column)
            if position >= len(record):
                raise SchemaMismatch(
                    f"Tuple of length {len(record)} has no position {position}",
                    column=column,
                )
            values.append(record[position])
        return values


class ScalarRowWriter:
    """Treats the record itself as the value of a single column."""

    def column_values(self, record: Any, columns: Sequence[str]) -> list[Any]:
        if len(columns) != 1:
            raise SchemaMismatch(
                f"A scalar record cannot supply {len(columns)} columns "
                f"{list(columns)}",
                column=columns[1] if len(columns) > 1 else None,
            )
        return [record]


class AutoRowWriter:
    """
    Dispatches on the record's shape.

    Mappings are read by key, tuples positionally against ``column_order``
    (named tuples by attribute), objects with attributes by attribute, and
    anything else as a scalar single-column value.
    """

    def __init__(self, column_order: Sequence[str] | None = None):
        self._mapping = MappingRowWriter()
        self._object = ObjectRowWriter()
        self._scalar = ScalarRowWriter()
        self._tuple = TupleRowWriter(column_order) if column_order else None

    def column_values(self, record: Any, columns: Sequence[str]) -> list[Any]:
        if isinstance(record, Mapping):
            return self._mapping.column_values(record, columns)
        if isinstance(record, tuple):
            if hasattr(record, "_fields"):
                return self._object.column_values(record, columns)
            if self._tuple is not None:
                return self._tuple.column_values(record, columns)
            return self._scalar.column_values(record, columns)
        if isinstance(record, str | bytes | int | float | bool) or record is None:
            return self._scalar.column_values(record, columns)
        return self._object.column_values(record, columns)


class RoutingKeyExtractor:
    """
    Builds the routing key of a record for a table's partition key.

    Args:
        table: Target table definition
        row_writer: How to read partition key values out of records
    """

    def __init__(self, table: TableDef, row_writer: RowWriter):
        self.table = table
        self.row_writer = row_writer
        self._columns = table.partition_key_names

    def __call__(self, record: Any) -> bytes:
        try:
            values = self.row_writer.column_values(record, self._columns)
        except SchemaMismatch as err:
            raise SchemaMismatch(
                err.reason,
                keyspace=self.table.keyspace,
                table=self.table.table,
                column=err.column,
            ) from err

        parts = []
        for column, value in zip(self.table.partition_key, values, strict=True):
            if value is None:
                raise SchemaMismatch(
                    "Partition key component must not be null",
                    keyspace=self.table.keyspace,
                    table=self.table.table,
                    column=column.name,
                )
            try:
                parts.append(serialize_value(column.cql_type, value))
            except TypeError as err:
                raise SchemaMismatch(
                    f"Value {value!r} does not match type {column.cql_type}",
                    keyspace=self.table.keyspace,
                    table=self.table.table,
                    column=column.name,
                ) from err
            except KeyError as err:
                raise SchemaMismatch(
                    f"Unsupported partition key type {column.cql_type}",
                    keyspace=self.table.keyspace,
                    table=self.table.table,
                    column=column.name,
                ) from err
        return compose_routing_key(parts)


class DictRowReader:
    """Returns store rows as plain dicts."""

    def read(self, row: Mapping[str, Any]) -> dict[str, Any]:
        return dict(row)


class TupleRowReader:
    """Returns store rows as tuples in the given column order."""

    def __init__(self, columns: Sequence[str]):
        self.columns = list(columns)

    def read(self, row: Mapping[str, Any]) -> tuple:
        return tuple(row.get(column) for column in self.columns)


class ObjectRowReader:
    """Builds result objects by calling a factory with the row as keyword arguments."""

    def __init__(self, factory: Callable[..., Any]):
        self.factory = factory

    def read(self, row: Mapping[str, Any]) -> Any:
        return self.factory(**row)
