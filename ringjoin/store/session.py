"""
Single-partition reads against the target store.

The join only ever issues requests restricted to one partition key (plus an
optional clustering prefix), never a table scan.
"""

import threading
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from loguru import logger

from ringjoin.errors import TransientStoreError
from ringjoin.store.table import TableDef


class SinglePartitionStore(Protocol):
    """Store interface used by the single-partition join."""

    def fetch_partition(
        self,
        table: TableDef,
        columns: Sequence[str],
        key_columns: Sequence[str],
        key_values: Sequence[Any],
        timeout: float,
    ) -> list[Mapping[str, Any]]:
        """
        Fetch the rows of one partition.

        Args:
            table: Target table
            columns: Columns to return
            key_columns: Restricted columns (full partition key, optionally
                followed by a clustering prefix)
            key_values: Values for key_columns, in the same order
            timeout: Request timeout in seconds

        Returns:
            Matching rows; empty if the partition does not exist

        Raises:
            TransientStoreError: For failures worth retrying
        """
        ...


def select_statement(
    table: TableDef, columns: Sequence[str], key_columns: Sequence[str]
) -> str:
    """CQL for a single-partition select with positional markers."""
    from cassandra.metadata import protect_name

    selected = ", ".join(protect_name(c) for c in columns)
    where = " AND ".join(f"{protect_name(c)} = ?" for c in key_columns)
    return (
        f"SELECT {selected} FROM {protect_name(table.keyspace)}."
        f"{protect_name(table.table)} WHERE {where}"
    )


class CassandraStore:
    """
    SinglePartitionStore over a cassandra-driver session.

    Statements are prepared once per (table, columns, key columns) and reused.
    Driver timeouts and availability errors are reported as TransientStoreError.

    Args:
        session: Connected ``cassandra.cluster.Session``
        consistency_level: Optional consistency level for reads
    """

    def __init__(self, session: Any, consistency_level: Any | None = None):
        self.session = session
        self.consistency_level = consistency_level
        self._prepared: dict[tuple, Any] = {}
        self._lock = threading.Lock()

    def _statement(self, table, columns, key_columns):
        cache_key = (table.keyspace, table.table, tuple(columns), tuple(key_columns))
        with self._lock:
            statement = self._prepared.get(cache_key)
        if statement is None:
            cql = select_statement(table, columns, key_columns)
            logger.debug(f"Preparing: {cql}")
            statement = self.session.prepare(cql)
            if self.consistency_level is not None:
                statement.consistency_level = self.consistency_level
            with self._lock:
                self._prepared[cache_key] = statement
        return statement

    def fetch_partition(self, table, columns, key_columns, key_values, timeout):
        from cassandra import OperationTimedOut, ReadFailure, ReadTimeout, Unavailable
        from cassandra.cluster import NoHostAvailable

        statement = self._statement(table, columns, key_columns)
        try:
            result = self.session.execute(statement, list(key_values), timeout=timeout)
        except (
            OperationTimedOut,
            ReadTimeout,
            ReadFailure,
            Unavailable,
            NoHostAvailable,
        ) as err:
            raise TransientStoreError(str(err)) from err

        rows = []
        for row in result:
            if isinstance(row, Mapping):
                rows.append(dict(row))
            else:
                rows.append(row._asdict())
        return rows
