"""
Store-facing interfaces: table layout, row marshaling, reads and writes.
"""

from ringjoin.store.rows import (
    AutoRowWriter,
    DictRowReader,
    MappingRowWriter,
    ObjectRowReader,
    ObjectRowWriter,
    PartitionKeyExtractor,
    RoutingKeyExtractor,
    RowReader,
    RowWriter,
    ScalarRowWriter,
    TupleRowReader,
    TupleRowWriter,
)
from ringjoin.store.session import CassandraStore, SinglePartitionStore
from ringjoin.store.table import ColumnDef, TableDef
from ringjoin.store.writer import TableWriter, save_to_store

__all__ = [
    "ColumnDef",
    "TableDef",
    "RowWriter",
    "RowReader",
    "PartitionKeyExtractor",
    "MappingRowWriter",
    "ObjectRowWriter",
    "TupleRowWriter",
    "ScalarRowWriter",
    "AutoRowWriter",
    "RoutingKeyExtractor",
    "DictRowReader",
    "TupleRowReader",
    "ObjectRowReader",
    "SinglePartitionStore",
    "CassandraStore",
    "TableWriter",
    "save_to_store",
]
