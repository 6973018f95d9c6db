"""Tests for the driver-backed store and the bulk write boundary."""

from collections import namedtuple
from unittest.mock import MagicMock

import pytest
from cassandra import OperationTimedOut
from conftest import make_tables

from ringjoin.distributed.dataset import PartitionedDataset
from ringjoin.errors import TransientStoreError
from ringjoin.store.session import CassandraStore, select_statement
from ringjoin.store.writer import save_to_store

Row = namedtuple("Row", ["pk", "val"])


@pytest.fixture
def table():
    return make_tables()[("ks", "t")]


class TestSelectStatement:
    """Test CQL generation."""

    def test_single_partition_select(self, table):
        """Test a select restricted to the partition key."""
        cql = select_statement(table, ["pk", "val"], ["pk"])
        assert cql == "SELECT pk, val FROM ks.t WHERE pk = ?"

    def test_clustering_prefix(self):
        """Test a select restricted to a clustering prefix too."""
        events = make_tables()[("ks", "events")]
        cql = select_statement(events, ["payload"], ["tenant", "day", "seq"])
        assert cql.endswith("WHERE tenant = ? AND day = ? AND seq = ?")

    def test_reserved_names_are_quoted(self, table):
        """Test quoting of reserved column names."""
        cql = select_statement(table, ["select"], ["pk"])
        assert cql.startswith('SELECT "select" FROM')


class TestCassandraStore:
    """Test reads through a driver session."""

    def test_fetch_partition(self, table):
        """Test a fetch returning rows as dicts."""
        session = MagicMock()
        session.execute.return_value = [Row(1, "x")]
        store = CassandraStore(session)

        rows = store.fetch_partition(table, ["pk", "val"], ["pk"], (1,), 3.0)

        assert rows == [{"pk": 1, "val": "x"}]
        session.prepare.assert_called_once_with("SELECT pk, val FROM ks.t WHERE pk = ?")
        session.execute.assert_called_once_with(
            session.prepare.return_value, [1], timeout=3.0
        )

    def test_statements_are_prepared_once(self, table):
        """Test that each statement is prepared once."""
        session = MagicMock()
        session.execute.return_value = []
        store = CassandraStore(session)

        store.fetch_partition(table, ["val"], ["pk"], (1,), 1.0)
        store.fetch_partition(table, ["val"], ["pk"], (2,), 1.0)

        session.prepare.assert_called_once()
        assert session.execute.call_count == 2

    def test_dict_rows(self, table):
        """Test rows the driver already returns as dicts."""
        session = MagicMock()
        session.execute.return_value = [{"pk": 1, "val": "x"}]
        rows = CassandraStore(session).fetch_partition(table, ["pk"], ["pk"], (1,), 1.0)
        assert rows == [{"pk": 1, "val": "x"}]

    def test_consistency_level(self, table):
        """Test consistency level set on prepared statements."""
        session = MagicMock()
        session.execute.return_value = []
        CassandraStore(session, consistency_level="LOCAL_ONE").fetch_partition(
            table, ["pk"], ["pk"], (1,), 1.0
        )
        assert session.prepare.return_value.consistency_level == "LOCAL_ONE"

    def test_driver_timeouts_are_transient(self, table):
        """Test that driver timeouts become TransientStoreError."""
        session = MagicMock()
        session.execute.side_effect = OperationTimedOut("slow")
        store = CassandraStore(session)
        with pytest.raises(TransientStoreError) as exc_info:
            store.fetch_partition(table, ["pk"], ["pk"], (1,), 1.0)
        assert isinstance(exc_info.value.__cause__, OperationTimedOut)


class CollectingWriter:
    """Table writer recording what it was given."""

    def __init__(self):
        self.written = {}

    def write(self, partition_index, records):
        self.written[partition_index] = list(records)
        return len(self.written[partition_index])


class TestSaveToStore:
    """Test the bulk write boundary."""

    def test_writes_every_partition(self):
        """Test that every partition reaches the writer."""
        dataset = PartitionedDataset.parallelize(range(5), 2)
        writer = CollectingWriter()

        results = save_to_store(dataset, writer)

        assert results == [3, 2]
        assert writer.written == {0: [0, 1, 2], 1: [3, 4]}
