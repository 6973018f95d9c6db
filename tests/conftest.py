import threading
import time

import pytest

from ringjoin.errors import TransientStoreError
from ringjoin.ring.ring import NetworkTopologyStrategy, SimpleStrategy, TokenRing
from ringjoin.ring.topology import TopologyCache, TopologySnapshot
from ringjoin.store.table import ColumnDef, TableDef

NODE_A = "10.0.0.1"
NODE_B = "10.0.0.2"
NODE_C = "10.0.0.3"

# Three nodes splitting the token space into thirds
RING_ENTRIES = [
    (-3074457345618258603, NODE_A),
    (3074457345618258602, NODE_B),
    (9223372036854775807, NODE_C),
]


def make_tables() -> dict[tuple[str, str], TableDef]:
    simple = TableDef(
        "ks",
        "t",
        partition_key=[ColumnDef("pk", "int")],
        regular_columns=[ColumnDef("val", "text")],
    )
    composite = TableDef(
        "ks",
        "events",
        partition_key=[ColumnDef("tenant", "text"), ColumnDef("day", "int")],
        clustering_columns=[ColumnDef("seq", "int"), ColumnDef("sub", "int")],
        regular_columns=[ColumnDef("payload", "text")],
    )
    single = TableDef(
        "ks1",
        "t",
        partition_key=[ColumnDef("pk", "int")],
        regular_columns=[ColumnDef("val", "text")],
    )
    multi = TableDef(
        "multi",
        "t",
        partition_key=[ColumnDef("pk", "int")],
        regular_columns=[ColumnDef("val", "text")],
    )
    blob = TableDef(
        "ks",
        "b",
        partition_key=[ColumnDef("pk", "blob")],
        regular_columns=[ColumnDef("val", "text")],
    )
    return {
        ("ks", "t"): simple,
        ("ks", "events"): composite,
        ("ks", "b"): blob,
        ("ks1", "t"): single,
        ("multi", "t"): multi,
    }


def make_snapshot(version: int = 1) -> TopologySnapshot:
    return TopologySnapshot(
        version=version,
        ring=TokenRing(RING_ENTRIES),
        keyspaces={
            "ks": SimpleStrategy(2),
            "ks1": SimpleStrategy(1),
            "multi": NetworkTopologyStrategy({"dc1": 1, "dc2": 1}),
        },
        tables=make_tables(),
        datacenters={NODE_A: "dc1", NODE_B: "dc1", NODE_C: "dc2"},
    )


class FakeTopologySource:
    """Topology source returning fresh snapshot versions, with failure injection."""

    def __init__(self, failures: int = 0, error: type[Exception] = ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0
        self.fetched = 0
        # When set, fetch() blocks until released
        self.gate: threading.Event | None = None
        self.entered = threading.Event()

    def fetch(self) -> TopologySnapshot:
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.calls <= self.failures:
            raise self.error(f"fetch failed (call {self.calls})")
        self.fetched += 1
        return make_snapshot(version=self.fetched)


class FakeStore:
    """In-memory single-partition store with call tracking and failure injection."""

    def __init__(self, tables: dict[str, list[dict]] | None = None, delay: float = 0.0):
        self.tables = tables or {}
        self.delay = delay
        self.calls: list[tuple] = []
        # key values -> number of transient failures before succeeding
        self.fail_times: dict[tuple, int] = {}
        self.always_fail: set[tuple] = set()
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def fetch_partition(self, table, columns, key_columns, key_values, timeout):
        key = tuple(key_values)
        with self._lock:
            self.calls.append(key)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            with self._lock:
                if key in self.always_fail:
                    raise TransientStoreError(f"timeout for {key}")
                if self.fail_times.get(key, 0) > 0:
                    self.fail_times[key] -= 1
                    raise TransientStoreError(f"timeout for {key}")
            rows = self.tables.get(table.qualified_name, [])
            return [
                {column: row.get(column) for column in columns}
                for row in rows
                if all(row.get(c) == v for c, v in zip(key_columns, key, strict=True))
            ]
        finally:
            with self._lock:
                self.in_flight -= 1

    def calls_for(self, key: tuple) -> int:
        return sum(1 for call in self.calls if call == key)


@pytest.fixture
def snapshot():
    """Three node topology snapshot."""
    return make_snapshot()


@pytest.fixture
def topology_source():
    return FakeTopologySource()


@pytest.fixture
def topology_cache(topology_source):
    """Topology cache that never sleeps between retries."""
    return TopologyCache(topology_source, sleep=lambda _: None)


@pytest.fixture
def store():
    """Store holding a single row (pk=1, val='x') in ks.t."""
    return FakeStore({"ks.t": [{"pk": 1, "val": "x"}]})


@pytest.fixture(autouse=True)
def clear_shared_topology():
    """Forget process-wide topology caches between tests."""
    yield
    TopologyCache.clear_shared()
