"""
Cluster topology: versioned snapshots and a process-wide metadata cache.

A TopologySource produces immutable TopologySnapshot objects (token ring,
node datacenters, keyspace replication, table key layouts). A TopologyCache
owns the current snapshot of one cluster:

- Reads are lock-free and return the current snapshot.
- Refreshes run under a single-writer lock with bounded exponential backoff.
- While a refresh is in flight, other readers keep using the previous
  snapshot; the new one is swapped in atomically once fetched.
"""

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from loguru import logger

from ringjoin.config import TopologyConfig
from ringjoin.errors import ConfigurationError, TopologyUnavailable
from ringjoin.ring.ring import (
    NetworkTopologyStrategy,
    ReplicationStrategy,
    SimpleStrategy,
    TokenRing,
    address_sort_key,
)
from ringjoin.store.table import ColumnDef, TableDef


class TopologySnapshot:
    """
    Immutable view of cluster topology at one point in time.

    Args:
        version: Monotonic version of the snapshot (used to detect staleness)
        ring: Token ring
        keyspaces: Keyspace name -> replication strategy
        tables: (keyspace, table) -> table key layout
        datacenters: Node address -> datacenter name
    """

    def __init__(
        self,
        version: int,
        ring: TokenRing,
        keyspaces: Mapping[str, ReplicationStrategy],
        tables: Mapping[tuple[str, str], TableDef] | None = None,
        datacenters: Mapping[str, str] | None = None,
    ):
        self.version = version
        self.ring = ring
        self.keyspaces = dict(keyspaces)
        self.tables = dict(tables or {})
        self.datacenters = dict(datacenters or {})

    @property
    def nodes(self) -> list[str]:
        """Distinct ring nodes in address order."""
        return sorted(self.ring.nodes, key=address_sort_key)

    def nodes_in(self, datacenter: str) -> list[str]:
        """Ring nodes of one datacenter in address order."""
        return [n for n in self.nodes if self.datacenters.get(n) == datacenter]

    def strategy(self, keyspace: str) -> ReplicationStrategy:
        try:
            return self.keyspaces[keyspace]
        except KeyError:
            raise ConfigurationError(f"Keyspace {keyspace!r} not found") from None

    def table(self, keyspace: str, table: str) -> TableDef:
        self.strategy(keyspace)
        try:
            return self.tables[(keyspace, table)]
        except KeyError:
            raise ConfigurationError(
                f"Table {table!r} not found in keyspace {keyspace!r}"
            ) from None

    def replicas(self, keyspace: str, token: int) -> frozenset[str]:
        """Replica set of a token under a keyspace's replication strategy."""
        strategy = self.strategy(keyspace)
        return frozenset(strategy.replicas(self.ring, token, self.datacenters))

    def __repr__(self) -> str:
        return (
            f"TopologySnapshot(version={self.version}, ring={self.ring!r}, "
            f"keyspaces={sorted(self.keyspaces)})"
        )


class TopologySource(Protocol):
    """Anything that can fetch a fresh topology snapshot from the store."""

    def fetch(self) -> TopologySnapshot: ...


class TopologyCache:
    """
    Per-cluster topology cache with explicit invalidation.

    Examples:
        >>> cache = TopologyCache(CassandraTopologySource(["10.0.0.1"]))
        >>> snapshot = cache.snapshot()      # first call fetches
        >>> cache.invalidate()               # e.g. after a connection reset
        >>> snapshot = cache.snapshot()      # refetches, old one served meanwhile
    """

    _shared: dict[str, "TopologyCache"] = {}
    _shared_lock = threading.Lock()

    def __init__(
        self,
        source: TopologySource,
        config: TopologyConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.config = config or TopologyConfig()
        self._sleep = sleep
        self._snapshot: TopologySnapshot | None = None
        self._stale = False
        self._refresh_lock = threading.Lock()

    @classmethod
    def shared(
        cls,
        cluster_name: str,
        source_factory: Callable[[], TopologySource],
        config: TopologyConfig | None = None,
    ) -> "TopologyCache":
        """Process-wide cache for a cluster, created on first use."""
        with cls._shared_lock:
            cache = cls._shared.get(cluster_name)
            if cache is None:
                cache = cls(source_factory(), config)
                cls._shared[cluster_name] = cache
            return cache

    @classmethod
    def clear_shared(cls) -> None:
        with cls._shared_lock:
            cls._shared.clear()

    @property
    def current(self) -> TopologySnapshot | None:
        """Current snapshot without triggering a fetch."""
        return self._snapshot

    def snapshot(self) -> TopologySnapshot:
        """
        Current snapshot, fetching it on first use or after invalidation.

        Raises:
            TopologyUnavailable: If no snapshot could be fetched
        """
        snapshot = self._snapshot
        if snapshot is not None and not self._stale:
            return snapshot
        return self._load(force=False)

    def refresh(self) -> TopologySnapshot:
        """Fetch a new snapshot now, unless another refresh is already running."""
        return self._load(force=True)

    def invalidate(self) -> None:
        """Mark the snapshot stale; the next read refreshes it."""
        self._stale = True

    def _load(self, force: bool) -> TopologySnapshot:
        previous = self._snapshot
        # Readers never wait for an in-flight refresh if a snapshot exists
        if not self._refresh_lock.acquire(blocking=previous is None):
            return previous  # type: ignore[return-value]
        try:
            current = self._snapshot
            if current is not None and current is not previous:
                # Someone else refreshed while we waited
                return current
            if current is not None and not force and not self._stale:
                return current
            snapshot = self._fetch_with_retry()
            self._snapshot = snapshot
            self._stale = False
            return snapshot
        finally:
            self._refresh_lock.release()

    def _fetch_with_retry(self) -> TopologySnapshot:
        last_error: Exception | None = None
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                snapshot = self.source.fetch()
            except Exception as err:  # network and driver errors vary by source
                last_error = err
                if attempt < self.config.max_attempts:
                    delay = min(
                        self.config.backoff_base * (2 ** (attempt - 1)),
                        self.config.backoff_max,
                    )
                    logger.warning(
                        f"Topology fetch attempt {attempt}/{self.config.max_attempts} "
                        f"failed ({err}), retrying in {delay:.2f}s"
                    )
                    self._sleep(delay)
                continue
            logger.info(
                f"Topology snapshot v{snapshot.version}: {len(snapshot.ring.nodes)} "
                f"nodes, {len(snapshot.ring)} tokens"
            )
            return snapshot
        raise TopologyUnavailable(
            f"Could not fetch topology after {self.config.max_attempts} attempt(s): "
            f"{last_error}"
        ) from last_error


def _strategy_from_driver(strategy: Any) -> ReplicationStrategy | None:
    """Convert a cassandra-driver replication strategy object."""
    from cassandra import metadata as driver_metadata

    if isinstance(strategy, driver_metadata.SimpleStrategy):
        return SimpleStrategy(int(strategy.replication_factor))
    if isinstance(strategy, driver_metadata.NetworkTopologyStrategy):
        return NetworkTopologyStrategy(
            {dc: int(rf) for dc, rf in strategy.dc_replication_factors.items()}
        )
    if isinstance(strategy, driver_metadata.LocalStrategy):
        return SimpleStrategy(1)
    return None


def _table_from_driver(keyspace: str, table_meta: Any) -> TableDef:
    partition_key = [ColumnDef(c.name, c.cql_type) for c in table_meta.partition_key]
    clustering = [ColumnDef(c.name, c.cql_type) for c in table_meta.clustering_key]
    key_names = {c.name for c in partition_key} | {c.name for c in clustering}
    regular = [
        ColumnDef(c.name, c.cql_type)
        for name, c in table_meta.columns.items()
        if name not in key_names
    ]
    return TableDef(keyspace, table_meta.name, partition_key, clustering, regular)


class CassandraTopologySource:
    """
    Topology source backed by the DataStax driver's cluster metadata.

    Args:
        contact_points: Initial node addresses to connect to
        port: Native protocol port
        cluster: An existing ``cassandra.cluster.Cluster`` to reuse
        **cluster_kwargs: Extra arguments for ``Cluster`` (auth provider, ssl, ...)
    """

    def __init__(
        self,
        contact_points: Iterable[str] = ("127.0.0.1",),
        port: int = 9042,
        cluster: Any | None = None,
        **cluster_kwargs: Any,
    ):
        self.contact_points = list(contact_points)
        self.port = port
        self._cluster = cluster
        self._cluster_kwargs = cluster_kwargs
        self._session: Any | None = None
        self._version = 0

    @property
    def cluster_name(self) -> str:
        """Key identifying the cluster in the process-wide topology cache."""
        points = ",".join(sorted(self.contact_points))
        return f"{points}:{self.port}"

    @property
    def cluster(self):
        """Lazy-create the driver cluster."""
        if self._cluster is None:
            from cassandra.cluster import Cluster

            self._cluster = Cluster(
                self.contact_points, port=self.port, **self._cluster_kwargs
            )
        return self._cluster

    def session(self):
        """Connected driver session, shared with single-partition reads."""
        if self._session is None:
            self._session = self.cluster.connect()
        return self._session

    def fetch(self) -> TopologySnapshot:
        self.session()
        self.cluster.refresh_nodes(force_token_rebuild=True)
        metadata = self.cluster.metadata
        token_map = metadata.token_map
        if token_map is None:
            raise TopologyUnavailable("Driver has no token metadata")

        entries = [
            (token.value, token_map.token_to_host_owner[token].address)
            for token in token_map.ring
        ]
        datacenters = {
            host.address: host.datacenter for host in metadata.all_hosts()
        }

        keyspaces: dict[str, ReplicationStrategy] = {}
        tables: dict[tuple[str, str], TableDef] = {}
        for name, keyspace_meta in metadata.keyspaces.items():
            strategy = _strategy_from_driver(keyspace_meta.replication_strategy)
            if strategy is None:
                logger.debug(f"Skipping keyspace {name}: unsupported replication")
                continue
            keyspaces[name] = strategy
            for table_name, table_meta in keyspace_meta.tables.items():
                tables[(name, table_name)] = _table_from_driver(name, table_meta)

        self._version += 1
        return TopologySnapshot(
            version=self._version,
            ring=TokenRing(entries),
            keyspaces=keyspaces,
            tables=tables,
            datacenters=datacenters,
        )

    def shutdown(self) -> None:
        if self._cluster is not None:
            self._cluster.shutdown()
        self._cluster = None
        self._session = None
