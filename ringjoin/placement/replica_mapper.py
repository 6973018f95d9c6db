"""
Maps records to the store nodes holding a replica of their partition.

Pipeline per record: routing key bytes (PartitionKeyExtractor) -> Murmur3
token -> owner on the token ring (binary search) -> replica set under the
keyspace's replication strategy.
"""

from collections.abc import Iterable, Iterator
from typing import Generic, NamedTuple, TypeVar

from ringjoin.ring.token import token_for_key
from ringjoin.ring.topology import TopologyCache, TopologySnapshot
from ringjoin.store.rows import (
    AutoRowWriter,
    PartitionKeyExtractor,
    RoutingKeyExtractor,
    RowWriter,
)

T = TypeVar("T")

ReplicaSet = frozenset[str]


class Placement(NamedTuple):
    """Token of a record's partition and the nodes holding its replicas."""

    token: int
    replicas: ReplicaSet


class ReplicaMapper(Generic[T]):
    """
    Computes replica sets for records of type T against one table.

    A single topology snapshot is pinned at construction, so every record of
    one mapper is placed against the same ring.

    Args:
        topology: Topology cache (the current snapshot is fetched once) or a snapshot
        keyspace: Target keyspace
        table: Target table
        row_writer: Reads partition key values from records (default: AutoRowWriter)
        key_extractor: Overrides row_writer with a custom routing key function

    Raises:
        ConfigurationError: If the keyspace or table does not exist
        TopologyUnavailable: If no topology snapshot can be fetched

    Examples:
        >>> mapper = ReplicaMapper(cache, "shop", "orders")
        >>> mapper.replicas_for({"order_id": 42})
        frozenset({'10.0.0.1', '10.0.0.2'})
    """

    def __init__(
        self,
        topology: TopologyCache | TopologySnapshot,
        keyspace: str,
        table: str,
        row_writer: RowWriter | None = None,
        key_extractor: PartitionKeyExtractor | None = None,
    ):
        if isinstance(topology, TopologyCache):
            topology = topology.snapshot()
        self.snapshot = topology
        self.keyspace = keyspace
        self.table = topology.table(keyspace, table)
        self.key_extractor = key_extractor or RoutingKeyExtractor(
            self.table, row_writer or AutoRowWriter()
        )

    def token_for(self, record: T) -> int:
        """
        Murmur3 token of a record's partition key.

        Raises:
            SchemaMismatch: If the record cannot be mapped to the partition key
        """
        return token_for_key(self.key_extractor(record))

    def locate(self, record: T) -> Placement:
        token = self.token_for(record)
        return Placement(token, self.snapshot.replicas(self.keyspace, token))

    def replicas_for(self, record: T) -> ReplicaSet:
        """Node addresses holding a replica of the row a record maps to."""
        return self.locate(record).replicas

    def key_by_replicas(self, records: Iterable[T]) -> Iterator[tuple[ReplicaSet, T]]:
        """
        Pair every record with its replica set.

        Lazy and single pass: records are pulled one at a time and the input
        is consumed once. Iterating again requires a fresh input iterator.
        """
        for record in records:
            yield self.replicas_for(record), record

    def key_by_placement(self, records: Iterable[T]) -> Iterator[tuple[Placement, T]]:
        """Like key_by_replicas, keeping the token for load balancing."""
        for record in records:
            yield self.locate(record), record

    def __repr__(self) -> str:
        return (
            f"ReplicaMapper({self.table.qualified_name}, "
            f"topology_version={self.snapshot.version})"
        )

