"""
Replica-based repartitioning of a dataset.

Keys every record by its placement (ReplicaMapper), shuffles with a
ReplicaPartitioner and strips the key again. The result holds exactly the
input records, laid out so that each output partition belongs to one store
host's block.

Co-location is at host granularity: two records with the same representative
node land in the same host's block, but only records whose keys also hash
identically share a physical partition.
"""

from collections.abc import Iterator
from typing import Any, TypeVar

from loguru import logger

from ringjoin.config import JoinSpec, RepartitionConfig
from ringjoin.distributed.dataset import PartitionedDataset
from ringjoin.placement.partitioner import ReplicaPartitioner
from ringjoin.placement.replica_mapper import ReplicaMapper, ReplicaSet
from ringjoin.ring.topology import TopologyCache, TopologySnapshot
from ringjoin.store.rows import RowWriter

T = TypeVar("T")


class LocalityRepartitioner:
    """
    Restructures datasets so partitions are affine to the store hosts that own their data.

    Args:
        topology: Topology cache or a fixed snapshot
        config: Repartition defaults (partitions per host, datacenter)
        row_writer: Reads partition key values from records

    Examples:
        >>> repartitioner = LocalityRepartitioner(cache)
        >>> local = repartitioner.repartition(ds, JoinSpec("shop", "orders"), 4)
        >>> local.preferred_locations(0)
        ['10.0.0.1']
    """

    def __init__(
        self,
        topology: TopologyCache | TopologySnapshot,
        config: RepartitionConfig | None = None,
        row_writer: RowWriter | None = None,
    ):
        self.topology = topology
        self.config = config or RepartitionConfig()
        self.row_writer = row_writer
        self.last_partitioner: ReplicaPartitioner | None = None

    def _snapshot(self) -> TopologySnapshot:
        if isinstance(self.topology, TopologyCache):
            return self.topology.snapshot()
        return self.topology

    def key_by_replicas(
        self, dataset: PartitionedDataset[T], join_spec: JoinSpec
    ) -> PartitionedDataset[tuple[ReplicaSet, T]]:
        """Pair every record with the addresses of the nodes holding its replicas."""
        mapper: ReplicaMapper[T] = ReplicaMapper(
            self._snapshot(), join_spec.keyspace, join_spec.table, self.row_writer
        )

        def key(_: int, records: Iterator[T]) -> Iterator[tuple[ReplicaSet, T]]:
            return mapper.key_by_replicas(records)

        return dataset.map_partitions(key)

    def repartition(
        self,
        dataset: PartitionedDataset[T],
        join_spec: JoinSpec,
        partitions_per_host: int | None = None,
    ) -> PartitionedDataset[T]:
        """
        Shuffle a dataset into host-affine partitions.

        One topology snapshot is used for the whole operation, so calling this
        twice with the same snapshot yields the same assignment.

        Args:
            dataset: Records convertible to the table's partition key
            join_spec: Target keyspace and table
            partitions_per_host: Output partitions per host (default from config)

        Returns:
            Dataset with num_hosts * partitions_per_host partitions, each
            preferring its block's host

        Raises:
            ConfigurationError: On invalid partitions_per_host or unknown table
            SchemaMismatch: If any record cannot be mapped; nothing is dropped
            TopologyUnavailable: If the ring cannot be fetched
        """
        if partitions_per_host is None:
            partitions_per_host = self.config.partitions_per_host
        else:
            partitions_per_host = RepartitionConfig(
                partitions_per_host, self.config.datacenter
            ).partitions_per_host

        snapshot = self._snapshot()
        mapper: ReplicaMapper[T] = ReplicaMapper(
            snapshot, join_spec.keyspace, join_spec.table, self.row_writer
        )
        partitioner = ReplicaPartitioner.for_topology(
            snapshot, partitions_per_host, self.config.datacenter
        )
        self.last_partitioner = partitioner

        def key(_: int, records: Iterator[T]) -> Iterator[tuple[Any, T]]:
            return mapper.key_by_placement(records)

        def strip(_: int, pairs: Iterator[tuple[Any, T]]) -> Iterator[T]:
            return (record for _, record in pairs)

        shuffled = dataset.map_partitions(key).partition_by(partitioner)
        logger.info(
            f"Repartitioned {dataset.num_partitions} partitions into "
            f"{partitioner.num_partitions} ({len(partitioner.hosts)} hosts x "
            f"{partitions_per_host}) for {join_spec.qualified_name} "
            f"at topology v{snapshot.version}"
        )
        if partitioner.unplaced_count:
            logger.warning(
                f"{partitioner.unplaced_count} records had no known replica host"
            )
        return shuffled.map_partitions(strip, preserves_locations=True)
