"""
Connector facade tying a cluster's topology cache, store and configuration
to the placement and join operations.

Configuration is passed explicitly. Only the topology cache is shared, one per
cluster and process.
"""

from typing import Any, TypeVar

from loguru import logger

from ringjoin.config import ConnectorConfig, JoinConfig, JoinSpec
from ringjoin.distributed.dataset import JobContext, PartitionedDataset
from ringjoin.placement.join import SinglePartitionJoinExecutor
from ringjoin.placement.replica_mapper import ReplicaMapper, ReplicaSet
from ringjoin.placement.repartition import LocalityRepartitioner
from ringjoin.ring.topology import TopologyCache, TopologySource
from ringjoin.store.rows import RowReader, RowWriter
from ringjoin.store.session import SinglePartitionStore
from ringjoin.store.writer import TableWriter, save_to_store

T = TypeVar("T")


class StoreConnector:
    """
    Entry point for replica-aware operations against one cluster.

    Args:
        source: Topology source for the cluster
        store: Store serving single-partition reads
        config: Connector configuration (defaults if None)
        topology: Existing topology cache to use
        cluster_name: Name of the process-wide topology cache to join. Defaults
            to the source's ``cluster_name`` if it has one; without a name the
            connector builds a private cache. The first connector of a cluster
            decides the cache's topology configuration.

    Examples:
        >>> source = CassandraTopologySource(["10.0.0.1"])
        >>> connector = StoreConnector(source, CassandraStore(source.session()))
        >>> local = connector.repartition_by_replica(ds, "shop", "orders")
        >>> joined = connector.join_with_table(local, "shop", "orders")
        >>> joined.collect()
    """

    def __init__(
        self,
        source: TopologySource,
        store: SinglePartitionStore,
        config: ConnectorConfig | None = None,
        topology: TopologyCache | None = None,
        cluster_name: str | None = None,
    ):
        self.config = config or ConnectorConfig()
        self.store = store
        cluster_name = cluster_name or getattr(source, "cluster_name", None)
        if topology is not None:
            self.topology = topology
        elif cluster_name:
            self.topology = TopologyCache.shared(
                cluster_name, lambda: source, self.config.topology
            )
        else:
            self.topology = TopologyCache(source, self.config.topology)

    def refresh_topology(self) -> None:
        """Refetch the ring, e.g. after a connection reset."""
        snapshot = self.topology.refresh()
        logger.info(f"Topology refreshed to v{snapshot.version}")

    def replica_mapper(
        self, keyspace: str, table: str, row_writer: RowWriter | None = None
    ) -> ReplicaMapper:
        return ReplicaMapper(self.topology, keyspace, table, row_writer)

    def key_by_replica(
        self,
        dataset: PartitionedDataset[T],
        keyspace: str,
        table: str,
        row_writer: RowWriter | None = None,
    ) -> PartitionedDataset[tuple[ReplicaSet, T]]:
        """Key every record by the addresses of the nodes holding its replicas."""
        repartitioner = LocalityRepartitioner(
            self.topology, self.config.repartition, row_writer
        )
        return repartitioner.key_by_replicas(dataset, JoinSpec(keyspace, table))

    def repartition_by_replica(
        self,
        dataset: PartitionedDataset[T],
        keyspace: str,
        table: str,
        partitions_per_host: int | None = None,
        row_writer: RowWriter | None = None,
    ) -> PartitionedDataset[T]:
        """
        Shuffle a dataset so each partition is affine to one store host.

        Calling this before join_with_table keeps requests coordinator local.
        """
        repartitioner = LocalityRepartitioner(
            self.topology, self.config.repartition, row_writer
        )
        return repartitioner.repartition(
            dataset, JoinSpec(keyspace, table), partitions_per_host
        )

    def join_with_table(
        self,
        dataset: PartitionedDataset[T],
        keyspace: str,
        table: str,
        selected_columns: tuple[str, ...] | None = None,
        join_columns: tuple[str, ...] | None = None,
        join_config: JoinConfig | None = None,
        row_writer: RowWriter | None = None,
        row_reader: RowReader | None = None,
        context: JobContext | None = None,
    ) -> PartitionedDataset[tuple[T, Any]]:
        """
        Join a dataset with a table through single-partition requests.

        By default joins on the table's partition key and returns all columns.
        """
        executor: SinglePartitionJoinExecutor = SinglePartitionJoinExecutor(
            self.store,
            self.topology,
            JoinSpec(keyspace, table, selected_columns, join_columns),
            join_config or self.config.join,
            row_writer=row_writer,
            row_reader=row_reader,
            context=context,
        )
        return executor.join(dataset)

    def save_to_table(
        self,
        dataset: PartitionedDataset[T],
        writer: TableWriter,
        context: JobContext | None = None,
    ) -> list[Any]:
        """Write every partition through a table writer."""
        return save_to_store(dataset, writer, context)
