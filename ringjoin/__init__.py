try:
    from importlib.metadata import version

    __version__ = version("ringjoin")
except ImportError:
    __version__ = "unknown"

from ringjoin.config import (
    ConnectorConfig,
    JoinConfig,
    JoinSpec,
    JoinType,
    RepartitionConfig,
    TopologyConfig,
)
from ringjoin.connector import StoreConnector
from ringjoin.distributed import JobContext, PartitionedDataset
from ringjoin.errors import (
    ConfigurationError,
    JobCancelled,
    PartitionTaskError,
    RingJoinError,
    SchemaMismatch,
    StoreUnavailable,
    TopologyUnavailable,
    TransientStoreError,
)
from ringjoin.placement import (
    LocalityRepartitioner,
    ReplicaMapper,
    ReplicaPartitioner,
    SinglePartitionJoinExecutor,
)
from ringjoin.ring import (
    CassandraTopologySource,
    TokenRing,
    TopologyCache,
    TopologySnapshot,
)
from ringjoin.store import CassandraStore, TableDef

__all__ = [
    "StoreConnector",
    "ConnectorConfig",
    "TopologyConfig",
    "RepartitionConfig",
    "JoinConfig",
    "JoinSpec",
    "JoinType",
    "PartitionedDataset",
    "JobContext",
    "ReplicaMapper",
    "ReplicaPartitioner",
    "LocalityRepartitioner",
    "SinglePartitionJoinExecutor",
    "TokenRing",
    "TopologySnapshot",
    "TopologyCache",
    "CassandraTopologySource",
    "CassandraStore",
    "TableDef",
    "RingJoinError",
    "ConfigurationError",
    "SchemaMismatch",
    "TopologyUnavailable",
    "TransientStoreError",
    "StoreUnavailable",
    "JobCancelled",
    "PartitionTaskError",
]
