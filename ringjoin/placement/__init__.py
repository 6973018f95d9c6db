"""
Replica-aware placement and single-partition joins.
"""

from ringjoin.placement.join import LRUCache, SinglePartitionJoinExecutor
from ringjoin.placement.partitioner import ReplicaPartitioner
from ringjoin.placement.replica_mapper import Placement, ReplicaMapper, ReplicaSet
from ringjoin.placement.repartition import LocalityRepartitioner

__all__ = [
    "ReplicaSet",
    "Placement",
    "ReplicaMapper",
    "ReplicaPartitioner",
    "LocalityRepartitioner",
    "SinglePartitionJoinExecutor",
    "LRUCache",
]
