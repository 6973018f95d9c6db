"""
Partitioned dataset execution.

A small stand-in for the host execution engine: lazily computed partitions
with preferred locations, a key-based shuffle, per-partition jobs on a thread
pool, and locality-aware partition assignment.
"""

from ringjoin.distributed.coordinator import Coordinator, PartitionAssignment
from ringjoin.distributed.data_source import (
    DataSource,
    LanceDataSource,
    PolarsDataSource,
)
from ringjoin.distributed.dataset import (
    JobContext,
    PartitionedDataset,
    Partitioner,
    current_job_context,
)

__all__ = [
    "DataSource",
    "LanceDataSource",
    "PolarsDataSource",
    "PartitionedDataset",
    "Partitioner",
    "JobContext",
    "current_job_context",
    "Coordinator",
    "PartitionAssignment",
]
