"""
Locality-aware partition assignment coordinator.

Assigns dataset partitions to workers, preferring a worker that runs on one of
the partition's preferred hosts so that host-affine partitions are processed
next to the store node that owns their data.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING

from loguru import logger

from ringjoin.ring.ring import address_sort_key

if TYPE_CHECKING:
    from ringjoin.distributed.dataset import PartitionedDataset


class PartitionAssignment:
    """Assignment of partitions to a worker."""

    def __init__(
        self,
        worker_id: str,
        host: str,
        partition_indices: list[int],
        local_count: int = 0,
    ):
        self.worker_id = worker_id
        self.host = host
        self.partition_indices = partition_indices
        # Partitions whose preferred hosts include this worker's host
        self.local_count = local_count

    def __repr__(self) -> str:
        return (
            f"PartitionAssignment({self.worker_id!r}, host={self.host!r}, "
            f"partitions={self.partition_indices})"
        )


class Coordinator:
    """
    Partition assignment coordinator.

    Each partition goes to the least-loaded worker on one of its preferred
    hosts; partitions with no such worker go to the least-loaded worker
    overall. Ties break on worker id, so assignment is deterministic.
    """

    def __init__(self, dataset: "PartitionedDataset", workers: Mapping[str, str]):
        """
        Initialize coordinator.

        Args:
            dataset: Dataset whose partitions are assigned
            workers: Worker id -> host address the worker runs on
        """
        if not workers:
            raise ValueError("At least one worker is required")
        self.dataset = dataset
        self.workers = dict(workers)
        self.total_partitions = dataset.num_partitions

    def assign_partitions(self) -> dict[str, PartitionAssignment]:
        """
        Assign every partition to exactly one worker.

        Returns:
            Dictionary mapping worker_id -> PartitionAssignment
        """
        worker_ids = sorted(self.workers)
        assignments = {
            worker_id: PartitionAssignment(worker_id, self.workers[worker_id], [])
            for worker_id in worker_ids
        }
        local_counts = dict.fromkeys(worker_ids, 0)
        by_host: dict[str, list[str]] = {}
        for worker_id in worker_ids:
            by_host.setdefault(self.workers[worker_id], []).append(worker_id)

        def load(worker_id: str) -> tuple[int, str]:
            return len(assignments[worker_id].partition_indices), worker_id

        for index in range(self.total_partitions):
            preferred = sorted(
                self.dataset.preferred_locations(index), key=address_sort_key
            )
            local = [w for host in preferred for w in by_host.get(host, [])]
            if local:
                chosen = min(local, key=load)
                local_counts[chosen] += 1
            else:
                chosen = min(worker_ids, key=load)
            assignments[chosen].partition_indices.append(index)

        for worker_id, assignment in assignments.items():
            assignment.local_count = local_counts[worker_id]

        remote = self.total_partitions - sum(local_counts.values())
        if remote:
            logger.info(
                f"{remote} of {self.total_partitions} partitions have no worker "
                "on a preferred host"
            )
        return assignments
