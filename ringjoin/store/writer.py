"""
Bulk write boundary.

Batching, retries and consistency handling belong to the TableWriter
implementation; this module only runs a writer once per partition.
"""

from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Protocol

from loguru import logger

if TYPE_CHECKING:
    from ringjoin.distributed.dataset import JobContext, PartitionedDataset


class TableWriter(Protocol):
    """Sink that writes the records of one partition to a table."""

    def write(self, partition_index: int, records: Iterator[Any]) -> Any:
        """
        Write every record of a partition.

        Returns:
            Writer-specific result for the partition (e.g. rows written)
        """
        ...


def save_to_store(
    dataset: "PartitionedDataset",
    writer: TableWriter,
    context: "JobContext | None" = None,
) -> list[Any]:
    """
    Run a writer over every partition of a dataset.

    Args:
        dataset: Records to write
        writer: Table writer
        context: Optional job context for cancellation

    Returns:
        Per-partition writer results, in partition order
    """
    results = dataset.run_job(writer.write, context=context)
    logger.info(f"Saved {dataset.num_partitions} partitions")
    return results
