"""
Input data sources for partitioned datasets.

Each source partition becomes one dataset partition and can be read
independently. Readers yield polars DataFrames in batches; the dataset turns
their rows into record dicts.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator

import lance
import polars as pl


class DataSource(ABC):
    """
    Abstract interface for loading raw data partitions.

    The term "partition" is format-agnostic:
    - Lance: fragments
    - polars: contiguous row slices
    """

    @abstractmethod
    def get_partition_count(self) -> int:
        """Return total number of data partitions."""
        pass

    @abstractmethod
    def create_reader(
        self, partition_index: int, batch_size: int
    ) -> Iterator[pl.DataFrame]:
        """
        Create a reader/generator for a specific partition.

        Args:
            partition_index: Index of the partition to read (0 to get_partition_count()-1)
            batch_size: Maximum rows per yielded DataFrame

        Returns:
            Iterator of polars DataFrames

        Note:
            Lazy - nothing is read until the first batch is requested.
        """
        pass


class PolarsDataSource(DataSource):
    """
    Data source over an in-memory polars DataFrame.

    Rows are split into ``num_partitions`` contiguous slices of near-equal size.
    """

    def __init__(self, df: pl.DataFrame, num_partitions: int = 1):
        if num_partitions < 1:
            raise ValueError(f"num_partitions must be >= 1, got {num_partitions}")
        self.df = df
        self.num_partitions = num_partitions

    def get_partition_count(self) -> int:
        return self.num_partitions

    def _bounds(self, partition_index: int) -> tuple[int, int]:
        size, remainder = divmod(len(self.df), self.num_partitions)
        start = partition_index * size + min(partition_index, remainder)
        length = size + (1 if partition_index < remainder else 0)
        return start, length

    def create_reader(
        self, partition_index: int, batch_size: int
    ) -> Iterator[pl.DataFrame]:
        if not 0 <= partition_index < self.num_partitions:
            raise IndexError(
                f"Partition index {partition_index} out of range "
                f"(0 to {self.num_partitions - 1})"
            )
        start, length = self._bounds(partition_index)
        for offset in range(start, start + length, batch_size):
            yield self.df.slice(offset, min(batch_size, start + length - offset))


class LanceDataSource(DataSource):
    """
    Data source for Lance datasets.

    Uses fragments as partitions.
    """

    def __init__(self, lance_path: str, columns: list[str] | None = None):
        """
        Initialize Lance data source.

        Args:
            lance_path: Path to Lance dataset
            columns: Optional column projection
        """
        self.lance_path = lance_path
        self.columns = columns
        self._dataset: lance.LanceDataset | None = None
        self._fragment_count: int | None = None

    @property
    def dataset(self):
        """Lazy-load Lance dataset."""
        if self._dataset is None:
            self._dataset = lance.dataset(self.lance_path)
        return self._dataset

    def get_partition_count(self) -> int:
        """Return number of fragments in the Lance dataset."""
        if self._fragment_count is None:
            self._fragment_count = len(list(self.dataset.get_fragments()))
        assert self._fragment_count is not None
        return self._fragment_count

    def create_reader(
        self, partition_index: int, batch_size: int
    ) -> Iterator[pl.DataFrame]:
        """
        Create a reader for a specific fragment.

        Args:
            partition_index: Fragment index (0 to get_partition_count()-1)
            batch_size: Size of batches to yield

        Returns:
            Iterator of Polars DataFrames from the fragment
        """
        fragments = list(self.dataset.get_fragments())
        if partition_index >= len(fragments):
            raise IndexError(
                f"Partition index {partition_index} out of range "
                f"(0 to {len(fragments) - 1})"
            )

        fragment = fragments[partition_index]
        for batch in fragment.to_batches(batch_size=batch_size, columns=self.columns):
            yield pl.from_arrow(batch)
