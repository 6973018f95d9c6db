"""Tests for PartitionedDataset and JobContext."""

import threading

import polars as pl
import pytest

from ringjoin.distributed.data_source import PolarsDataSource
from ringjoin.distributed.dataset import (
    JobContext,
    PartitionedDataset,
    current_job_context,
)
from ringjoin.errors import (
    ConfigurationError,
    JobCancelled,
    PartitionTaskError,
    SchemaMismatch,
)


class ModPartitioner:
    """Routes integer keys by modulo."""

    def __init__(self, n: int):
        self.n = n

    @property
    def num_partitions(self) -> int:
        return self.n

    def get_partition(self, key) -> int:
        return key % self.n

    def preferred_locations(self, index: int) -> list[str]:
        return [f"host-{index}"]


class TestConstruction:
    """Test dataset constructors."""

    def test_parallelize_contiguous(self):
        """Test that parallelize splits records into contiguous chunks."""
        ds = PartitionedDataset.parallelize(range(10), num_partitions=3)
        assert ds.glom() == [[0, 1, 2, 3], [4, 5, 6], [7, 8, 9]]

    def test_parallelize_more_partitions_than_records(self):
        """Test edge case with more partitions than records."""
        ds = PartitionedDataset.parallelize([1], num_partitions=3)
        assert ds.glom() == [[1], [], []]

    def test_parallelize_invalid(self):
        """Test rejection of zero partitions."""
        with pytest.raises(ConfigurationError):
            PartitionedDataset.parallelize([1], num_partitions=0)

    def test_locations_must_match_partitions(self):
        """Test that locations need one entry per partition."""
        with pytest.raises(ConfigurationError):
            PartitionedDataset.from_partitions([[1], [2]], locations=[["a"]])

    def test_from_polars(self):
        """Test dataset of row dicts from a polars DataFrame."""
        df = pl.DataFrame({"pk": [1, 2, 3], "val": ["a", "b", "c"]})
        ds = PartitionedDataset.from_polars(df, num_partitions=2)
        assert ds.num_partitions == 2
        assert ds.collect() == [
            {"pk": 1, "val": "a"},
            {"pk": 2, "val": "b"},
            {"pk": 3, "val": "c"},
        ]

    def test_from_source_batches(self):
        """Test that records survive small read batches."""
        df = pl.DataFrame({"pk": list(range(10))})
        ds = PartitionedDataset.from_source(PolarsDataSource(df, 1), batch_size=3)
        assert [r["pk"] for r in ds.collect()] == list(range(10))

    def test_to_polars(self):
        """Test collecting mapping records into a DataFrame."""
        ds = PartitionedDataset.parallelize([{"pk": 1}, {"pk": 2}], 2)
        assert ds.to_polars()["pk"].to_list() == [1, 2]
        assert PartitionedDataset.parallelize([], 1).to_polars().is_empty()


class TestTransformations:
    """Test lazy transformations."""

    def test_map_partitions_is_lazy(self):
        """Test that map_partitions runs nothing until a job does."""
        calls = []

        def fn(index, records):
            calls.append(index)
            return (r * 2 for r in records)

        ds = PartitionedDataset.parallelize(range(4), 2).map_partitions(fn)
        assert calls == []
        assert ds.collect() == [0, 2, 4, 6]
        assert sorted(calls) == [0, 1]

    def test_map_keeps_locations(self):
        """Test that map keeps preferred hosts."""
        ds = PartitionedDataset.from_partitions([[1], [2]], [["a"], ["b"]])
        mapped = ds.map(lambda x: x + 1)
        assert mapped.collect() == [2, 3]
        assert mapped.preferred_locations(1) == ["b"]

    def test_map_partitions_drops_locations_by_default(self):
        """Test that map_partitions forgets hosts unless asked to keep them."""
        ds = PartitionedDataset.from_partitions([[1]], [["a"]])
        assert ds.map_partitions(lambda _, it: it).preferred_locations(0) == []

    def test_span_by_groups_adjacent_records(self):
        """Test that span_by only groups adjacent records of one partition."""
        ds = PartitionedDataset.from_partitions([[1, 1, 2, 1], [1, 3]])
        assert ds.span_by(lambda x: x).glom() == [
            [(1, [1, 1]), (2, [2]), (1, [1])],
            [(1, [1]), (3, [3])],
        ]

    def test_partition_by(self):
        """Test shuffling pairs into the partitioner's partitions."""
        ds = PartitionedDataset.parallelize([(k, f"v{k}") for k in range(6)], 2)
        shuffled = ds.partition_by(ModPartitioner(3))
        assert shuffled.num_partitions == 3
        assert shuffled.glom() == [
            [(0, "v0"), (3, "v3")],
            [(1, "v1"), (4, "v4")],
            [(2, "v2"), (5, "v5")],
        ]
        assert shuffled.preferred_locations(2) == ["host-2"]

    def test_count(self):
        """Test counting records across partitions."""
        assert PartitionedDataset.parallelize(range(7), 3).count() == 7


class TestRunJob:
    """Test job execution, retries and cancellation."""

    def test_results_in_partition_order(self):
        """Test that results come back in partition order."""
        ds = PartitionedDataset.parallelize(range(9), 3)
        assert ds.run_job(lambda i, it: (i, sum(it))) == [(0, 3), (1, 12), (2, 21)]

    def test_empty_dataset(self):
        """Test edge case with zero partitions."""
        assert PartitionedDataset([]).run_job(lambda i, it: i) == []

    def test_failed_partition_is_retried(self):
        """Test that only the failed partition is re-run."""
        attempts = {}
        lock = threading.Lock()

        def flaky(index, records):
            with lock:
                attempts[index] = attempts.get(index, 0) + 1
                first = attempts[index] == 1
            if index == 1 and first:
                raise ConnectionError("worker lost")
            return list(records)

        ds = PartitionedDataset.parallelize(range(4), 2, task_max_attempts=2)
        assert ds.run_job(flaky) == [[0, 1], [2, 3]]
        assert attempts == {0: 1, 1: 2}

    def test_exhausted_attempts(self):
        """Test PartitionTaskError chained to the last failure."""

        def failing(index, records):
            raise ConnectionError("down")

        ds = PartitionedDataset.parallelize(range(2), 1, task_max_attempts=3)
        with pytest.raises(PartitionTaskError) as exc_info:
            ds.run_job(failing)
        assert exc_info.value.partition_index == 0
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_structural_errors_are_not_retried(self):
        """Test that schema errors propagate after one attempt."""
        calls = []

        def bad_schema(index, records):
            calls.append(index)
            raise SchemaMismatch("no pk", column="pk")

        ds = PartitionedDataset.parallelize(range(2), 1, task_max_attempts=3)
        with pytest.raises(SchemaMismatch):
            ds.run_job(bad_schema)
        assert calls == [0]

    def test_failure_cancels_job(self):
        """Test that a failed partition cancels the job context."""
        context = JobContext()

        def failing(index, records):
            raise SchemaMismatch("no pk")

        ds = PartitionedDataset.parallelize(range(4), 4)
        with pytest.raises(SchemaMismatch):
            ds.run_job(failing, context)
        assert context.cancelled

    def test_cancelled_job_does_not_run(self):
        """Test that a cancelled context runs no partition."""
        context = JobContext()
        context.cancel()
        ds = PartitionedDataset.parallelize(range(4), 2)
        with pytest.raises(JobCancelled):
            ds.run_job(lambda i, it: list(it), context)

    def test_tasks_see_job_context(self):
        """Test that partition functions can reach the running job's context."""
        context = JobContext()
        ds = PartitionedDataset.parallelize(range(4), 2)

        seen = ds.run_job(lambda i, it: current_job_context(), context)

        assert all(c is context for c in seen)
        assert current_job_context() is None

    def test_invalid_settings(self):
        """Test rejection of invalid pool and retry settings."""
        with pytest.raises(ConfigurationError):
            PartitionedDataset([], max_workers=0)
        with pytest.raises(ConfigurationError):
            PartitionedDataset([], task_max_attempts=0)


class TestJobContext:
    """Test cancellation handle."""

    def test_check(self):
        """Test that check raises only after cancel."""
        context = JobContext()
        context.check()
        context.cancel()
        with pytest.raises(JobCancelled):
            context.check()

    def test_sleep_interrupted_by_cancel(self):
        """Test that cancel wakes a sleeping task."""
        context = JobContext()
        threading.Timer(0.05, context.cancel).start()
        with pytest.raises(JobCancelled):
            context.sleep(5)

    def test_sleep_completes(self):
        """Test a sleep that is not interrupted."""
        JobContext().sleep(0)

    def test_cancel_reaches_linked_contexts(self):
        """Test that cancelling a context cancels the contexts linked to it."""
        parent, child = JobContext(), JobContext()
        parent.link(child)
        parent.cancel()
        assert child.cancelled

    def test_link_to_cancelled_context(self):
        """Test that linking to a cancelled context cancels immediately."""
        parent, child = JobContext(), JobContext()
        parent.cancel()
        parent.link(child)
        assert child.cancelled

    def test_unlink(self):
        """Test that unlinked contexts are left alone."""
        parent, child = JobContext(), JobContext()
        parent.link(child)
        parent.unlink(child)
        parent.cancel()
        assert not child.cancelled

    def test_child_cancel_does_not_reach_parent(self):
        """Test that cancellation only flows from parent to child."""
        parent, child = JobContext(), JobContext()
        parent.link(child)
        child.cancel()
        assert not parent.cancelled
