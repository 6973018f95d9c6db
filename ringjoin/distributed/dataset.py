"""
Minimal partitioned dataset used as the host execution engine.

Each partition is a unit that can be computed and retried independently:
a partition is a function returning an iterator, optionally annotated with
the hosts it prefers to run on. Tasks run one per partition on a thread
pool; a failing partition is re-run alone up to ``task_max_attempts`` times.

This is not a general distributed engine. It provides the operations
placement and joins need: lazy map_partitions, a key-based shuffle,
per-partition jobs and cancellation.
"""

import functools
import itertools
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

import polars as pl
from loguru import logger

from ringjoin.errors import (
    ConfigurationError,
    JobCancelled,
    PartitionTaskError,
    SchemaMismatch,
)

if TYPE_CHECKING:
    from ringjoin.distributed.data_source import DataSource

T = TypeVar("T")
U = TypeVar("U")

# Errors that re-running a partition cannot fix
NON_RETRYABLE = (SchemaMismatch, ConfigurationError, JobCancelled)


_task_state = threading.local()


def current_job_context() -> "JobContext | None":
    """Context of the job whose partition task runs on this thread, if any."""
    return getattr(_task_state, "context", None)


class JobContext:
    """
    Cancellation handle shared by every task of a job.

    Contexts can be linked: cancelling a context also cancels every context
    linked to it, so work started under a narrower context (one partition's
    requests, say) stops together with the job.
    """

    def __init__(self):
        self._cancelled = threading.Event()
        self._children: list["JobContext"] = []
        self._lock = threading.Lock()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            children, self._children = self._children, []
        for child in children:
            child.cancel()

    def link(self, child: "JobContext") -> None:
        """Cancel child whenever this context is cancelled."""
        with self._lock:
            if not self._cancelled.is_set():
                self._children.append(child)
                return
        child.cancel()

    def unlink(self, child: "JobContext") -> None:
        with self._lock:
            self._children = [c for c in self._children if c is not child]

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self) -> None:
        """Raise JobCancelled if the job was cancelled."""
        if self._cancelled.is_set():
            raise JobCancelled("Job was cancelled")

    def sleep(self, seconds: float) -> None:
        """Sleep that wakes up early and raises if the job is cancelled."""
        if self._cancelled.wait(seconds):
            raise JobCancelled("Job was cancelled")


class Partitioner(Protocol):
    """Assigns shuffle keys to output partitions."""

    @property
    def num_partitions(self) -> int: ...

    def get_partition(self, key: Any) -> int: ...

    def preferred_locations(self, index: int) -> list[str]: ...


class PartitionedDataset(Generic[T]):
    """
    Lazily computed, partitioned collection of records.

    Args:
        partitions: One zero-argument function per partition returning its records
        locations: Preferred hosts per partition (empty lists if unknown)
        max_workers: Thread pool size for jobs
        task_max_attempts: Attempts per partition task before the job fails

    Examples:
        >>> ds = PartitionedDataset.parallelize(range(10), num_partitions=3)
        >>> ds.map_partitions(lambda i, it: (x * 2 for x in it)).collect()
        [0, 2, 4, 6, 8, 10, 12, 14, 16, 18]
    """

    def __init__(
        self,
        partitions: Sequence[Callable[[], Iterable[T]]],
        locations: Sequence[Sequence[str]] | None = None,
        max_workers: int = 8,
        task_max_attempts: int = 1,
    ):
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {max_workers}")
        if task_max_attempts < 1:
            raise ConfigurationError(
                f"task_max_attempts must be >= 1, got {task_max_attempts}"
            )
        self._partitions = list(partitions)
        if locations is None:
            self._locations = [[] for _ in self._partitions]
        else:
            if len(locations) != len(self._partitions):
                raise ConfigurationError(
                    "locations must have one entry per partition"
                )
            self._locations = [list(hosts) for hosts in locations]
        self.max_workers = max_workers
        self.task_max_attempts = task_max_attempts

    @classmethod
    def from_partitions(
        cls,
        partitions: Sequence[Sequence[T]],
        locations: Sequence[Sequence[str]] | None = None,
        **kwargs: Any,
    ) -> "PartitionedDataset[T]":
        """Dataset over already materialized partitions."""
        materialized = [list(part) for part in partitions]
        return cls(
            [functools.partial(iter, part) for part in materialized],
            locations,
            **kwargs,
        )

    @classmethod
    def parallelize(
        cls, records: Iterable[T], num_partitions: int = 1, **kwargs: Any
    ) -> "PartitionedDataset[T]":
        """Split records into contiguous, near-equal partitions."""
        if num_partitions < 1:
            raise ConfigurationError(
                f"num_partitions must be >= 1, got {num_partitions}"
            )
        items = list(records)
        size, remainder = divmod(len(items), num_partitions)
        partitions = []
        start = 0
        for index in range(num_partitions):
            end = start + size + (1 if index < remainder else 0)
            partitions.append(items[start:end])
            start = end
        return cls.from_partitions(partitions, **kwargs)

    @classmethod
    def from_polars(
        cls, df: pl.DataFrame, num_partitions: int = 1, **kwargs: Any
    ) -> "PartitionedDataset[dict[str, Any]]":
        """Dataset of row dicts from a polars DataFrame."""
        from ringjoin.distributed.data_source import PolarsDataSource

        return cls.from_source(PolarsDataSource(df, num_partitions), **kwargs)

    @classmethod
    def from_source(
        cls, source: "DataSource", batch_size: int = 65536, **kwargs: Any
    ) -> "PartitionedDataset[dict[str, Any]]":
        """Dataset of row dicts with one partition per source partition."""

        def read(index: int) -> Iterator[dict[str, Any]]:
            for batch in source.create_reader(index, batch_size):
                yield from batch.iter_rows(named=True)

        return cls(
            [functools.partial(read, i) for i in range(source.get_partition_count())],
            **kwargs,
        )

    @property
    def num_partitions(self) -> int:
        return len(self._partitions)

    def preferred_locations(self, index: int) -> list[str]:
        return list(self._locations[index])

    def iterator(self, index: int) -> Iterator[T]:
        """Compute one partition."""
        return iter(self._partitions[index]())

    def _derive(
        self, partitions: Sequence[Callable[[], Iterable[U]]], locations=None
    ) -> "PartitionedDataset[U]":
        return PartitionedDataset(
            partitions,
            locations,
            max_workers=self.max_workers,
            task_max_attempts=self.task_max_attempts,
        )

    def map_partitions(
        self,
        fn: Callable[[int, Iterator[T]], Iterable[U]],
        preserves_locations: bool = False,
    ) -> "PartitionedDataset[U]":
        """
        Lazily apply a function to every partition.

        Args:
            fn: Called with (partition_index, records); returns the new records
            preserves_locations: Keep the preferred hosts of the parent partitions
        """

        def compute(index: int) -> Iterable[U]:
            return fn(index, self.iterator(index))

        return self._derive(
            [functools.partial(compute, i) for i in range(self.num_partitions)],
            self._locations if preserves_locations else None,
        )

    def map(self, fn: Callable[[T], U]) -> "PartitionedDataset[U]":
        return self.map_partitions(lambda _, records: map(fn, records), True)

    def span_by(self, key: Callable[[T], Any]) -> "PartitionedDataset[tuple[Any, list[T]]]":
        """
        Group consecutive records with the same key.

        Unlike a group-by, records of a group must already be adjacent, and
        records of different partitions never share a group.
        """

        def spans(_: int, records: Iterator[T]) -> Iterator[tuple[Any, list[T]]]:
            for value, group in itertools.groupby(records, key=key):
                yield value, list(group)

        return self.map_partitions(spans, preserves_locations=True)

    def partition_by(
        self: "PartitionedDataset[tuple[Any, Any]]", partitioner: Partitioner
    ) -> "PartitionedDataset[tuple[Any, Any]]":
        """
        Shuffle (key, value) pairs into the partitioner's partitions.

        The shuffle is materialized eagerly; output partitions carry the
        partitioner's preferred locations. Within an output partition, pairs
        keep the order of their source partitions.
        """
        n_out = partitioner.num_partitions

        def bucket(_: int, pairs: Iterator[tuple[Any, Any]]) -> list[list]:
            buckets: list[list] = [[] for _ in range(n_out)]
            for key, value in pairs:
                buckets[partitioner.get_partition(key)].append((key, value))
            return buckets

        per_source = self.run_job(bucket)
        merged = [
            list(itertools.chain.from_iterable(b[i] for b in per_source))
            for i in range(n_out)
        ]
        logger.debug(
            f"Shuffled {sum(len(p) for p in merged)} records from "
            f"{self.num_partitions} into {n_out} partitions"
        )
        return PartitionedDataset.from_partitions(
            merged,
            [partitioner.preferred_locations(i) for i in range(n_out)],
            max_workers=self.max_workers,
            task_max_attempts=self.task_max_attempts,
        )

    def run_job(
        self,
        fn: Callable[[int, Iterator[T]], U],
        context: JobContext | None = None,
    ) -> list[U]:
        """
        Run fn once per partition, in parallel, and return results in partition order.

        A failing partition is retried alone. Structural errors (schema,
        configuration) and cancellation are not retried and propagate as is.
        When a partition exhausts its attempts the remaining tasks are
        cancelled and PartitionTaskError is raised, chained to the last error.
        """
        context = context or JobContext()
        if self.num_partitions == 0:
            return []

        def task(index: int) -> U:
            # Partition functions reach the job context via current_job_context()
            previous = current_job_context()
            _task_state.context = context
            try:
                for attempt in range(1, self.task_max_attempts + 1):
                    context.check()
                    try:
                        return fn(index, self.iterator(index))
                    except NON_RETRYABLE:
                        raise
                    except Exception as err:
                        if attempt >= self.task_max_attempts:
                            raise PartitionTaskError(index, attempt) from err
                        logger.warning(
                            f"Partition {index} attempt {attempt}/"
                            f"{self.task_max_attempts} failed: {err}"
                        )
                raise AssertionError("unreachable")
            finally:
                _task_state.context = previous

        workers = min(self.max_workers, self.num_partitions)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(task, i) for i in range(self.num_partitions)]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            failed = [f for f in futures if f in done and f.exception() is not None]
            if failed:
                # Abort the job: stop tasks that have not started yet
                context.cancel()
                for future in pending:
                    future.cancel()
                raise failed[0].exception()  # type: ignore[misc]
            return [f.result() for f in futures]

    def glom(self, context: JobContext | None = None) -> list[list[T]]:
        """Materialize every partition as a list."""
        return self.run_job(lambda _, records: list(records), context=context)

    def collect(self, context: JobContext | None = None) -> list[T]:
        return list(itertools.chain.from_iterable(self.glom(context)))

    def count(self) -> int:
        return sum(self.run_job(lambda _, records: sum(1 for _ in records)))

    def to_polars(self) -> pl.DataFrame:
        """Collect mapping records into a polars DataFrame."""
        records = self.collect()
        if not records:
            return pl.DataFrame()
        return pl.DataFrame(records)

    def __repr__(self) -> str:
        return f"PartitionedDataset(partitions={self.num_partitions})"
