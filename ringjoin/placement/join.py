"""
Join a dataset with a store table using single-partition requests.

For every input record the join columns are extracted and one request
restricted to that partition key is issued; the table is never scanned.
Within a local partition:

- at most ``concurrency`` requests are in flight
- identical keys are coalesced while in flight and served from a bounded LRU
  cache afterwards
- retryable failures are retried with bounded exponential backoff; a key that
  exhausts its attempts fails the partition with StoreUnavailable
- cancelling the job context stops new requests, cancels queued ones and
  interrupts backoff sleeps; a failing partition also stops its own
  remaining requests
"""

import threading
from collections import OrderedDict
from collections.abc import Hashable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Generic, TypeVar

from loguru import logger

from ringjoin.config import JoinConfig, JoinSpec, JoinType
from ringjoin.distributed.dataset import (
    JobContext,
    PartitionedDataset,
    current_job_context,
)
from ringjoin.errors import SchemaMismatch, StoreUnavailable, TransientStoreError
from ringjoin.ring.topology import TopologyCache, TopologySnapshot
from ringjoin.store.rows import AutoRowWriter, DictRowReader, RowReader, RowWriter
from ringjoin.store.session import SinglePartitionStore

T = TypeVar("T")
R = TypeVar("R")

RETRYABLE = (TransientStoreError, TimeoutError)


class LRUCache:
    """Thread-safe bounded mapping evicting the least recently used entry."""

    def __init__(self, maxsize: int):
        self.maxsize = maxsize
        self._data: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> tuple[bool, Any]:
        with self._lock:
            if key not in self._data:
                return False, None
            self._data.move_to_end(key)
            return True, self._data[key]

    def put(self, key: Hashable, value: Any) -> None:
        if self.maxsize <= 0:
            return
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


class SinglePartitionJoinExecutor(Generic[T, R]):
    """
    Executes a locality-friendly join against one store table.

    Args:
        store: Store serving single-partition reads
        topology: Topology cache or snapshot providing the table definition
        join_spec: Table, selected columns and join columns
        config: Concurrency, retry, timeout, cache and join type settings
        row_writer: Reads join column values from input records
        row_reader: Converts store rows into result objects (default: dicts)
        context: Job context used for cancellation. When partitions run as
            dataset job tasks, the running job's context cancels them too.

    Raises:
        ConfigurationError: On unknown table or columns, or join columns that
            do not restrict requests to a single partition

    Examples:
        >>> executor = SinglePartitionJoinExecutor(store, cache, JoinSpec("ks", "t"))
        >>> list(executor.join_partition([1, 3]))
        [(1, {'pk': 1, 'val': 'x'})]
    """

    def __init__(
        self,
        store: SinglePartitionStore,
        topology: TopologyCache | TopologySnapshot,
        join_spec: JoinSpec,
        config: JoinConfig | None = None,
        row_writer: RowWriter | None = None,
        row_reader: RowReader | None = None,
        context: JobContext | None = None,
    ):
        if isinstance(topology, TopologyCache):
            topology = topology.snapshot()
        self.store = store
        self.join_spec = join_spec
        self.config = config or JoinConfig()
        self.table = topology.table(join_spec.keyspace, join_spec.table)
        self.columns = self.table.resolve_selected(join_spec.selected_columns)
        self.join_columns = self.table.resolve_join_columns(join_spec.join_columns)
        self.row_writer = row_writer or AutoRowWriter()
        self.row_reader = row_reader or DictRowReader()
        self.context = context or JobContext()
        self._requests = 0
        self._stats_lock = threading.Lock()

    @property
    def requests_issued(self) -> int:
        """Store requests issued so far, retries included."""
        return self._requests

    def join_key(self, record: T) -> tuple:
        """
        Join column values of a record, in join column order.

        Raises:
            SchemaMismatch: If a join column is missing or a partition key value is null
        """
        try:
            values = self.row_writer.column_values(record, self.join_columns)
        except SchemaMismatch as err:
            raise SchemaMismatch(
                err.reason,
                keyspace=self.table.keyspace,
                table=self.table.table,
                column=err.column,
            ) from err
        for name, value in zip(self.join_columns, values, strict=True):
            if value is None and name in self.table.partition_key_names:
                raise SchemaMismatch(
                    "Partition key component must not be null",
                    keyspace=self.table.keyspace,
                    table=self.table.table,
                    column=name,
                )
        # Keys are cached and coalesced, so they must be hashable
        return tuple(bytes(v) if isinstance(v, bytearray) else v for v in values)

    def fetch(self, key: tuple, context: JobContext | None = None) -> list[R]:
        """
        Fetch the rows of one key, retrying retryable failures.

        Args:
            key: Join column values
            context: Context checked between attempts (default: the executor's)

        Raises:
            StoreUnavailable: When every attempt failed
            JobCancelled: If the job is cancelled before or between attempts
        """
        context = context or self.context
        last_error: Exception | None = None
        for attempt in range(1, self.config.max_attempts + 1):
            context.check()
            with self._stats_lock:
                self._requests += 1
            try:
                rows = self.store.fetch_partition(
                    self.table,
                    self.columns,
                    self.join_columns,
                    key,
                    self.config.request_timeout,
                )
            except RETRYABLE as err:
                last_error = err
                if attempt < self.config.max_attempts:
                    delay = self.config.backoff_delay(attempt)
                    logger.warning(
                        f"Request for {key!r} on {self.table.qualified_name} failed "
                        f"(attempt {attempt}/{self.config.max_attempts}): {err}; "
                        f"retrying in {delay:.2f}s"
                    )
                    context.sleep(delay)
                continue
            return [self.row_reader.read(row) for row in rows]

        raise StoreUnavailable(
            self.table.keyspace, self.table.table, key, self.config.max_attempts
        ) from last_error

    def _emit(self, record: T, rows: list[R]) -> Iterator[tuple[T, R | None]]:
        if rows:
            for row in rows:
                yield record, row
        elif self.config.join_type == JoinType.LEFT_OUTER:
            yield record, None

    def join_partition(self, records: Iterable[T]) -> Iterator[tuple[T, R | None]]:
        """
        Join the records of one local partition.

        Output order may differ from input order. With an inner join every
        record with at least one matching row appears once per row; with a left
        outer join unmatched records appear exactly once paired with None.
        """
        concurrency = self.config.concurrency
        cache = LRUCache(self.config.cache_size)
        pending: dict[Future, tuple] = {}
        waiting: dict[tuple, list[T]] = {}

        # Cancelled by the executor's context, the running job's context, or
        # this partition finishing or failing
        context = JobContext()
        parents = [self.context]
        job_context = current_job_context()
        if job_context is not None and job_context is not self.context:
            parents.append(job_context)
        for parent in parents:
            parent.link(context)

        def drain() -> Iterator[tuple[T, R | None]]:
            done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
            for future in done:
                key = pending.pop(future)
                rows = future.result()
                cache.put(key, rows)
                for record in waiting.pop(key):
                    yield from self._emit(record, rows)

        executor = ThreadPoolExecutor(max_workers=concurrency)
        try:
            for record in records:
                context.check()
                key = self.join_key(record)
                hit, rows = cache.get(key)
                if hit:
                    yield from self._emit(record, rows)
                    continue
                if key in waiting:
                    waiting[key].append(record)
                    continue
                while len(pending) >= concurrency:
                    yield from drain()
                waiting[key] = [record]
                pending[executor.submit(self.fetch, key, context)] = key
            while pending:
                yield from drain()
        finally:
            context.cancel()
            for future in pending:
                future.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            for parent in parents:
                parent.unlink(context)

    def join(self, dataset: PartitionedDataset[T]) -> PartitionedDataset[tuple[T, R | None]]:
        """Lazily join every partition of a dataset, keeping partition locations."""

        def join_one(_: int, records: Iterator[T]) -> Iterator[tuple[T, R | None]]:
            return self.join_partition(records)

        return dataset.map_partitions(join_one, preserves_locations=True)

    def __repr__(self) -> str:
        return (
            f"SinglePartitionJoinExecutor({self.table.qualified_name}, "
            f"on={self.join_columns}, type={self.config.join_type.value})"
        )
