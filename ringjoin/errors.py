"""
Error taxonomy for replica-aware placement and single-partition joins.

Structural errors (configuration, schema) are never retried and carry enough
context to diagnose without re-running the job. Transient errors are retried
locally with bounded backoff and surface as ``TopologyUnavailable`` or
``StoreUnavailable`` once attempts are exhausted.
"""

from typing import Any


class RingJoinError(Exception):
    """Base class for all ringjoin errors."""


class ConfigurationError(RingJoinError, ValueError):
    """Invalid configuration, or a keyspace/table/column that does not exist."""


class SchemaMismatch(RingJoinError):
    """A record cannot be mapped to the partition key of the target table."""

    def __init__(
        self,
        message: str,
        keyspace: str | None = None,
        table: str | None = None,
        column: str | None = None,
    ):
        self.keyspace = keyspace
        self.table = table
        self.column = column
        self.reason = message
        context = []
        if keyspace and table:
            context.append(f"table={keyspace}.{table}")
        if column:
            context.append(f"column={column}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class TopologyUnavailable(RingJoinError):
    """Token ring metadata could not be fetched or refreshed."""


class TransientStoreError(RingJoinError):
    """A retryable failure of a single store request."""


class StoreUnavailable(RingJoinError):
    """A single-partition request failed after exhausting its attempts."""

    def __init__(self, keyspace: str, table: str, key: Any, attempts: int):
        self.keyspace = keyspace
        self.table = table
        self.key = key
        self.attempts = attempts
        super().__init__(
            f"Request for key {key!r} on {keyspace}.{table} failed "
            f"after {attempts} attempt(s)"
        )


class JobCancelled(RingJoinError):
    """The enclosing job was cancelled."""


class PartitionTaskError(RingJoinError):
    """A partition task failed after exhausting its task attempts."""

    def __init__(self, partition_index: int, attempts: int):
        self.partition_index = partition_index
        self.attempts = attempts
        super().__init__(
            f"Task for partition {partition_index} failed after {attempts} attempt(s)"
        )
