"""
Partitioner assigning replica sets to host-affine output partitions.

Every store node gets a contiguous block of ``partitions_per_host`` output
partitions. A key is routed to the block of its representative node (the
smallest address in its replica set), and within that block to a
sub-partition chosen by a stable hash of the full key.
"""

import threading
from collections.abc import Callable, Iterable
from typing import Any

import xxhash
from loguru import logger

from ringjoin.errors import ConfigurationError
from ringjoin.placement.replica_mapper import Placement, ReplicaSet
from ringjoin.ring.ring import address_sort_key
from ringjoin.ring.topology import TopologySnapshot

FALLBACK_PARTITION = 0


class ReplicaPartitioner:
    """
    Deterministic replica-set -> partition index function.

    The host -> block mapping (HostPartitionAssignment) is fixed at
    construction and stable for identical host sets, so repeated shuffles over
    the same topology produce identical assignments.

    Args:
        partitions_per_host: Output partitions per host
        hosts: Node addresses that receive partitions
        on_unplaced: Called with the replica set of every key that could not
            be placed on a known host (routed to the fallback partition)

    Raises:
        ConfigurationError: If partitions_per_host < 1 or hosts is empty
    """

    def __init__(
        self,
        partitions_per_host: int,
        hosts: Iterable[str],
        on_unplaced: Callable[[ReplicaSet], None] | None = None,
    ):
        if partitions_per_host < 1:
            raise ConfigurationError(
                f"partitions_per_host must be >= 1, got {partitions_per_host}"
            )
        self.partitions_per_host = partitions_per_host
        self.hosts = sorted(set(hosts), key=address_sort_key)
        if not self.hosts:
            raise ConfigurationError("ReplicaPartitioner needs at least one host")
        self._block_start = {
            host: i * partitions_per_host for i, host in enumerate(self.hosts)
        }
        self._on_unplaced = on_unplaced
        self._unplaced = 0
        self._lock = threading.Lock()

    @classmethod
    def for_topology(
        cls,
        snapshot: TopologySnapshot,
        partitions_per_host: int = 10,
        datacenter: str | None = None,
        on_unplaced: Callable[[ReplicaSet], None] | None = None,
    ) -> "ReplicaPartitioner":
        """Partitioner over every ring node, or the nodes of one datacenter."""
        if datacenter is None:
            hosts = snapshot.nodes
        else:
            hosts = snapshot.nodes_in(datacenter)
            if not hosts:
                raise ConfigurationError(f"No nodes found in datacenter {datacenter!r}")
        return cls(partitions_per_host, hosts, on_unplaced)

    @property
    def num_partitions(self) -> int:
        return len(self.hosts) * self.partitions_per_host

    @property
    def host_blocks(self) -> dict[str, range]:
        """Host -> its contiguous range of partition indices."""
        return {
            host: range(start, start + self.partitions_per_host)
            for host, start in self._block_start.items()
        }

    @property
    def unplaced_count(self) -> int:
        """Keys routed to the fallback partition so far."""
        return self._unplaced

    def representative(self, replicas: Iterable[str]) -> str | None:
        """Smallest known address among the replicas, or None."""
        known = [r for r in replicas if r in self._block_start]
        if not known:
            return None
        return min(known, key=address_sort_key)

    def _sub_partition(self, replicas: ReplicaSet, token: int | None) -> int:
        data = b"\x00".join(
            r.encode("utf-8") for r in sorted(replicas, key=address_sort_key)
        )
        if token is not None:
            data += token.to_bytes(8, "big", signed=True)
        return xxhash.xxh3_64_intdigest(data) % self.partitions_per_host

    def partition_index(self, replicas: Iterable[str], token: int | None = None) -> int:
        """
        Output partition of a replica set.

        Args:
            replicas: Replica set of the key
            token: Optional token of the key; spreads keys sharing a replica
                set across the representative's sub-partitions

        Returns:
            Index in [0, num_partitions)
        """
        replicas = frozenset(replicas)
        host = self.representative(replicas)
        if host is None:
            with self._lock:
                self._unplaced += 1
                first = self._unplaced == 1
            if first:
                logger.warning(
                    f"Replica set {sorted(replicas)} has no known host; "
                    f"routing to fallback partition {FALLBACK_PARTITION}"
                )
            if self._on_unplaced is not None:
                self._on_unplaced(replicas)
            return FALLBACK_PARTITION
        return self._block_start[host] + self._sub_partition(replicas, token)

    def get_partition(self, key: Any) -> int:
        """Shuffle entry point; accepts a Placement or a bare replica set."""
        if isinstance(key, Placement):
            return self.partition_index(key.replicas, key.token)
        return self.partition_index(key)

    def preferred_locations(self, index: int) -> list[str]:
        """Host owning the block a partition index belongs to."""
        if not 0 <= index < self.num_partitions:
            raise IndexError(f"Partition index {index} out of range")
        return [self.hosts[index // self.partitions_per_host]]

    def __repr__(self) -> str:
        return (
            f"ReplicaPartitioner(hosts={len(self.hosts)}, "
            f"partitions_per_host={self.partitions_per_host})"
        )
