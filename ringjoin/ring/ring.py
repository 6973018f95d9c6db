"""Token ring and replica placement.

The ring is a pure data structure describing which node owns which range of
the signed 64-bit token space. Each token marks the end (inclusive) of the
range owned by its node; a point is owned by the first token >= the point,
wrapping around to the first token past the end of the ring.

Example:
    ring = TokenRing([(-100, "10.0.0.1"), (0, "10.0.0.2"), (100, "10.0.0.3")])
    ring.primary(-5)                              # "10.0.0.2"
    SimpleStrategy(2).replicas(ring, 150)         # ("10.0.0.1", "10.0.0.2")
"""

from __future__ import annotations

import bisect
import ipaddress
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from ringjoin.errors import ConfigurationError


def address_sort_key(address: str) -> tuple:
    """Sort key ordering IP addresses numerically and anything else by text."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return (1, 0, address)
    return (0, ip.version, int(ip))


@dataclass(frozen=True, slots=True)
class RingEntry:
    """One token of the ring and the node that owns the range ending at it."""

    token: int
    node: str


class TokenRing:
    """Ordered (token, node) pairs covering the full token space.

    Lookups are O(log n) via binary search over the sorted tokens.
    """

    def __init__(self, entries: Iterable[tuple[int, str]]) -> None:
        ordered = sorted((int(token), node) for token, node in entries)
        for (left, _), (right, _) in zip(ordered, ordered[1:]):
            if left == right:
                raise ConfigurationError(f"Duplicate token on the ring: {left}")
        self._entries = [RingEntry(token, node) for token, node in ordered]
        self._tokens = [entry.token for entry in self._entries]
        self._nodes = frozenset(entry.node for entry in self._entries)

    def index_of(self, token: int) -> int:
        """Index of the ring entry owning a token."""
        if not self._entries:
            raise LookupError("Token ring is empty")
        idx = bisect.bisect_left(self._tokens, token)
        # Wrap around to first entry if past the end
        if idx >= len(self._entries):
            idx = 0
        return idx

    def primary(self, token: int) -> str:
        """Node owning the range containing a token."""
        return self._entries[self.index_of(token)].node

    def walk(self, token: int) -> Iterable[str]:
        """Nodes of every entry clockwise from the owner of a token, once around."""
        start = self.index_of(token)
        size = len(self._entries)
        for i in range(size):
            yield self._entries[(start + i) % size].node

    @property
    def entries(self) -> list[RingEntry]:
        return list(self._entries)

    @property
    def nodes(self) -> frozenset[str]:
        """Distinct physical nodes on the ring."""
        return self._nodes

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TokenRing):
            return NotImplemented
        return self._entries == other._entries

    def __hash__(self) -> int:
        return hash(tuple(self._entries))

    def __repr__(self) -> str:
        return f"TokenRing(tokens={len(self._entries)}, nodes={len(self._nodes)})"


class ReplicationStrategy(ABC):
    """Placement rule mapping a token to the ordered nodes holding replicas."""

    @property
    @abstractmethod
    def replication_factor(self) -> int:
        """Maximum number of replicas returned."""

    @abstractmethod
    def replicas(
        self,
        ring: TokenRing,
        token: int,
        datacenters: Mapping[str, str] | None = None,
    ) -> tuple[str, ...]:
        """
        Replica nodes for a token, primary first.

        Args:
            ring: Token ring to walk
            token: Token of the partition
            datacenters: Node -> datacenter mapping (used by topology-aware strategies)
        """


class SimpleStrategy(ReplicationStrategy):
    """The first ``replication_factor`` distinct nodes clockwise from the owner."""

    def __init__(self, replication_factor: int) -> None:
        if replication_factor < 1:
            raise ConfigurationError(
                f"replication_factor must be >= 1, got {replication_factor}"
            )
        self._replication_factor = replication_factor

    @property
    def replication_factor(self) -> int:
        return self._replication_factor

    def replicas(self, ring, token, datacenters=None):
        if not ring:
            return ()
        result: list[str] = []
        seen: set[str] = set()
        for node in ring.walk(token):
            if node not in seen:
                seen.add(node)
                result.append(node)
                if len(result) >= self._replication_factor:
                    break
        return tuple(result)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SimpleStrategy):
            return NotImplemented
        return self._replication_factor == other._replication_factor

    def __hash__(self) -> int:
        return hash(("simple", self._replication_factor))

    def __repr__(self) -> str:
        return f"SimpleStrategy(replication_factor={self._replication_factor})"


class NetworkTopologyStrategy(ReplicationStrategy):
    """Per-datacenter replication factors.

    For each datacenter, collects that datacenter's distinct nodes walking
    clockwise from the owner of the token. Rack placement is not modelled.
    """

    def __init__(self, dc_replication_factors: Mapping[str, int]) -> None:
        for dc, factor in dc_replication_factors.items():
            if factor < 0:
                raise ConfigurationError(
                    f"replication factor for {dc} must be >= 0, got {factor}"
                )
        self.dc_replication_factors = dict(dc_replication_factors)

    @property
    def replication_factor(self) -> int:
        return sum(self.dc_replication_factors.values())

    def replicas(self, ring, token, datacenters=None):
        if not ring:
            return ()
        datacenters = datacenters or {}
        remaining = {dc: f for dc, f in self.dc_replication_factors.items() if f > 0}
        result: list[str] = []
        seen: set[str] = set()
        for node in ring.walk(token):
            if not remaining:
                break
            if node in seen:
                continue
            dc = datacenters.get(node)
            if dc in remaining:
                seen.add(node)
                result.append(node)
                remaining[dc] -= 1
                if remaining[dc] == 0:
                    del remaining[dc]
        return tuple(result)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NetworkTopologyStrategy):
            return NotImplemented
        return self.dc_replication_factors == other.dc_replication_factors

    def __hash__(self) -> int:
        return hash(("nts", tuple(sorted(self.dc_replication_factors.items()))))

    def __repr__(self) -> str:
        return f"NetworkTopologyStrategy({self.dc_replication_factors})"
