"""
Token ring, replication strategies and cluster topology.
"""

from ringjoin.ring.ring import (
    NetworkTopologyStrategy,
    ReplicationStrategy,
    RingEntry,
    SimpleStrategy,
    TokenRing,
    address_sort_key,
)
from ringjoin.ring.token import (
    MAX_TOKEN,
    MIN_TOKEN,
    compose_routing_key,
    serialize_value,
    token_for_key,
)
from ringjoin.ring.topology import (
    CassandraTopologySource,
    TopologyCache,
    TopologySnapshot,
    TopologySource,
)

__all__ = [
    "TokenRing",
    "RingEntry",
    "ReplicationStrategy",
    "SimpleStrategy",
    "NetworkTopologyStrategy",
    "address_sort_key",
    "MIN_TOKEN",
    "MAX_TOKEN",
    "serialize_value",
    "compose_routing_key",
    "token_for_key",
    "TopologySnapshot",
    "TopologySource",
    "TopologyCache",
    "CassandraTopologySource",
]
