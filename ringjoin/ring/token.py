"""
Token computation compatible with the store's Murmur3 partitioner.

Partition key values are serialized with the CQL binary encoding of their
column type, composed into a routing key, and hashed with the driver's
Murmur3 implementation so tokens match what the store computes server side.
"""

import struct
from collections.abc import Sequence
from typing import Any

from cassandra import cqltypes
from cassandra.metadata import Murmur3Token

MIN_TOKEN = -(2**63)
MAX_TOKEN = 2**63 - 1

# Native protocol version used for value serialization. Partition key
# encodings are identical for every version >= 3.
PROTOCOL_VERSION = 4

# CQL type name -> driver marshal class
_CQL_TYPES: dict[str, type] = {
    "ascii": cqltypes.AsciiType,
    "bigint": cqltypes.LongType,
    "blob": cqltypes.BytesType,
    "boolean": cqltypes.BooleanType,
    "counter": cqltypes.CounterColumnType,
    "date": cqltypes.SimpleDateType,
    "decimal": cqltypes.DecimalType,
    "double": cqltypes.DoubleType,
    "float": cqltypes.FloatType,
    "inet": cqltypes.InetAddressType,
    "int": cqltypes.Int32Type,
    "smallint": cqltypes.ShortType,
    "text": cqltypes.UTF8Type,
    "timestamp": cqltypes.DateType,
    "timeuuid": cqltypes.TimeUUIDType,
    "tinyint": cqltypes.ByteType,
    "uuid": cqltypes.UUIDType,
    "varchar": cqltypes.UTF8Type,
    "varint": cqltypes.IntegerType,
}


def supported_cql_types() -> list[str]:
    """Names of the CQL types accepted in partition key columns."""
    return sorted(_CQL_TYPES)


def serialize_value(cql_type: str, value: Any) -> bytes:
    """
    Serialize a partition key component with its CQL binary encoding.

    Args:
        cql_type: CQL type name of the column (e.g. "int", "text")
        value: Python value for the column

    Returns:
        Serialized bytes

    Raises:
        KeyError: If the CQL type is not supported as a partition key type
        TypeError: If the value cannot be encoded as the given type
    """
    marshal = _CQL_TYPES[cql_type.lower()]
    if cql_type.lower() in ("text", "varchar", "ascii") and not isinstance(value, str):
        raise TypeError(f"expected str for {cql_type}, got {type(value).__name__}")
    if cql_type.lower() == "blob" and not isinstance(value, bytes | bytearray):
        raise TypeError(f"expected bytes for blob, got {type(value).__name__}")
    try:
        return marshal.serialize(value, PROTOCOL_VERSION)
    except (AttributeError, OverflowError, ValueError, struct.error) as err:
        raise TypeError(
            f"cannot encode {value!r} as {cql_type}: {err}"
        ) from err


def compose_routing_key(parts: Sequence[bytes]) -> bytes:
    """
    Compose serialized partition key components into a routing key.

    Single-column keys are used as is. Composite keys encode each component
    as a 2-byte big-endian length, the component bytes and a 0x00 terminator.
    """
    if len(parts) == 1:
        return bytes(parts[0])
    return b"".join(struct.pack(">H", len(part)) + part + b"\x00" for part in parts)


def token_for_key(routing_key: bytes) -> int:
    """Murmur3 token of a routing key, in [MIN_TOKEN + 1, MAX_TOKEN]."""
    return Murmur3Token.hash_fn(routing_key)
