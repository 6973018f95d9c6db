"""
Explicit configuration objects.

Every operation receives its configuration as an object built here; defaults
live in the constructors and values are validated eagerly so that a bad
setting fails before any data moves.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ringjoin.errors import ConfigurationError


class JoinType(str, Enum):
    """Join modes supported by the single-partition join."""

    INNER = "inner"
    LEFT_OUTER = "left_outer"


def _require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return value


def _require_non_negative_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(
            f"{name} must be a non-negative integer, got {value!r}"
        )
    return value


def _require_positive_float(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from err
    if number <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return number


def _require_non_negative_float(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from err
    if number < 0:
        raise ConfigurationError(f"{name} must not be negative, got {value!r}")
    return number


@dataclass(frozen=True)
class JoinSpec:
    """
    Target of a join or repartition: a table, the columns to return and the
    columns to join on.

    Args:
        keyspace: Keyspace name
        table: Table name
        selected_columns: Columns returned by the join (None: all columns)
        join_columns: Columns the join restricts on (None: the partition key)
    """

    keyspace: str
    table: str
    selected_columns: tuple[str, ...] | None = None
    join_columns: tuple[str, ...] | None = None

    def __post_init__(self):
        if not self.keyspace or not self.table:
            raise ConfigurationError("keyspace and table must be non-empty")
        # Accept any iterable of names, store tuples
        if self.selected_columns is not None:
            object.__setattr__(self, "selected_columns", tuple(self.selected_columns))
        if self.join_columns is not None:
            object.__setattr__(self, "join_columns", tuple(self.join_columns))

    @property
    def qualified_name(self) -> str:
        return f"{self.keyspace}.{self.table}"


class TopologyConfig:
    """
    Settings for fetching and refreshing token ring metadata.

    Args:
        max_attempts: Total fetch attempts per refresh before giving up
            with TopologyUnavailable. Default: 3.
        backoff_base: Delay in seconds before the second attempt; doubles
            on every further attempt. Default: 0.5.
        backoff_max: Upper bound for a single backoff delay. Default: 10.0.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 10.0,
    ):
        self.max_attempts = _require_positive_int("max_attempts", max_attempts)
        self.backoff_base = _require_non_negative_float("backoff_base", backoff_base)
        self.backoff_max = _require_non_negative_float("backoff_max", backoff_max)

    def __repr__(self) -> str:
        return (
            f"TopologyConfig(max_attempts={self.max_attempts}, "
            f"backoff_base={self.backoff_base}, backoff_max={self.backoff_max})"
        )


class RepartitionConfig:
    """
    Settings for replica-based repartitioning.

    Args:
        partitions_per_host: Output partitions created per store node. Default: 10.
        datacenter: Restrict target hosts to one datacenter. Replicas in other
            datacenters are ignored when choosing a representative. Default: None
            (all nodes of the ring).
    """

    def __init__(self, partitions_per_host: int = 10, datacenter: str | None = None):
        self.partitions_per_host = _require_positive_int(
            "partitions_per_host", partitions_per_host
        )
        self.datacenter = datacenter

    def __repr__(self) -> str:
        return (
            f"RepartitionConfig(partitions_per_host={self.partitions_per_host}, "
            f"datacenter={self.datacenter!r})"
        )


class JoinConfig:
    """
    Settings for the single-partition join.

    Args:
        concurrency: Maximum in-flight requests per local partition. Default: 8.
        max_attempts: Total attempts per key before StoreUnavailable. Default: 3.
        backoff_base: Delay in seconds before the first retry; doubles on every
            further retry. Default: 0.1.
        backoff_max: Upper bound for a single backoff delay. Default: 5.0.
        request_timeout: Per-request timeout in seconds. Default: 10.0.
        cache_size: Number of recently fetched keys kept per partition to avoid
            redundant requests. 0 disables the cache. Default: 128.
        join_type: "inner" or "left_outer". Default: "inner".
    """

    def __init__(
        self,
        concurrency: int = 8,
        max_attempts: int = 3,
        backoff_base: float = 0.1,
        backoff_max: float = 5.0,
        request_timeout: float = 10.0,
        cache_size: int = 128,
        join_type: JoinType | str = JoinType.INNER,
    ):
        self.concurrency = _require_positive_int("concurrency", concurrency)
        self.max_attempts = _require_positive_int("max_attempts", max_attempts)
        self.backoff_base = _require_non_negative_float("backoff_base", backoff_base)
        self.backoff_max = _require_non_negative_float("backoff_max", backoff_max)
        self.request_timeout = _require_positive_float(
            "request_timeout", request_timeout
        )
        self.cache_size = _require_non_negative_int("cache_size", cache_size)
        try:
            self.join_type = JoinType(join_type)
        except ValueError as err:
            raise ConfigurationError(f"Unsupported join type: {join_type!r}") from err

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)

    def __repr__(self) -> str:
        return (
            f"JoinConfig(concurrency={self.concurrency}, "
            f"max_attempts={self.max_attempts}, "
            f"request_timeout={self.request_timeout}, "
            f"cache_size={self.cache_size}, join_type={self.join_type.value!r})"
        )


class ConnectorConfig:
    """
    Aggregate configuration for a StoreConnector.

    Examples:
        >>> config = ConnectorConfig.from_mapping({
        ...     "ringjoin.partitions_per_host": "4",
        ...     "ringjoin.reads.concurrency": "16",
        ... })
        >>> config.repartition.partitions_per_host
        4
    """

    def __init__(
        self,
        topology: TopologyConfig | None = None,
        repartition: RepartitionConfig | None = None,
        join: JoinConfig | None = None,
    ):
        self.topology = topology or TopologyConfig()
        self.repartition = repartition or RepartitionConfig()
        self.join = join or JoinConfig()

    # Setting name -> (section, argument, converter)
    SETTINGS: dict[str, tuple[str, str, Any]] = {
        "ringjoin.topology.max_attempts": ("topology", "max_attempts", int),
        "ringjoin.topology.backoff_base": ("topology", "backoff_base", float),
        "ringjoin.topology.backoff_max": ("topology", "backoff_max", float),
        "ringjoin.partitions_per_host": ("repartition", "partitions_per_host", int),
        "ringjoin.datacenter": ("repartition", "datacenter", str),
        "ringjoin.reads.concurrency": ("join", "concurrency", int),
        "ringjoin.reads.max_attempts": ("join", "max_attempts", int),
        "ringjoin.reads.backoff_base": ("join", "backoff_base", float),
        "ringjoin.reads.backoff_max": ("join", "backoff_max", float),
        "ringjoin.reads.timeout": ("join", "request_timeout", float),
        "ringjoin.reads.cache_size": ("join", "cache_size", int),
        "ringjoin.join_type": ("join", "join_type", str),
    }

    @classmethod
    def from_mapping(cls, conf: Mapping[str, Any]) -> "ConnectorConfig":
        """
        Build a configuration from string-keyed settings.

        Unknown keys under the ``ringjoin.`` prefix are rejected; other keys
        are ignored so a shared job configuration can be passed as is.

        Raises:
            ConfigurationError: On unknown ringjoin keys or invalid values.
        """
        sections: dict[str, dict[str, Any]] = {
            "topology": {},
            "repartition": {},
            "join": {},
        }
        for key, raw in conf.items():
            if not key.startswith("ringjoin."):
                continue
            if key not in cls.SETTINGS:
                raise ConfigurationError(f"Unknown setting: {key}")
            section, argument, converter = cls.SETTINGS[key]
            try:
                sections[section][argument] = converter(raw)
            except (TypeError, ValueError) as err:
                raise ConfigurationError(
                    f"Invalid value for {key}: {raw!r}"
                ) from err

        return cls(
            topology=TopologyConfig(**sections["topology"]),
            repartition=RepartitionConfig(**sections["repartition"]),
            join=JoinConfig(**sections["join"]),
        )
