"""Tests for configuration objects."""

import pytest

from ringjoin.config import (
    ConnectorConfig,
    JoinConfig,
    JoinSpec,
    JoinType,
    RepartitionConfig,
    TopologyConfig,
)
from ringjoin.errors import ConfigurationError


class TestJoinSpec:
    """Test join target specs."""

    def test_columns_become_tuples(self):
        """Test that column lists are stored as tuples."""
        spec = JoinSpec("ks", "t", selected_columns=["a", "b"], join_columns=["pk"])
        assert spec.selected_columns == ("a", "b")
        assert spec.join_columns == ("pk",)
        assert spec.qualified_name == "ks.t"

    def test_defaults(self):
        """Test that columns default to None."""
        spec = JoinSpec("ks", "t")
        assert spec.selected_columns is None
        assert spec.join_columns is None

    def test_hashable(self):
        """Test that equal specs hash alike."""
        assert hash(JoinSpec("ks", "t", ["a"])) == hash(JoinSpec("ks", "t", ("a",)))

    @pytest.mark.parametrize("keyspace,table", [("", "t"), ("ks", "")])
    def test_requires_names(self, keyspace, table):
        """Test rejection of empty keyspace or table names."""
        with pytest.raises(ConfigurationError):
            JoinSpec(keyspace, table)


class TestSectionConfigs:
    """Test per-section settings."""

    def test_defaults(self):
        """Test default settings."""
        assert TopologyConfig().max_attempts == 3
        assert RepartitionConfig().partitions_per_host == 10
        config = JoinConfig()
        assert config.concurrency == 8
        assert config.cache_size == 128
        assert config.join_type is JoinType.INNER

    @pytest.mark.parametrize("value", [0, -1, 1.5, True, "4"])
    def test_partitions_per_host_must_be_positive_int(self, value):
        """Test rejection of anything but a positive int."""
        with pytest.raises(ConfigurationError):
            RepartitionConfig(partitions_per_host=value)

    def test_concurrency_must_be_positive(self):
        """Test rejection of zero concurrency."""
        with pytest.raises(ConfigurationError):
            JoinConfig(concurrency=0)

    def test_timeout_must_be_positive(self):
        """Test rejection of zero timeouts."""
        with pytest.raises(ConfigurationError):
            JoinConfig(request_timeout=0)

    def test_cache_can_be_disabled(self):
        """Test that a zero cache size is allowed."""
        assert JoinConfig(cache_size=0).cache_size == 0

    def test_unknown_join_type(self):
        """Test rejection of unknown join types."""
        with pytest.raises(ConfigurationError, match="Unsupported join type"):
            JoinConfig(join_type="full_outer")

    def test_configuration_error_is_value_error(self):
        """Test that configuration errors are value errors."""
        with pytest.raises(ValueError):
            TopologyConfig(max_attempts=0)


class TestConnectorConfig:
    """Test settings from a string-keyed map."""

    def test_from_mapping(self):
        """Test parsing every section from string values."""
        config = ConnectorConfig.from_mapping(
            {
                "ringjoin.partitions_per_host": "4",
                "ringjoin.datacenter": "dc1",
                "ringjoin.reads.concurrency": "16",
                "ringjoin.reads.timeout": "2.5",
                "ringjoin.join_type": "left_outer",
                "ringjoin.topology.max_attempts": 5,
                "spark.executor.memory": "4g",
            }
        )
        assert config.repartition.partitions_per_host == 4
        assert config.repartition.datacenter == "dc1"
        assert config.join.concurrency == 16
        assert config.join.request_timeout == 2.5
        assert config.join.join_type is JoinType.LEFT_OUTER
        assert config.topology.max_attempts == 5

    def test_empty_mapping_gives_defaults(self):
        """Test defaults for an empty map."""
        config = ConnectorConfig.from_mapping({})
        assert config.join.max_attempts == 3
        assert config.repartition.datacenter is None

    def test_unknown_setting(self):
        """Test rejection of unknown keys."""
        with pytest.raises(ConfigurationError, match="Unknown setting"):
            ConnectorConfig.from_mapping({"ringjoin.reads.concurency": "4"})

    def test_invalid_value(self):
        """Test rejection of values that do not parse."""
        with pytest.raises(ConfigurationError, match="Invalid value"):
            ConnectorConfig.from_mapping({"ringjoin.reads.concurrency": "many"})

    def test_out_of_range_value(self):
        """Test rejection of parsed values out of range."""
        with pytest.raises(ConfigurationError):
            ConnectorConfig.from_mapping({"ringjoin.partitions_per_host": "0"})
