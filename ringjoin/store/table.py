"""Read-only view of a target table's key layout."""

from collections.abc import Iterable, Sequence

from ringjoin.errors import ConfigurationError


class ColumnDef:
    """A column name and its CQL type name."""

    def __init__(self, name: str, cql_type: str):
        self.name = name
        self.cql_type = cql_type

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColumnDef):
            return NotImplemented
        return (self.name, self.cql_type) == (other.name, other.cql_type)

    def __hash__(self) -> int:
        return hash((self.name, self.cql_type))

    def __repr__(self) -> str:
        return f"ColumnDef({self.name!r}, {self.cql_type!r})"


class TableDef:
    """
    Key layout of a table in the target store.

    Schema definition and table creation are handled elsewhere; this class only
    describes what placement and joins need: the ordered partition key, the
    ordered clustering key and the full column list.

    Args:
        keyspace: Keyspace name
        table: Table name
        partition_key: Partition key columns, in key order
        clustering_columns: Clustering columns, in key order
        regular_columns: Remaining columns
    """

    def __init__(
        self,
        keyspace: str,
        table: str,
        partition_key: Sequence[ColumnDef],
        clustering_columns: Sequence[ColumnDef] = (),
        regular_columns: Sequence[ColumnDef] = (),
    ):
        if not partition_key:
            raise ConfigurationError(
                f"Table {keyspace}.{table} must have at least one partition key column"
            )
        self.keyspace = keyspace
        self.table = table
        self.partition_key = list(partition_key)
        self.clustering_columns = list(clustering_columns)
        self.regular_columns = list(regular_columns)

        names = [c.name for c in self.columns]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Duplicate column names in {self.qualified_name}")

    @property
    def qualified_name(self) -> str:
        return f"{self.keyspace}.{self.table}"

    @property
    def columns(self) -> list[ColumnDef]:
        return self.partition_key + self.clustering_columns + self.regular_columns

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def partition_key_names(self) -> list[str]:
        return [c.name for c in self.partition_key]

    def column(self, name: str) -> ColumnDef:
        for column in self.columns:
            if column.name == name:
                return column
        raise ConfigurationError(
            f"Column {name!r} not found in table {self.qualified_name}"
        )

    def resolve_selected(self, columns: Iterable[str] | None) -> list[str]:
        """Validate a column selection; None selects every column."""
        if columns is None:
            return self.column_names
        selected = list(columns)
        if not selected:
            raise ConfigurationError(
                f"Column selection for {self.qualified_name} must not be empty"
            )
        for name in selected:
            self.column(name)
        return selected

    def resolve_join_columns(self, columns: Iterable[str] | None) -> list[str]:
        """
        Validate join columns; None selects the partition key.

        Join columns must cover the whole partition key so every request stays
        within one partition. Additional columns must form a prefix of the
        clustering key.

        Raises:
            ConfigurationError: If the columns would not restrict the request
                to a single partition, or are not a valid clustering prefix
        """
        if columns is None:
            return self.partition_key_names
        selected = list(columns)
        for name in selected:
            self.column(name)

        missing = [n for n in self.partition_key_names if n not in selected]
        if missing:
            raise ConfigurationError(
                f"Join columns for {self.qualified_name} must include the full "
                f"partition key; missing {missing}"
            )

        extra = [n for n in selected if n not in self.partition_key_names]
        clustering = [c.name for c in self.clustering_columns]
        if set(extra) != set(clustering[: len(extra)]):
            raise ConfigurationError(
                f"Non partition key join columns {extra} of {self.qualified_name} "
                f"must be a prefix of the clustering key {clustering}"
            )
        return self.partition_key_names + clustering[: len(extra)]

    def __repr__(self) -> str:
        return (
            f"TableDef({self.qualified_name}, "
            f"partition_key={self.partition_key_names})"
        )
