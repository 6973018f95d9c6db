#!/usr/bin/env python3
"""ringjoin Command Line Interface."""

import uuid
from typing import Any

import typer

app = typer.Typer(
    name="ringjoin",
    help="ringjoin - Replica-aware placement and single-partition joins for Cassandra-style stores",
    add_completion=False,
)

_INTEGER_TYPES = {"int", "bigint", "smallint", "tinyint", "varint", "counter"}
_FLOAT_TYPES = {"float", "double"}


def _topology_source(contact_points: list[str], port: int):
    """Create the topology source used by the commands."""
    from ringjoin.ring.topology import CassandraTopologySource

    return CassandraTopologySource(contact_points, port=port)


def parse_key_value(cql_type: str, raw: str) -> Any:
    """Convert a command line string to a value of a partition key type."""
    cql_type = cql_type.lower()
    if cql_type in _INTEGER_TYPES:
        return int(raw)
    if cql_type in _FLOAT_TYPES:
        return float(raw)
    if cql_type == "boolean":
        if raw.lower() not in ("true", "false"):
            raise ValueError(f"expected true or false, got {raw!r}")
        return raw.lower() == "true"
    if cql_type in ("uuid", "timeuuid"):
        return uuid.UUID(raw)
    if cql_type == "blob":
        return bytes.fromhex(raw.removeprefix("0x"))
    return raw


@app.command()
def version():
    """Show ringjoin version."""
    try:
        import ringjoin

        typer.echo(f"ringjoin version: {getattr(ringjoin, '__version__', 'unknown')}")
    except ImportError:
        typer.echo("ringjoin not installed or not in PYTHONPATH")


@app.command()
def ring(
    contact_points: list[str] = typer.Option(
        ["127.0.0.1"], "--contact-point", "-c", help="Node address to connect to"
    ),
    port: int = typer.Option(9042, "--port", "-p", help="Native protocol port"),
    keyspace: str | None = typer.Option(
        None, "--keyspace", "-k", help="Show the replication of a keyspace"
    ),
):
    """Show the token ring of a cluster."""
    source = _topology_source(contact_points, port)
    try:
        snapshot = source.fetch()
    except Exception as e:
        typer.echo(f"❌ Failed to fetch topology: {e}")
        raise typer.Exit(1) from e
    finally:
        source.shutdown()

    typer.echo(
        f"🔗 Topology v{snapshot.version}: {len(snapshot.nodes)} nodes, "
        f"{len(snapshot.ring)} tokens"
    )
    for node in snapshot.nodes:
        datacenter = snapshot.datacenters.get(node, "?")
        owned = sum(1 for entry in snapshot.ring.entries if entry.node == node)
        typer.echo(f"  {node}  dc={datacenter}  tokens={owned}")

    if keyspace:
        try:
            strategy = snapshot.strategy(keyspace)
        except ValueError as e:
            typer.echo(f"❌ {e}")
            raise typer.Exit(1) from e
        typer.echo(f"📦 {keyspace}: {strategy!r}")


@app.command()
def replicas(
    keyspace: str = typer.Argument(..., help="Keyspace name"),
    table: str = typer.Argument(..., help="Table name"),
    key: list[str] = typer.Argument(
        ..., help="Partition key values, in partition key order"
    ),
    contact_points: list[str] = typer.Option(
        ["127.0.0.1"], "--contact-point", "-c", help="Node address to connect to"
    ),
    port: int = typer.Option(9042, "--port", "-p", help="Native protocol port"),
):
    """Show the token and replica nodes of a partition key."""
    from ringjoin.errors import RingJoinError
    from ringjoin.placement.replica_mapper import ReplicaMapper
    from ringjoin.store.rows import TupleRowWriter

    source = _topology_source(contact_points, port)
    try:
        snapshot = source.fetch()
    except Exception as e:
        typer.echo(f"❌ Failed to fetch topology: {e}")
        raise typer.Exit(1) from e
    finally:
        source.shutdown()

    try:
        table_def = snapshot.table(keyspace, table)
        columns = table_def.partition_key
        if len(key) != len(columns):
            typer.echo(
                f"❌ {table_def.qualified_name} has {len(columns)} partition key "
                f"column(s) {table_def.partition_key_names}, got {len(key)} value(s)"
            )
            raise typer.Exit(1)
        values = tuple(
            parse_key_value(column.cql_type, raw)
            for column, raw in zip(columns, key, strict=True)
        )
        mapper = ReplicaMapper(
            snapshot,
            keyspace,
            table,
            row_writer=TupleRowWriter(table_def.partition_key_names),
        )
        placement = mapper.locate(values)
    except (RingJoinError, ValueError) as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1) from e

    typer.echo(f"🎯 Token: {placement.token}")
    for node in sorted(placement.replicas):
        typer.echo(f"  {node}")


if __name__ == "__main__":
    app()
