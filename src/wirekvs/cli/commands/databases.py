"""Account-level database management commands."""

from __future__ import annotations

import json
from typing import Annotated

import typer

from wirekvs.cli._helpers import load_config, require_token, run_async
from wirekvs.management import DatabaseConfig, DatabaseCredentials, DatabaseInfo, WireKVS

db_app = typer.Typer(help="Create, list and delete databases")

TokenOpt = Annotated[str | None, typer.Option("--token", "-t", help="Account token")]


def _client(token: str | None) -> WireKVS:
    config = load_config()
    return WireKVS(require_token(config, token), config=config.sync)


@db_app.command("list")
def db_list(
    token: TokenOpt = None,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List databases of the account.

    Examples:
        wirekvs db list
        wirekvs db list --json
    """

    async def _run() -> list[DatabaseInfo]:
        async with _client(token) as client:
            return await client.list_databases()

    databases = run_async(_run())

    if json_output:
        typer.echo(json.dumps([{"id": d.id, "name": d.name} for d in databases], indent=2))
        return
    if not databases:
        typer.secho("No databases.", fg=typer.colors.BRIGHT_BLACK)
        return
    for info in databases:
        typer.echo(f"{info.id}  {info.name or ''}".rstrip())


@db_app.command("create")
def db_create(
    name: Annotated[str, typer.Argument(help="Database name")],
    token: TokenOpt = None,
    public_reads: Annotated[bool, typer.Option("--public-reads", help="Allow public reads")] = False,
    public_writes: Annotated[
        bool, typer.Option("--public-writes", help="Allow public writes")
    ] = False,
    public_modifications: Annotated[
        bool, typer.Option("--public-modifications", help="Allow public modifications")
    ] = False,
    specific_public_reads: Annotated[
        bool, typer.Option("--specific-public-reads", help="Allow reads of specific keys")
    ] = False,
) -> None:
    """Create a database and print its credentials.

    Examples:
        wirekvs db create "Demo Database" --public-reads
    """
    db_config = DatabaseConfig(
        allow_public_writes=public_writes,
        allow_public_reads=public_reads,
        allow_public_modifications=public_modifications,
        allow_specific_public_reads=specific_public_reads,
    )

    async def _run() -> DatabaseCredentials:
        async with _client(token) as client:
            return await client.create_database(name, db_config)

    creds = run_async(_run())
    typer.secho("Database created!", fg=typer.colors.GREEN)
    typer.echo(f"  ID:         {creds.id}")
    typer.echo(f"  Access key: {creds.access_key}")


@db_app.command("delete")
def db_delete(
    database_id: Annotated[str, typer.Argument(help="Database ID")],
    token: TokenOpt = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete a database.

    Examples:
        wirekvs db delete abc123 --yes
    """
    if not yes:
        typer.confirm(f"Delete database {database_id}?", abort=True)

    async def _run() -> None:
        async with _client(token) as client:
            await client.delete_database(database_id)

    run_async(_run())
    typer.secho(f"Deleted {database_id}", fg=typer.colors.GREEN)
