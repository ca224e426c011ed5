"""WireKVS CLI main entry point."""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Any

import typer

from wirekvs.cli._helpers import (
    configure_logging,
    load_config,
    output_result,
    parse_value,
    require_database,
    run_async,
)
from wirekvs.cli.commands.databases import db_app
from wirekvs.database import Database
from wirekvs.sync.protocol import GapMarker

app = typer.Typer(
    name="wirekvs",
    help="WireKVS - real-time key-value database client",
    no_args_is_help=True,
)
app.add_typer(db_app, name="db")

DatabaseOpt = Annotated[
    str | None, typer.Option("--database", "-d", help="Database ID (or WIREKVS_DATABASE_ID)")
]
AccessKeyOpt = Annotated[
    str | None, typer.Option("--access-key", "-k", help="Access key (or WIREKVS_ACCESS_KEY)")
]
TimeoutOpt = Annotated[
    float, typer.Option("--timeout", help="Seconds to wait for the initial sync")
]


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    """WireKVS command-line client."""
    configure_logging(verbose)


def _open_database(database_id: str | None, access_key: str | None) -> Database:
    config = load_config()
    db_id, key = require_database(config, database_id, access_key)
    return Database(db_id, key, config=config.sync)


async def _with_ready(db: Database, timeout: float) -> None:
    try:
        await db.wait_ready(timeout)
    except asyncio.TimeoutError:
        typer.secho(f"Timed out after {timeout}s waiting for sync", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None


@app.command()
def get(
    key: Annotated[str, typer.Argument(help="Key to read")],
    database: DatabaseOpt = None,
    access_key: AccessKeyOpt = None,
    timeout: TimeoutOpt = 15.0,
) -> None:
    """Read one value.

    Examples:
        wirekvs get greeting
    """

    async def _run() -> Any:
        async with _open_database(database, access_key) as db:
            await _with_ready(db, timeout)
            return await db.get(key)

    value = run_async(_run())
    if value is None:
        typer.secho(f"'{key}' not found", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(value, indent=2, default=str))


@app.command("set")
def set_value(
    key: Annotated[str, typer.Argument(help="Key to write")],
    value: Annotated[str, typer.Argument(help="Value (JSON, or a plain string)")],
    database: DatabaseOpt = None,
    access_key: AccessKeyOpt = None,
) -> None:
    """Write one value.

    Examples:
        wirekvs set greeting '"Hello"'
        wirekvs set config '{"retries": 3}'
    """

    async def _run() -> None:
        async with _open_database(database, access_key) as db:
            await db.set(key, parse_value(value))

    run_async(_run())
    typer.secho(f"Set '{key}'", fg=typer.colors.GREEN)


@app.command()
def delete(
    key: Annotated[str, typer.Argument(help="Key to delete")],
    database: DatabaseOpt = None,
    access_key: AccessKeyOpt = None,
) -> None:
    """Delete one key.

    Examples:
        wirekvs delete greeting
    """

    async def _run() -> None:
        async with _open_database(database, access_key) as db:
            await db.delete(key)

    run_async(_run())
    typer.secho(f"Deleted '{key}'", fg=typer.colors.GREEN)


@app.command()
def entries(
    database: DatabaseOpt = None,
    access_key: AccessKeyOpt = None,
    timeout: TimeoutOpt = 15.0,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List every entry.

    Examples:
        wirekvs entries
        wirekvs entries --json
    """

    async def _run() -> dict[str, Any]:
        async with _open_database(database, access_key) as db:
            await _with_ready(db, timeout)
            return await db.get_all_entries()

    output_result(run_async(_run()), as_json=json_output)


@app.command()
def watch(
    database: DatabaseOpt = None,
    access_key: AccessKeyOpt = None,
    timeout: TimeoutOpt = 15.0,
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Stop after N changes (0 = forever)")
    ] = 0,
) -> None:
    """Stream changes as they happen.

    Examples:
        wirekvs watch
        wirekvs watch --limit 10
    """

    async def _run() -> None:
        async with _open_database(database, access_key) as db:
            subscriber = db.subscribe()
            await _with_ready(db, timeout)
            typer.secho(f"Watching {db.id} (Ctrl+C to stop)", fg=typer.colors.BRIGHT_BLACK)

            seen = 0
            async for item in subscriber:
                if isinstance(item, GapMarker):
                    typer.secho(f"! missed {item.missed} change(s)", fg=typer.colors.YELLOW)
                    continue
                if item.deleted:
                    typer.secho(f"- {item.key}", fg=typer.colors.RED)
                else:
                    typer.echo(f"+ {item.key} = {json.dumps(item.value, default=str)}")
                seen += 1
                if limit and seen >= limit:
                    break

    try:
        run_async(_run())
    except KeyboardInterrupt:
        typer.echo("")


def main() -> None:
    """Main entry point."""
    app()
