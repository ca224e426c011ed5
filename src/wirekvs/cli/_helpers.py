"""Shared CLI helpers for credentials, async execution and output."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer

from wirekvs.config import ClientConfig, get_config
from wirekvs.errors import WireKVSError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command, turning library errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except WireKVSError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e


def configure_logging(verbose: bool) -> None:
    """Send library logs to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_config() -> ClientConfig:
    """Get the client configuration."""
    return get_config()


def require_database(
    config: ClientConfig, database_id: str | None, access_key: str | None
) -> tuple[str, str]:
    """Resolve database credentials from options, falling back to config."""
    database_id = database_id or config.credentials.database_id
    access_key = access_key or config.credentials.access_key
    if not database_id or not access_key:
        typer.secho(
            "No database credentials. Pass --database/--access-key or set "
            "WIREKVS_DATABASE_ID and WIREKVS_ACCESS_KEY.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(1)
    return database_id, access_key


def require_token(config: ClientConfig, token: str | None) -> str:
    """Resolve the account token from options, falling back to config."""
    token = token or config.credentials.token
    if not token:
        typer.secho(
            "No account token. Pass --token or set WIREKVS_TOKEN.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(1)
    return token


def parse_value(raw: str) -> Any:
    """Parse a CLI value as JSON, falling back to the plain string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def output_result(data: Any, as_json: bool = False) -> None:
    """Output a result as JSON or as readable text."""
    if as_json or not isinstance(data, dict):
        typer.echo(json.dumps(data, indent=2, default=str))
        return
    if not data:
        typer.secho("(empty)", fg=typer.colors.BRIGHT_BLACK)
        return
    for key, value in sorted(data.items()):
        typer.echo(f"{key} = {json.dumps(value, default=str)}")
