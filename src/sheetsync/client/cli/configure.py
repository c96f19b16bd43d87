"""Configuration commands for sheetsync CLI.

Commands:
- configure: Store the spreadsheet connection settings
- status: Check that the replica is reachable
"""

from __future__ import annotations

import asyncio
import sys

import click

from sheetsync.client.cli.config import (
    ConfigFileError,
    get_config_file,
    load_config,
    load_config_file,
    save_config,
)


@click.command()
@click.option("--spreadsheet-id", help="Spreadsheet holding the replica.")
@click.option("--token", help="OAuth access token (prefer SHEETSYNC_TOKEN).")
@click.option("--base-url", help="Values API base URL.")
@click.option(
    "--policy",
    type=click.Choice(["versioned", "identity"]),
    help="Merge policy for commits.",
)
def configure(
    spreadsheet_id: str | None,
    token: str | None,
    base_url: str | None,
    policy: str | None,
) -> None:
    """Store replica connection settings in the config file."""
    config = load_config()
    if spreadsheet_id:
        config["spreadsheet_id"] = spreadsheet_id.strip()
    if token:
        config["token"] = token.strip()
    if base_url:
        config["base_url"] = base_url.rstrip("/")
    if policy:
        config.setdefault("settings", {})["policy"] = policy

    save_config(config)
    try:
        load_config_file()
    except ConfigFileError as e:
        click.echo(f"Warning: {e}", err=True)
    click.echo(f"Configuration saved to {get_config_file()}")


@click.command()
@click.option("--token", envvar="SHEETSYNC_TOKEN", help="OAuth access token.")
def status(token: str | None) -> None:
    """Check that the spreadsheet is reachable."""
    from sheetsync.client.api import SheetsClient
    from sheetsync.client.cli.sync import replica_config

    try:
        config = replica_config(load_config_file(), token)
    except (ConfigFileError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    async def check() -> bool:
        async with SheetsClient(config) as client:
            return await client.health_check()

    if asyncio.run(check()):
        click.echo(f"Replica reachable: spreadsheet {config.spreadsheet_id}")
    else:
        click.echo(f"Error: cannot reach spreadsheet {config.spreadsheet_id}", err=True)
        sys.exit(1)
