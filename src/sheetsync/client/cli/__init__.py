"""Command-line interface for sheetsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store replica connection settings
- status: Check that the replica is reachable
- pull: Print a collection's records as JSON
- push: Commit records from a JSON file
- clear: Clear a collection's range
"""

from __future__ import annotations

import click

from sheetsync.client.cli.config import (
    configure_logging,
    get_config_dir,
    get_config_file,
    load_config,
    load_config_file,
    save_config,
)
from sheetsync.client.cli.configure import configure, status
from sheetsync.client.cli.sync import clear, pull, push


@click.group()
@click.version_option(package_name="sheetsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """sheetsync - Optimistic synchronization with a spreadsheet replica."""
    configure_logging(verbose)


# Configuration commands
cli.add_command(configure)
cli.add_command(status)

# Sync commands
cli.add_command(pull)
cli.add_command(push)
cli.add_command(clear)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "load_config",
    "load_config_file",
    "save_config",
]
