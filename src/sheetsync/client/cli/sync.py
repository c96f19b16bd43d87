"""Sync commands for sheetsync CLI.

Commands:
- pull: Print a collection's records as JSON
- push: Commit records from a JSON file to a collection
- clear: Clear a collection's range
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import click

from sheetsync.client.cli.config import ConfigFileError, load_config_file
from sheetsync.client.cli.schema import ConfigFile
from sheetsync.client.sync import (
    Collection,
    Conflict,
    SyncCoordinator,
    SyncError,
    format_conflict_message,
)
from sheetsync.core.config import ReplicaConfig

token_option = click.option("--token", envvar="SHEETSYNC_TOKEN", help="OAuth access token.")


def replica_config(config_file: ConfigFile, token: str | None = None) -> ReplicaConfig:
    """Build a validated ReplicaConfig from the config file.

    Raises:
        ConfigurationError: If the spreadsheet id or token is missing.
    """
    config = ReplicaConfig(
        spreadsheet_id=config_file.spreadsheet_id,
        token=token or config_file.token,
        base_url=config_file.base_url,
        timeout=config_file.timeout,
    )
    config.validate()
    return config


def _open(collection_key: str, token: str | None) -> tuple[SyncCoordinator, Collection]:
    """Load config and build a coordinator for one collection, or exit."""
    try:
        config_file = load_config_file()
        config = replica_config(config_file, token)
        collection = config_file.collection(collection_key)
    except KeyError:
        click.echo(f"Error: unknown collection {collection_key!r}", err=True)
        sys.exit(1)
    except (ConfigFileError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    coordinator = SyncCoordinator.from_config(config, config_file.settings.to_settings())
    return coordinator, collection


def _print_conflicts(key: str, conflicts: Sequence[Conflict]) -> None:
    click.echo(f"Warning: {key}: {format_conflict_message(conflicts)}", err=True)


def records_from_json(collection: Collection, items: Any) -> list[Any]:
    """Build records of the collection's type from decoded JSON.

    Raises:
        click.BadParameter: If the document is not a list of objects with
            known fields and an id.
    """
    if not isinstance(items, list):
        raise click.BadParameter("expected a JSON list of records")

    record_type = collection.codec.record_type
    known = {f.name for f in dataclasses.fields(record_type)}
    records = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not item.get("id"):
            raise click.BadParameter(f"record {index} must be an object with an 'id'")
        unknown = sorted(set(item) - known)
        if unknown:
            raise click.BadParameter(f"record {index} has unknown fields: {', '.join(unknown)}")
        records.append(record_type(**{**item, "id": str(item["id"])}))
    return records


@click.command()
@click.argument("collection_key")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Write JSON to a file.")
@token_option
def pull(collection_key: str, output: Path | None, token: str | None) -> None:
    """Print a collection's records as JSON."""
    coordinator, collection = _open(collection_key, token)

    async def run() -> list[Any]:
        async with coordinator:
            return await coordinator.load(collection, use_cache=False)

    records = asyncio.run(run())
    if coordinator.stats.degraded_reads:
        click.echo(f"Error: could not read {collection.read_range}", err=True)
        sys.exit(1)

    text = json.dumps([dataclasses.asdict(r) for r in records], indent=2, ensure_ascii=False)
    if output:
        output.write_text(text + "\n")
        click.echo(f"Wrote {len(records)} record(s) to {output}")
    else:
        click.echo(text)


@click.command()
@click.argument("collection_key")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--deleted", "-d", multiple=True, help="Id removed locally (repeatable).")
@token_option
def push(collection_key: str, file: Path, deleted: tuple[str, ...], token: str | None) -> None:
    """Commit records from a JSON FILE to a collection.

    Records are merged with the replica's current content; records updated
    by another writer in the meantime are reported as conflicts.
    """
    coordinator, collection = _open(collection_key, token)
    try:
        items = json.loads(file.read_text())
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"{file} is not valid JSON: {e}", param_hint="FILE") from e
    records = records_from_json(collection, items)
    coordinator.set_conflict_handler(_print_conflicts)

    async def run() -> Any:
        async with coordinator:
            return await coordinator.commit(collection, records, deleted=deleted)

    try:
        result = asyncio.run(run())
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(
        f"Committed {result.key}: {result.written} row(s), {result.padding} blank, "
        f"{len(result.conflicts)} conflict(s)"
    )


@click.command()
@click.argument("collection_key")
@click.confirmation_option(prompt="Clear every row of this collection in the replica?")
@token_option
def clear(collection_key: str, token: str | None) -> None:
    """Clear a collection's range in the replica."""
    coordinator, collection = _open(collection_key, token)

    async def run() -> None:
        async with coordinator:
            await coordinator.clear(collection)

    try:
        asyncio.run(run())
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Cleared {collection.clear_range}")
