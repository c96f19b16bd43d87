"""Configuration utilities for sheetsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from sheetsync.client.cli.schema import ConfigFile

logger = logging.getLogger(__name__)


class ConfigFileError(Exception):
    """The config file exists but cannot be used."""


def get_config_dir() -> Path:
    """Get the configuration directory for sheetsync.

    Returns:
        Path to ~/.sheetsync or equivalent.
    """
    return Path.home() / ".sheetsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load raw configuration from the config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save raw configuration to the config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_config_file() -> ConfigFile:
    """Load and validate the config file.

    Raises:
        ConfigFileError: If the file is not valid JSON or fails validation.
    """
    try:
        return ConfigFile.model_validate(load_config())
    except json.JSONDecodeError as e:
        raise ConfigFileError(f"{get_config_file()} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise ConfigFileError(f"Invalid configuration in {get_config_file()}:\n{e}") from e


def configure_logging(verbose: bool = False) -> None:
    """Route sheetsync log records to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
