"""Shared configuration classes for sheetsync.

This module defines the connection settings for the spreadsheet replica
and the tuning knobs of the synchronization engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote

from sheetsync.core.types import MergePolicyName

DEFAULT_BASE_URL = "https://sheets.googleapis.com"


class ConfigurationError(ValueError):
    """Required configuration is missing or invalid."""


@dataclass
class ReplicaConfig:
    """Configuration for connecting to the spreadsheet replica.

    Attributes:
        spreadsheet_id: Identifier of the spreadsheet holding the replica.
        token: OAuth access token (its lifecycle is owned by the caller).
        base_url: Base URL of the values API.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    spreadsheet_id: str
    token: str
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize base URL and strip whitespace from identifiers."""
        self.base_url = self.base_url.rstrip("/")
        self.spreadsheet_id = self.spreadsheet_id.strip()
        self.token = self.token.strip()

    @property
    def spreadsheet_url(self) -> str:
        """Get the spreadsheet resource path, relative to base_url."""
        return f"/v4/spreadsheets/{self.spreadsheet_id}"

    def values_url(self, a1_range: str) -> str:
        """Get the values path for an A1 range.

        Args:
            a1_range: Range such as "Orders!A2:P".

        Returns:
            Path relative to base_url, with the range URL-quoted.
        """
        return f"{self.spreadsheet_url}/values/{quote(a1_range, safe='!:')}"

    def validate(self) -> None:
        """Raise ConfigurationError if the config cannot be used for requests."""
        if not self.spreadsheet_id:
            raise ConfigurationError("Spreadsheet ID not set")
        if not self.token:
            raise ConfigurationError("Access token missing")


@dataclass
class SyncSettings:
    """Tuning for the optimistic write committer.

    Attributes:
        max_retries: Verify attempts before giving up with ConflictExhausted.
        padding_margin: Extra blank rows written when the dataset shrinks.
        policy: Merge policy used by the coordinator.
        cache_ttl: Lifetime of read-through cache entries, in seconds.
        conflict_backoff: Base delay between mismatching attempts
            (0 disables backoff).
    """

    max_retries: int = 3
    padding_margin: int = 5
    policy: MergePolicyName = MergePolicyName.VERSIONED
    cache_ttl: float = 120.0
    conflict_backoff: float = 0.0

    def __post_init__(self) -> None:
        """Coerce the policy name and reject nonsensical values."""
        self.policy = MergePolicyName(self.policy)
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.padding_margin < 0:
            raise ConfigurationError("padding_margin cannot be negative")
        if self.cache_ttl < 0 or self.conflict_backoff < 0:
            raise ConfigurationError("cache_ttl and conflict_backoff cannot be negative")
