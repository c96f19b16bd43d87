"""In-memory read-through cache for collection snapshots.

Entries expire after a TTL. Expired entries are still reachable through
``get_stale`` so a failed read can fall back to the last known data.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL = 120.0  # seconds


@dataclass
class CacheEntry:
    """A cached value with its storage time."""

    data: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """Check whether the entry outlived its TTL."""
        return now - self.stored_at > self.ttl


class SnapshotCache:
    """TTL cache keyed by collection key."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl: Default entry lifetime in seconds.
            clock: Monotonic time source (injectable for tests).
        """
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        """Get a fresh value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.data

    def get_stale(self, key: str) -> Any | None:
        """Get a value regardless of its age."""
        entry = self._entries.get(key)
        return entry.data if entry else None

    def set(self, key: str, data: Any, ttl: float | None = None) -> None:
        """Store a value."""
        self._entries[key] = CacheEntry(
            data=data,
            stored_at=self._clock(),
            ttl=self._ttl if ttl is None else ttl,
        )

    def invalidate(self, key: str) -> None:
        """Drop the entry for a key."""
        if self._entries.pop(key, None) is not None:
            logger.debug("Cache invalidated: %s", key)

    def clear_expired(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        """Drop all entries."""
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
