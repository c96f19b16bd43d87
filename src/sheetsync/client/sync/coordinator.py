"""Sync coordinator for replica synchronization.

This module provides:
- SyncCoordinator: Entry point owning the per-key locks, the conflict
  handler slot, the read-through cache and the replica client

There are no module-level registries: each coordinator is independent, so
tests and multiple replicas can each construct their own.

Operations:
    | Operation | Lock | Reads | Writes                     | Cache      |
    |-----------|------|-------|----------------------------|------------|
    | commit    | yes  | 2+    | one range overwrite        | invalidate |
    | append    | yes  | none  | one append                 | invalidate |
    | clear     | yes  | none  | one range clear            | invalidate |
    | load      | no   | 0-1   | none                       | read/fill  |
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from sheetsync.client.api import APIError, SheetsClient
from sheetsync.client.cache import SnapshotCache
from sheetsync.client.sync.committer import OptimisticCommitter, RangeStore
from sheetsync.client.sync.locks import WriteLockManager
from sheetsync.client.sync.notifier import ConflictNotifier
from sheetsync.client.sync.reader import SnapshotReader
from sheetsync.client.sync.types import (
    CommitResult,
    ConflictCallback,
    RemoteWriteError,
    SyncError,
)
from sheetsync.core.config import SyncSettings

if TYPE_CHECKING:
    from sheetsync.client.api import Row
    from sheetsync.client.sync.types import Collection
    from sheetsync.core.config import ReplicaConfig

logger = logging.getLogger(__name__)


class ReplicaStore(RangeStore, Protocol):
    """Full set of replica operations used by the coordinator."""

    async def clear_range(self, a1_range: str) -> None:
        ...

    async def append_rows(self, a1_range: str, rows: list[Row]) -> None:
        ...

    async def close(self) -> None:
        ...


@dataclass
class CoordinatorStats:
    """Statistics for the coordinator."""

    commits_completed: int = 0
    commits_failed: int = 0
    conflicts_detected: int = 0
    loads: int = 0
    cache_hits: int = 0
    degraded_reads: int = 0


class SyncCoordinator:
    """Central object for synchronizing collections with the replica.

    Usage:
        async with SyncCoordinator.from_config(replica_config) as sync:
            sync.set_conflict_handler(show_warning)
            orders = await sync.load(ORDERS)
            ...
            result = await sync.commit(ORDERS, orders, deleted=["o-17"])
    """

    def __init__(
        self,
        client: ReplicaStore,
        settings: SyncSettings | None = None,
        cache: SnapshotCache | None = None,
        locks: WriteLockManager | None = None,
        notifier: ConflictNotifier | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            client: Replica client.
            settings: Engine settings (defaults apply when omitted).
            cache: Read-through cache (a new one per coordinator by default).
            locks: Lock manager (a new one per coordinator by default).
            notifier: Conflict notifier (a new one by default).
        """
        self._client = client
        self._settings = settings or SyncSettings()
        self._cache = cache if cache is not None else SnapshotCache(ttl=self._settings.cache_ttl)
        self._locks = locks or WriteLockManager()
        self._notifier = notifier or ConflictNotifier()
        self._reader = SnapshotReader(client)
        self._committer = OptimisticCommitter(
            client,
            self._locks,
            self._notifier,
            cache=self._cache,
            settings=self._settings,
        )
        self._stats = CoordinatorStats()

    @classmethod
    def from_config(
        cls,
        config: ReplicaConfig,
        settings: SyncSettings | None = None,
    ) -> SyncCoordinator:
        """Create a coordinator with an HTTP client for the given replica."""
        return cls(SheetsClient(config), settings=settings)

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    @property
    def stats(self) -> CoordinatorStats:
        """Get coordinator statistics."""
        return self._stats

    @property
    def locks(self) -> WriteLockManager:
        return self._locks

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    def set_conflict_handler(self, handler: ConflictCallback | None) -> None:
        """Set the conflict handler (None disables it).

        Args:
            handler: Function(collection_key, conflicts), called synchronously.
        """
        self._notifier.set_handler(handler)

    async def commit(
        self,
        collection: Collection,
        local: Iterable[Any],
        deleted: Iterable[str] = (),
    ) -> CommitResult:
        """Commit a local snapshot to the replica (see OptimisticCommitter)."""
        try:
            result = await self._committer.commit(collection, local, deleted)
        except SyncError:
            self._stats.commits_failed += 1
            raise
        self._stats.commits_completed += 1
        self._stats.conflicts_detected += len(result.conflicts)
        return result

    async def load(self, collection: Collection, use_cache: bool = True) -> list[Any]:
        """Load a collection's records, through the cache.

        A failed read falls back to stale cached data when there is any,
        otherwise to an empty list.

        Args:
            collection: Collection to load.
            use_cache: Return fresh cached data without reading.

        Returns:
            Records in sheet order.
        """
        key = collection.key
        self._stats.loads += 1
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                self._stats.cache_hits += 1
                logger.debug("%s loaded from cache", key)
                return list(cached)

        snapshot = await self._reader.read(collection.read_range, collection.codec)
        if snapshot.degraded:
            self._stats.degraded_reads += 1
            stale = self._cache.get_stale(key)
            if stale is not None:
                logger.warning("Using stale cache for %s due to read failure", key)
                return list(stale)
            return []

        self._cache.set(key, list(snapshot.records))
        logger.debug("%s loaded from replica (%d records)", key, len(snapshot))
        return list(snapshot.records)

    async def append(self, collection: Collection, records: Iterable[Any]) -> int:
        """Append records without merging (log-style collections).

        Returns:
            Number of rows appended.

        Raises:
            RemoteWriteError: If the append failed.
            MappingError: If a record could not be encoded.
        """
        rows = [collection.codec.encode(r) for r in records]
        if not rows:
            return 0
        async with self._locks.hold(collection.key):
            try:
                await self._client.append_rows(collection.read_range, rows)
            except (APIError, httpx.HTTPError) as e:
                raise RemoteWriteError(f"Failed to append to {collection.read_range}: {e}") from e
            self._cache.invalidate(collection.key)
        logger.info("Appended %d row(s) to %s", len(rows), collection.key)
        return len(rows)

    async def clear(self, collection: Collection) -> None:
        """Clear a collection's clear range.

        Raises:
            RemoteWriteError: If the clear failed.
        """
        async with self._locks.hold(collection.key):
            try:
                await self._client.clear_range(collection.clear_range)
            except (APIError, httpx.HTTPError) as e:
                raise RemoteWriteError(f"Failed to clear {collection.clear_range}: {e}") from e
            self._cache.invalidate(collection.key)
        logger.info("Cleared %s", collection.key)

    async def close(self) -> None:
        """Close the replica client."""
        await self._client.close()

    async def __aenter__(self) -> SyncCoordinator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
