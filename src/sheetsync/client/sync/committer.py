"""Optimistic write committer.

Commits a local snapshot to the replica without any replica-side
transactions:

1. Lock the collection key (in-process serialization)
2. Read the remote snapshot and merge the local snapshot into it
3. Re-read and compare signatures to detect interleaving writers
4. On mismatch, re-merge against the newer snapshot and verify again,
   up to ``max_retries`` attempts (then ConflictExhausted)
5. Pad with blank rows if the dataset shrank, write once, invalidate cache

The range write is the only mutating call, so a failed commit leaves the
replica as it was.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from sheetsync.client.api import APIError
from sheetsync.client.retry import backoff_delay
from sheetsync.client.sync.merge import (
    MergePolicy,
    get_policy,
    merge,
    signature,
    stamp_versions,
    updated_at_of,
    version_of,
)
from sheetsync.client.sync.reader import SnapshotReader
from sheetsync.client.sync.types import (
    CommitResult,
    Conflict,
    ConflictExhausted,
    MergeResult,
    RemoteReadError,
    RemoteWriteError,
    Snapshot,
)
from sheetsync.core.config import SyncSettings
from sheetsync.core.types import CommitState, MergePolicyName

if TYPE_CHECKING:
    from sheetsync.client.api import Row
    from sheetsync.client.sync.locks import WriteLockManager
    from sheetsync.client.sync.notifier import ConflictNotifier
    from sheetsync.client.sync.types import Collection

logger = logging.getLogger(__name__)


class RangeStore(Protocol):
    """Replica operations the committer needs."""

    async def fetch_range(self, a1_range: str) -> list[Row]:
        ...

    async def write_range(self, a1_range: str, rows: list[Row]) -> None:
        ...


class CacheInvalidator(Protocol):
    """Read-through cache collaborator."""

    def invalidate(self, key: str) -> None:
        ...


class _CommitRun:
    """Mutable state of one commit call."""

    def __init__(self, key: str) -> None:
        self.key = key
        self.state = CommitState.IDLE
        self.attempts = 0
        self.previous_count = 0
        self.any_read_ok = False
        self.reported: set[tuple[str, int, Any]] = set()
        self.conflicts: list[Conflict] = []

    def enter(self, state: CommitState) -> None:
        logger.debug("%s: %s -> %s", self.key, self.state.value, state.value)
        self.state = state

    def observe(self, snapshot: Snapshot) -> None:
        """Record read metadata used for padding and blind-write checks."""
        self.previous_count = max(self.previous_count, snapshot.row_count)
        self.any_read_ok = self.any_read_ok or not snapshot.degraded


class OptimisticCommitter:
    """Read, merge, verify and write a collection under its lock."""

    def __init__(
        self,
        client: RangeStore,
        locks: WriteLockManager,
        notifier: ConflictNotifier,
        cache: CacheInvalidator | None = None,
        settings: SyncSettings | None = None,
        policy: MergePolicy | None = None,
    ) -> None:
        """Initialize the committer.

        Args:
            client: Replica client.
            locks: Lock manager shared by everything writing these keys.
            notifier: Conflict notifier.
            cache: Cache to invalidate after each successful write.
            settings: Retry and padding settings.
            policy: Merge policy (defaults to the one named in settings).
        """
        self._client = client
        self._reader = SnapshotReader(client)
        self._locks = locks
        self._notifier = notifier
        self._cache = cache
        self._settings = settings or SyncSettings()
        self._policy = policy or get_policy(self._settings.policy)

    @property
    def policy(self) -> MergePolicy:
        return self._policy

    async def commit(
        self,
        collection: Collection,
        local: Iterable[Any],
        deleted: Iterable[str] = (),
    ) -> CommitResult:
        """Commit a local snapshot to the replica.

        Args:
            collection: Target collection.
            local: Records the caller intends to persist.
            deleted: Ids removed locally since the last load.

        Returns:
            CommitResult describing what was written.

        Raises:
            ConflictExhausted: Replica changed during every verify attempt.
            RemoteReadError: No read succeeded, so the write would be blind.
            RemoteWriteError: The final write failed.
            MappingError: A record could not be encoded.
        """
        run = _CommitRun(collection.key)
        async with self._locks.hold(collection.key):
            run.enter(CommitState.LOCKED)
            try:
                result = await self._commit_locked(run, collection, list(local), tuple(deleted))
            except BaseException:
                run.enter(CommitState.FAILED)
                raise
            finally:
                run.enter(CommitState.UNLOCKED)
        return result

    async def _commit_locked(
        self,
        run: _CommitRun,
        collection: Collection,
        local: list[Any],
        deleted: tuple[str, ...],
    ) -> CommitResult:
        key = collection.key
        max_retries = self._settings.max_retries

        run.enter(CommitState.READ_0)
        baseline = await self._read(run, collection)

        run.enter(CommitState.MERGE)
        merged = self._merge(run, local, baseline, deleted)

        while True:
            run.attempts += 1
            run.enter(CommitState.VERIFY)
            current = await self._read(run, collection)

            if baseline.degraded and current.degraded:
                logger.warning("%s: both reads failed (attempt %d/%d)", key, run.attempts, max_retries)
            elif signature(baseline.records) == signature(current.records):
                break
            elif current.is_empty:
                # An empty re-read does not prove the range was emptied
                logger.warning(
                    "%s: re-read returned no rows, keeping merge against %d remote record(s)",
                    key,
                    len(baseline),
                )
                break
            else:
                logger.info(
                    "%s: replica changed during commit (attempt %d/%d), re-merging",
                    key,
                    run.attempts,
                    max_retries,
                )
                run.enter(CommitState.REMERGE)
                merged = self._merge(run, local, current, deleted)
                baseline = current

            if run.attempts >= max_retries:
                if not run.any_read_ok:
                    raise RemoteReadError(f"Could not read {collection.read_range}; refusing a blind write")
                raise ConflictExhausted(key, run.attempts)

            if self._settings.conflict_backoff > 0:
                await asyncio.sleep(
                    backoff_delay(run.attempts - 1, initial_backoff=self._settings.conflict_backoff)
                )

        run.enter(CommitState.WRITE)
        records = merged.merged
        if self._policy.name == MergePolicyName.VERSIONED:
            records = stamp_versions(merged, baseline.records)

        codec = collection.codec
        rows = [codec.encode(r) for r in records]
        padding = 0
        if len(rows) < run.previous_count:
            padding = run.previous_count - len(rows) + self._settings.padding_margin
        payload = rows + [codec.blank_row() for _ in range(padding)]

        try:
            await self._client.write_range(collection.write_range, payload)
        except (APIError, httpx.HTTPError) as e:
            raise RemoteWriteError(f"Failed to write {collection.write_range}: {e}") from e

        if self._cache is not None:
            self._cache.invalidate(key)

        run.enter(CommitState.DONE)
        logger.info(
            "Committed %s: %d row(s), %d blank, %d conflict(s), %d attempt(s)",
            key,
            len(rows),
            padding,
            len(run.conflicts),
            run.attempts,
        )
        return CommitResult(
            key=key,
            attempts=run.attempts,
            written=len(rows),
            padding=padding,
            conflicts=list(run.conflicts),
            merged=records,
        )

    async def _read(self, run: _CommitRun, collection: Collection) -> Snapshot:
        snapshot = await self._reader.read(collection.read_range, collection.codec)
        run.observe(snapshot)
        return snapshot

    def _merge(
        self,
        run: _CommitRun,
        local: list[Any],
        remote: Snapshot,
        deleted: tuple[str, ...],
    ) -> MergeResult:
        """Merge and notify conflicts not yet reported during this call."""
        result = merge(local, remote.records, self._policy, deleted)
        fresh = []
        for conflict in result.conflicts:
            marker = (conflict.id, version_of(conflict.remote), updated_at_of(conflict.remote))
            if marker not in run.reported:
                run.reported.add(marker)
                fresh.append(conflict)
        run.conflicts.extend(fresh)
        self._notifier.notify(run.key, fresh)
        logger.debug(
            "%s: merged=%d local=%d remote=%d conflicts=%d",
            run.key,
            len(result.merged),
            len(local),
            len(remote),
            len(result.conflicts),
        )
        return result
