"""Per-collection write locks.

At most one synchronization attempt per collection key runs at a time
within this process. Locks are asyncio locks: they serialize coroutines on
one event loop and give no protection against other processes, which are
handled by the committer's optimistic re-check.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

from sheetsync.client.sync.types import LockReentryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WriteLockManager:
    """Registry of per-key mutexes.

    Usage:
        locks = WriteLockManager()

        async with locks.hold("orders"):
            ...

        result = await locks.run("orders", do_sync)
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._owners: dict[str, asyncio.Task[object]] = {}
        self._waiters: dict[str, int] = {}

    def is_locked(self, key: str) -> bool:
        """Check whether an operation currently holds the key."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for a key for the duration of the block.

        Raises:
            LockReentryError: If the current task already holds the key.
        """
        task = asyncio.current_task()
        if task is not None and self._owners.get(key) is task:
            raise LockReentryError(f"Lock for {key!r} is already held by this task")

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            if lock.locked():
                logger.debug("Waiting for lock on %s", key)
            await lock.acquire()
        except BaseException:
            self._release_waiter(key)
            raise

        if task is not None:
            self._owners[key] = task
        try:
            yield
        finally:
            self._owners.pop(key, None)
            lock.release()
            self._release_waiter(key)

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` under the lock for ``key``.

        Waits for any operation already holding the key; the lock is
        released whether ``fn`` succeeds or raises.
        """
        async with self.hold(key):
            return await fn()

    def _release_waiter(self, key: str) -> None:
        """Forget a key's lock once nobody holds or waits for it."""
        remaining = self._waiters.get(key, 1) - 1
        if remaining > 0:
            self._waiters[key] = remaining
            return
        self._waiters.pop(key, None)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]
