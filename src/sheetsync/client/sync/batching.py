"""Caller-side batching for sources with a batch-operation limit.

The committer writes one payload per call. When the primary store caps the
number of operations per batch, callers split their work with these helpers
and issue the batches sequentially.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 450  # stays under a 500-operation limit
DEFAULT_THROTTLE = 0.2  # seconds between batches


@dataclass
class BatchError:
    """A batch that failed."""

    index: int  # batch number, 0-based
    size: int
    error: Exception


@dataclass
class BatchStats:
    """Outcome of a batched run."""

    total_processed: int = 0
    batches_committed: int = 0
    errors: list[BatchError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split items into consecutive lists of at most ``size`` items.

    Raises:
        ValueError: If size is not positive.
    """
    if size < 1:
        raise ValueError("Batch size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


async def run_batched(
    items: Sequence[T],
    operation: Callable[[list[T]], Awaitable[object]],
    batch_size: int = DEFAULT_BATCH_SIZE,
    throttle: float = DEFAULT_THROTTLE,
    name: str = "batch",
) -> BatchStats:
    """Run an async operation over items in sequential batches.

    A failing batch is recorded and the remaining batches still run.

    Args:
        items: Items to process.
        operation: Coroutine function processing one batch.
        batch_size: Maximum items per batch.
        throttle: Pause between batches in seconds.
        name: Label for log messages.

    Returns:
        BatchStats with processed counts and per-batch errors.
    """
    stats = BatchStats()
    batches = list(chunked(items, batch_size))
    logger.debug("%s: %d item(s) in %d batch(es) of up to %d", name, len(items), len(batches), batch_size)

    for index, batch in enumerate(batches):
        if index and throttle > 0:
            await asyncio.sleep(throttle)
        try:
            await operation(batch)
        except Exception as e:
            logger.error("%s: batch %d failed: %s", name, index, e)
            stats.errors.append(BatchError(index=index, size=len(batch), error=e))
            continue
        stats.batches_committed += 1
        stats.total_processed += len(batch)

    return stats
