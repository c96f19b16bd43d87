"""Conflict notification.

A single replaceable handler receives conflicts after each merge that
produced any. Delivery is advisory: a handler that raises is logged and
ignored, so observability problems never break a commit.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sheetsync.client.sync.types import Conflict, ConflictCallback

logger = logging.getLogger(__name__)

MAX_LISTED_IDS = 3


class ConflictNotifier:
    """Holds the active conflict handler and invokes it synchronously."""

    def __init__(self, handler: ConflictCallback | None = None) -> None:
        self._handler = handler

    @property
    def handler(self) -> ConflictCallback | None:
        return self._handler

    def set_handler(self, handler: ConflictCallback | None) -> None:
        """Replace the active handler (None disables notification)."""
        self._handler = handler

    def notify(self, key: str, conflicts: Sequence[Conflict]) -> None:
        """Deliver conflicts for a collection to the handler.

        No-op when there are no conflicts or no handler.
        """
        if not conflicts:
            return
        logger.info("%s: %s", key, format_conflict_message(conflicts))
        handler = self._handler
        if handler is None:
            return
        try:
            handler(key, list(conflicts))
        except Exception:
            logger.exception("Conflict handler failed for %s", key)


def format_conflict_message(conflicts: Sequence[Conflict]) -> str:
    """Operator-facing summary of conflicts.

    Example:
        "5 record(s) updated by another writer: A, B, C and 2 more"
    """
    count = len(conflicts)
    ids = ", ".join(c.id for c in conflicts[:MAX_LISTED_IDS])
    suffix = f" and {count - MAX_LISTED_IDS} more" if count > MAX_LISTED_IDS else ""
    return f"{count} record(s) updated by another writer: {ids}{suffix}"
