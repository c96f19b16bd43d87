"""Remote snapshot reader.

Fetches a range from the replica and decodes it into records. Reads are
best-effort: a failed fetch is logged and yields an empty, degraded
snapshot instead of raising, so callers must not take an empty snapshot
as proof that the range is empty.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from sheetsync.client.api import APIError
from sheetsync.client.sync.types import MappingError, Snapshot

if TYPE_CHECKING:
    from sheetsync.client.api import Row
    from sheetsync.client.sync.codec import RowCodec

logger = logging.getLogger(__name__)


class RangeFetcher(Protocol):
    """Anything that can fetch the raw rows of a range."""

    async def fetch_range(self, a1_range: str) -> list[Row]:
        ...


class SnapshotReader:
    """Reads typed snapshots from the replica."""

    def __init__(self, client: RangeFetcher) -> None:
        self._client = client

    async def read(self, a1_range: str, codec: RowCodec[Any]) -> Snapshot:
        """Fetch and decode a range.

        The header row and rows with an empty identity cell are skipped.
        Malformed cells decode to their column fallback.

        Args:
            a1_range: Range to read.
            codec: Codec for the collection's records.

        Returns:
            Decoded snapshot; ``degraded`` is set if the fetch failed.
        """
        try:
            rows = await self._client.fetch_range(a1_range)
        except (APIError, httpx.HTTPError) as e:
            logger.warning("Could not read %s, continuing with empty snapshot: %s", a1_range, e)
            return Snapshot.failed()

        return decode_rows(rows, codec, a1_range)


def decode_rows(rows: list[Row], codec: RowCodec[Any], source: str = "") -> Snapshot:
    """Decode raw rows into a snapshot.

    Args:
        rows: Raw rows, possibly including the header row.
        codec: Codec for the records.
        source: Range name for log messages.

    Returns:
        Snapshot whose row_count counts every non-header row.
    """
    records: list[Any] = []
    errors: list[MappingError] = []
    row_count = 0

    for row in rows:
        if codec.is_header(row):
            continue
        row_count += 1
        if not codec.row_id(row):
            continue
        records.append(codec.decode(row, errors))

    if errors:
        logger.warning(
            "%s: %d malformed cell(s) decoded with defaults (first: %s)",
            source or "snapshot",
            len(errors),
            errors[0],
        )

    return Snapshot(records=records, row_count=row_count)
