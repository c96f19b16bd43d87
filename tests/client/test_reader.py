"""Tests for the remote snapshot reader."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
import pytest

from sheetsync.client.api import APIError, NotFoundError
from sheetsync.client.sync.codec import Column, ColumnKind, RowCodec
from sheetsync.client.sync.reader import SnapshotReader, decode_rows


@dataclass
class Supplier:
    id: str
    name: str = ""
    debt: float = 0.0
    version: int | None = None
    updated_at: str | None = None


CODEC = RowCodec(
    Supplier,
    [
        Column("id", required=True, header="ID"),
        Column("name", required=True, header="Name"),
        Column("debt", ColumnKind.NUMBER, required=True, header="Debt"),
        Column("version", ColumnKind.INTEGER, header="Version"),
        Column("updated_at", header="Updated"),
    ],
)


class StaticFetcher:
    """Returns fixed rows, or raises a fixed error."""

    def __init__(self, rows: list[list[Any]] | None = None, error: Exception | None = None) -> None:
        self.rows = rows or []
        self.error = error
        self.ranges: list[str] = []

    async def fetch_range(self, a1_range: str) -> list[list[Any]]:
        self.ranges.append(a1_range)
        if self.error is not None:
            raise self.error
        return self.rows


class TestDecodeRows:
    """Tests for decode_rows()."""

    def test_decodes_records(self) -> None:
        rows = [["s1", "Steel Co", "100", "2"], ["s2", "Wood Ltd", "0", "1"]]

        snapshot = decode_rows(rows, CODEC)

        assert [s.id for s in snapshot.records] == ["s1", "s2"]
        assert snapshot.records[0].debt == 100.0
        assert snapshot.row_count == 2
        assert not snapshot.degraded

    def test_skips_header_without_counting(self) -> None:
        rows = [["ID", "Name", "Debt"], ["s1", "Steel Co", "5"]]

        snapshot = decode_rows(rows, CODEC)

        assert len(snapshot) == 1
        assert snapshot.row_count == 1

    def test_blank_id_rows_counted_not_decoded(self) -> None:
        """Rows left blank by earlier padding still occupy the range."""
        rows = [["s1", "Steel Co"], ["", "", ""], [], ["s2", "Wood Ltd"]]

        snapshot = decode_rows(rows, CODEC)

        assert [s.id for s in snapshot.records] == ["s1", "s2"]
        assert snapshot.row_count == 4

    def test_malformed_cells_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            snapshot = decode_rows([["s1", "Steel Co", "lots"]], CODEC, "Suppliers!A2:E")

        assert snapshot.records[0].debt == 0.0
        assert "Suppliers!A2:E: 1 malformed cell(s)" in caplog.text

    def test_empty(self) -> None:
        snapshot = decode_rows([], CODEC)
        assert snapshot.is_empty
        assert snapshot.row_count == 0


class TestSnapshotReader:
    """Tests for SnapshotReader."""

    @pytest.mark.asyncio
    async def test_read(self) -> None:
        fetcher = StaticFetcher([["s1", "Steel Co", "1"]])

        snapshot = await SnapshotReader(fetcher).read("Suppliers!A2:E", CODEC)

        assert fetcher.ranges == ["Suppliers!A2:E"]
        assert snapshot.records == [Supplier("s1", "Steel Co", 1.0)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            APIError("Internal error", status_code=500),
            NotFoundError("Unable to parse range", status_code=404),
            httpx.ConnectError("connection refused"),
        ],
    )
    async def test_failed_read_is_degraded(self, error: Exception, caplog: pytest.LogCaptureFixture) -> None:
        """Failures should yield an empty degraded snapshot, not raise."""
        with caplog.at_level(logging.WARNING):
            snapshot = await SnapshotReader(StaticFetcher(error=error)).read("Suppliers!A2:E", CODEC)

        assert snapshot.degraded
        assert snapshot.is_empty
        assert snapshot.row_count == 0
        assert "Could not read Suppliers!A2:E" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self) -> None:
        with pytest.raises(TypeError):
            await SnapshotReader(StaticFetcher(error=TypeError("bug"))).read("X!A2:E", CODEC)
