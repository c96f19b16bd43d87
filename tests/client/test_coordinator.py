"""Tests for SyncCoordinator, wired to a mocked HTTP replica."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass

import pytest

from sheetsync.client.api import SheetsClient
from sheetsync.client.cache import SnapshotCache
from sheetsync.client.sync.codec import Column, ColumnKind, RowCodec
from sheetsync.client.sync.coordinator import SyncCoordinator
from sheetsync.client.sync.types import Collection, Conflict, ConflictExhausted, RemoteWriteError
from sheetsync.core.config import ReplicaConfig, SyncSettings

VALUES = "http://test/v4/spreadsheets/sheet-1/values/Clients!A2:E"
WRITE_URL = f"{VALUES}?valueInputOption=USER_ENTERED"


@dataclass
class ClientRecord:
    id: str
    name: str = ""
    debt: float = 0.0
    version: int | None = None
    updated_at: str | None = None


CODEC = RowCodec(
    ClientRecord,
    [
        Column("id", required=True, header="ID"),
        Column("name", required=True),
        Column("debt", ColumnKind.NUMBER, required=True),
        Column("version", ColumnKind.INTEGER),
        Column("updated_at"),
    ],
)
CLIENTS = Collection("clients", CODEC, "Clients!A2:E")


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_coordinator(settings: SyncSettings | None = None, clock: FakeClock | None = None) -> SyncCoordinator:
    """Create a coordinator against http://test without retry delays."""
    config = ReplicaConfig(spreadsheet_id="sheet-1", token="token123", base_url="http://test")
    client = SheetsClient(config, max_retries=0, initial_backoff=0)
    cache = SnapshotCache(ttl=60.0, clock=clock or FakeClock())
    return SyncCoordinator(client, settings=settings, cache=cache)


class TestLoad:
    """Tests for SyncCoordinator.load."""

    @pytest.mark.asyncio
    async def test_load_decodes_records(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme", "150", "2"], ["", ""], ["c2", "Beta"]]})

        async with make_coordinator() as sync:
            clients = await sync.load(CLIENTS)

        assert [c.id for c in clients] == ["c1", "c2"]
        assert clients[0].debt == 150.0
        assert clients[0].version == 2

    @pytest.mark.asyncio
    async def test_second_load_served_from_cache(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Only one request should be made while the entry is fresh."""
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme"]]})

        async with make_coordinator() as sync:
            first = await sync.load(CLIENTS)
            second = await sync.load(CLIENTS)

            assert first == second
            assert sync.stats.loads == 2
            assert sync.stats.cache_hits == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        clock = FakeClock()
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme"]]})
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme"], ["c2", "Beta"]]})

        async with make_coordinator(clock=clock) as sync:
            await sync.load(CLIENTS)
            clock.now += 61
            clients = await sync.load(CLIENTS)

        assert [c.id for c in clients] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_failed_read_falls_back_to_stale(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A failed read should return the last known data."""
        clock = FakeClock()
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme"]]})
        httpx_mock.add_response(url=VALUES, status_code=500, json={"error": {"message": "Internal error"}})

        async with make_coordinator(clock=clock) as sync:
            await sync.load(CLIENTS)
            clock.now += 61
            clients = await sync.load(CLIENTS)

            assert [c.id for c in clients] == ["c1"]
            assert sync.stats.degraded_reads == 1

    @pytest.mark.asyncio
    async def test_failed_read_without_cache_is_empty(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url=VALUES, status_code=403, json={"error": {"message": "denied"}})

        async with make_coordinator() as sync:
            assert await sync.load(CLIENTS) == []
            assert sync.stats.degraded_reads == 1

    @pytest.mark.asyncio
    async def test_non_json_body_is_degraded_read(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """An HTML page from a proxy should not escape as a decode error."""
        httpx_mock.add_response(url=VALUES, text="<html>proxy</html>")

        async with make_coordinator() as sync:
            assert await sync.load(CLIENTS) == []
            assert sync.stats.degraded_reads == 1


class TestCommit:
    """Tests for SyncCoordinator.commit."""

    @pytest.mark.asyncio
    async def test_commit_reads_twice_then_writes(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme", "150", "1"]]})
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme", "150", "1"]]})
        httpx_mock.add_response(method="PUT", url=WRITE_URL, json={"updatedRows": 2})

        async with make_coordinator() as sync:
            result = await sync.commit(
                CLIENTS,
                [ClientRecord("c1", "Acme", 150.0, version=1), ClientRecord("c2", "Beta", 20.0)],
            )

            assert sync.stats.commits_completed == 1

        assert result.written == 2
        put = httpx_mock.get_requests(method="PUT")[0]
        values = json.loads(put.content)["values"]
        assert values[0] == ["c1", "Acme", 150.0, 1, ""]
        assert values[1][:4] == ["c2", "Beta", 20.0, 1]

    @pytest.mark.asyncio
    async def test_commit_survives_non_json_first_read(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A proxy page on the first read is a failed read, and the verify reads recover."""
        remote = {"values": [["c1", "Acme", "150", "1"]]}
        httpx_mock.add_response(url=VALUES, text="<html>proxy</html>")
        httpx_mock.add_response(url=VALUES, json=remote)
        httpx_mock.add_response(url=VALUES, json=remote)
        httpx_mock.add_response(method="PUT", url=WRITE_URL, json={})

        async with make_coordinator() as sync:
            result = await sync.commit(CLIENTS, [ClientRecord("c2", "Beta", 20.0)])

        assert result.attempts == 2
        values = json.loads(httpx_mock.get_requests(method="PUT")[0].content)["values"]
        assert [row[0] for row in values] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_commit_invalidates_cache(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme"]]})
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme"]]})
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme"]]})
        httpx_mock.add_response(method="PUT", url=WRITE_URL, json={})
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "Acme Corp", "0", "1"]]})

        async with make_coordinator() as sync:
            await sync.load(CLIENTS)
            assert "clients" in sync.cache
            await sync.commit(CLIENTS, [ClientRecord("c1", "Acme Corp")])
            assert "clients" not in sync.cache
            clients = await sync.load(CLIENTS)

        assert clients[0].name == "Acme Corp"

    @pytest.mark.asyncio
    async def test_conflict_handler_called(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        remote = {"values": [["c1", "Theirs", "5", "3"]]}
        httpx_mock.add_response(url=VALUES, json=remote)
        httpx_mock.add_response(url=VALUES, json=remote)
        httpx_mock.add_response(method="PUT", url=WRITE_URL, json={})
        seen: list[tuple[str, Sequence[Conflict]]] = []

        async with make_coordinator() as sync:
            sync.set_conflict_handler(lambda key, conflicts: seen.append((key, conflicts)))
            result = await sync.commit(CLIENTS, [ClientRecord("c1", "Mine", version=2)])

            assert sync.stats.conflicts_detected == 1

        assert [(key, [c.id for c in conflicts]) for key, conflicts in seen] == [("clients", ["c1"])]
        assert result.merged[0].name == "Theirs"

    @pytest.mark.asyncio
    async def test_failed_commit_counted(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "A"]]})
        httpx_mock.add_response(url=VALUES, json={"values": [["c1", "A"], ["c2", "B"]]})

        async with make_coordinator(SyncSettings(max_retries=1)) as sync:
            with pytest.raises(ConflictExhausted):
                await sync.commit(CLIENTS, [])

            assert sync.stats.commits_failed == 1
            assert not sync.locks.is_locked("clients")

    @pytest.mark.asyncio
    async def test_write_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url=VALUES, json={"values": []})
        httpx_mock.add_response(url=VALUES, json={"values": []})
        httpx_mock.add_response(method="PUT", url=WRITE_URL, status_code=429, json={"error": {"message": "Quota"}})

        async with make_coordinator() as sync:
            with pytest.raises(RemoteWriteError, match="Quota"):
                await sync.commit(CLIENTS, [ClientRecord("c1", "A")])


class TestAppendAndClear:
    """Tests for append and clear."""

    @pytest.mark.asyncio
    async def test_append(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url=f"{VALUES}:append?valueInputOption=USER_ENTERED", json={})

        async with make_coordinator() as sync:
            count = await sync.append(CLIENTS, [ClientRecord("c9", "Log entry", 1.0, version=1)])

        assert count == 1
        body = json.loads(httpx_mock.get_request().content)
        assert body == {"values": [["c9", "Log entry", 1.0, 1, ""]]}

    @pytest.mark.asyncio
    async def test_append_nothing(self) -> None:
        async with make_coordinator() as sync:
            assert await sync.append(CLIENTS, []) == 0

    @pytest.mark.asyncio
    async def test_clear(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url=f"{VALUES}:clear", json={})

        async with make_coordinator() as sync:
            sync.cache.set("clients", [])
            await sync.clear(CLIENTS)
            assert "clients" not in sync.cache

    @pytest.mark.asyncio
    async def test_clear_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url=f"{VALUES}:clear", status_code=404, json={})

        async with make_coordinator() as sync:
            with pytest.raises(RemoteWriteError):
                await sync.clear(CLIENTS)
            assert not sync.locks.is_locked("clients")


class TestIndependence:
    """Coordinators share no state."""

    def test_separate_coordinators(self) -> None:
        first = make_coordinator()
        second = make_coordinator()
        assert first.locks is not second.locks
        assert first.cache is not second.cache

    def test_from_config_uses_settings(self) -> None:
        config = ReplicaConfig(spreadsheet_id="sheet-1", token="t")
        settings = SyncSettings(max_retries=5, cache_ttl=10.0)
        sync = SyncCoordinator.from_config(config, settings)
        assert sync.settings.max_retries == 5
