"""Tests for peer_registry.storage — cache backends and the directory store."""

from __future__ import annotations

import json

import pytest

from peer_registry.errors import StoreError
from peer_registry.network.rpc import BootnodeEndpoint
from peer_registry.registry.peer import ContactInfo, GeoInfo, PeerRecord, ProvenanceRecord, Timestamp
from peer_registry.storage.cache import MemoryCache, SqliteCache
from peer_registry.storage.directory import PEERS_KEY, PROVENANCE_KEY, DirectoryStore

KEY = "ab" * 64


@pytest.fixture
def sqlite_cache(tmp_path):
    """Yield an opened SqliteCache, close after test."""
    cache = SqliteCache(tmp_path / "cache.db")
    cache.open()
    yield cache
    cache.close()


# ── Cache backends ───────────────────────────────────────────────

class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_get_set(self):
        cache = MemoryCache()
        assert await cache.get("k") is None
        await cache.set("k", b"v")
        assert await cache.get("k") == b"v"

    @pytest.mark.asyncio
    async def test_expiry(self):
        cache = MemoryCache()
        await cache.set("k", b"v", ttl=-1)
        assert await cache.get("k") is None
        assert "k" not in cache

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        cache = MemoryCache()
        await cache.set("old", b"v", ttl=-1)
        await cache.set("new", b"v", ttl=3600)
        await cache.set("forever", b"v")
        assert cache.purge_expired() == 1
        assert "old" not in cache
        assert "new" in cache
        assert "forever" in cache


class TestSqliteCache:
    @pytest.mark.asyncio
    async def test_get_set(self, sqlite_cache):
        await sqlite_cache.set("k", b"v")
        await sqlite_cache.set("k", b"w")
        assert await sqlite_cache.get("k") == b"w"

    @pytest.mark.asyncio
    async def test_expiry(self, sqlite_cache):
        await sqlite_cache.set("old", b"v", ttl=-1)
        await sqlite_cache.set("new", b"v", ttl=3600)
        assert await sqlite_cache.get("old") is None
        assert await sqlite_cache.get("new") == b"v"

    @pytest.mark.asyncio
    async def test_purge_expired(self, sqlite_cache):
        await sqlite_cache.set("a", b"1", ttl=-1)
        await sqlite_cache.set("b", b"2", ttl=-1)
        await sqlite_cache.set("c", b"3")
        assert sqlite_cache.purge_expired() == 2
        assert await sqlite_cache.get("c") == b"3"

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        first = SqliteCache(path)
        first.open()
        await first.set("k", b"kept")
        first.close()

        second = SqliteCache(path)
        second.open()
        try:
            assert await second.get("k") == b"kept"
        finally:
            second.close()


# ── Directory store ──────────────────────────────────────────────

def make_record() -> PeerRecord:
    return PeerRecord(
        identity=KEY,
        attributes={"enode": f"enode://{KEY}@1.2.3.4:30303", "name": "geth"},
        contact=ContactInfo(
            first=Timestamp.at(1000), last=Timestamp.at(2000), refresh=Timestamp.at(1500),
        ),
        geo=GeoInfo(ip="1.2.3.4", city="X"),
    )


class TestDirectoryStore:
    @pytest.mark.asyncio
    async def test_empty(self):
        assert await DirectoryStore(MemoryCache()).load() == ({}, {})

    @pytest.mark.asyncio
    async def test_save_and_load(self, sqlite_cache):
        store = DirectoryStore(sqlite_cache)
        record = make_record()
        origin = ProvenanceRecord(BootnodeEndpoint("https://a", "u", "p"))
        await store.save({KEY: record}, {KEY: origin})

        directory, provenance = await store.load()
        assert directory == {KEY: record}
        assert provenance == {KEY: origin}

    @pytest.mark.asyncio
    async def test_snapshot_format(self):
        cache = MemoryCache()
        await DirectoryStore(cache).save({KEY: make_record()}, {})
        raw = json.loads(await cache.get(PEERS_KEY))
        assert raw[KEY]["contact"]["refresh"]["unix"] == 1500
        assert raw[KEY]["ip_info"]["city"] == "X"
        assert raw[KEY]["name"] == "geth"

    @pytest.mark.asyncio
    async def test_legacy_snapshot_without_provenance(self):
        cache = MemoryCache()
        legacy = {
            KEY: {
                "enode": f"enode://{KEY}@1.2.3.4:30303",
                "ip_info": {},
                "contact": {
                    "first": {"unix": 1000, "rfc3339": "1970-01-01T00:16:40Z"},
                    "last": {"unix": 2000, "rfc3339": "1970-01-01T00:33:20Z"},
                },
            },
        }
        await cache.set(PEERS_KEY, json.dumps(legacy).encode())

        directory, provenance = await DirectoryStore(cache).load()
        assert directory[KEY].geo is None
        assert directory[KEY].contact.refresh is None
        assert provenance == {}

    @pytest.mark.asyncio
    async def test_bad_records_skipped(self):
        cache = MemoryCache()
        snapshot = {KEY: make_record().to_dict(), "broken": {"contact": "nope"}}
        await cache.set(PEERS_KEY, json.dumps(snapshot).encode())
        await cache.set(PROVENANCE_KEY, json.dumps({"broken": {"nothing": 1}}).encode())

        directory, provenance = await DirectoryStore(cache).load()
        assert list(directory) == [KEY]
        assert provenance == {}

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_raises(self):
        cache = MemoryCache()
        await cache.set(PEERS_KEY, b"[1, 2")
        with pytest.raises(StoreError):
            await DirectoryStore(cache).load()

    @pytest.mark.asyncio
    async def test_non_mapping_snapshot_raises(self):
        cache = MemoryCache()
        await cache.set(PROVENANCE_KEY, b"[]")
        with pytest.raises(StoreError):
            await DirectoryStore(cache).load()
