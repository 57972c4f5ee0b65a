"""Tests for the HTTP read surface (peer_registry.api.routes)."""

from __future__ import annotations

import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from peer_registry.config import BootnodeConfig, RegistryConfig
from peer_registry.driver import CycleReport
from peer_registry.registry.peer import ContactInfo, PeerRecord, Timestamp
from peer_registry.service import RegistryService
from peer_registry.storage.cache import MemoryCache
from peer_registry.storage.directory import PEERS_KEY

KEY = "cd" * 64


def make_service(**kwargs) -> RegistryService:
    config = RegistryConfig(
        bootnodes=[BootnodeConfig(url="https://a.example")],
        geo_enabled=False,
        **kwargs,
    )
    return RegistryService(config, cache=MemoryCache())


def make_record(last: float) -> PeerRecord:
    return PeerRecord(
        identity=KEY,
        attributes={"enode": f"enode://{KEY}@1.2.3.4:30303", "name": "besu"},
        contact=ContactInfo(first=Timestamp.at(last - 10), last=Timestamp.at(last)),
    )


# ── GET /peers ───────────────────────────────────────────────────

class TestPeersRoute:
    @pytest.mark.asyncio
    async def test_empty(self):
        service = make_service()
        async with TestClient(TestServer(service.app)) as client:
            resp = await client.get("/peers")
            assert resp.status == 200
            assert await resp.json() == []

    @pytest.mark.asyncio
    async def test_returns_records(self):
        service = make_service()
        await service.store.save({KEY: make_record(1_700_000_000)}, {})
        async with TestClient(TestServer(service.app)) as client:
            resp = await client.get("/peers")
            body = await resp.json()
        assert len(body) == 1
        assert body[0]["name"] == "besu"
        assert body[0]["contact"]["last"]["unix"] == 1_700_000_000
        assert body[0]["ip_info"] == {}

    @pytest.mark.asyncio
    async def test_unreadable_snapshot(self):
        service = make_service()
        await service.cache.set(PEERS_KEY, b"{broken")
        async with TestClient(TestServer(service.app)) as client:
            resp = await client.get("/peers")
            assert resp.status == 500
            assert await resp.json() == {}

    @pytest.mark.asyncio
    async def test_visibility_threshold(self):
        service = make_service(visibility_threshold=3600.0)
        await service.store.save({KEY: make_record(1000)}, {})
        async with TestClient(TestServer(service.app)) as client:
            resp = await client.get("/peers")
            assert await resp.json() == []


# ── CORS ─────────────────────────────────────────────────────────

class TestCors:
    @pytest.mark.asyncio
    async def test_allowed_origin_echoed(self):
        service = make_service()
        async with TestClient(TestServer(service.app)) as client:
            resp = await client.get("/peers", headers={"Origin": "https://www.etcnodes.org"})
            assert resp.headers["Access-Control-Allow-Origin"] == "https://www.etcnodes.org"

    @pytest.mark.asyncio
    async def test_other_origin_ignored(self):
        service = make_service()
        async with TestClient(TestServer(service.app)) as client:
            resp = await client.get("/peers", headers={"Origin": "https://evil.example"})
            assert "Access-Control-Allow-Origin" not in resp.headers


# ── GET /health ──────────────────────────────────────────────────

class TestHealthRoute:
    @pytest.mark.asyncio
    async def test_before_first_cycle(self):
        service = make_service()
        async with TestClient(TestServer(service.app)) as client:
            resp = await client.get("/health")
            body = json.loads(await resp.text())
        assert body["status"] == "healthy"
        assert body["peers"] is None
        assert body["bootnodes"] == 1
        assert body["cycle_in_flight"] is False
        assert body["last_cycle"] is None

    @pytest.mark.asyncio
    async def test_after_cycle(self):
        service = make_service()
        service.driver.last_report = CycleReport(
            started_at=1000.0, duration=1.5, endpoints_ok=1, endpoints_failed=0,
            peers=7, public_peers=3, observed=7, evicted=0, refreshed=2, refresh_failed=1,
        )
        async with TestClient(TestServer(service.app)) as client:
            body = await (await client.get("/health")).json()
        assert body["peers"] == 7
        assert body["last_cycle"]["public_peers"] == 3
        assert body["last_cycle"]["refresh_failed"] == 1
