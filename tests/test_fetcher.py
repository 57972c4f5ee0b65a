"""Tests for peer_registry.network.fetcher."""

from __future__ import annotations

import asyncio
import logging

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from peer_registry.errors import MalformedResponse, RpcResponseError
from peer_registry.network.fetcher import (
    BootnodeFetcher,
    Envelope,
    FailureKind,
    RawArray,
    classify_payload,
    normalize_peer_list,
    parse_flag,
)
from peer_registry.network.rpc import BootnodeEndpoint, JsonRpcClient


def make_entry(n: int, ip: str = "10.0.0.1") -> dict:
    return {
        "enode": f"enode://{n:0128x}@{ip}:30303",
        "name": f"client-{n}",
        "network": {"remoteAddress": f"{ip}:30303", "inbound": "true"},
        "protocols": {"eth": {"version": 67}},
    }


# ── Shape normalization ──────────────────────────────────────────

class TestNormalization:
    def test_bare_array(self):
        shape = classify_payload([make_entry(1)])
        assert isinstance(shape, RawArray)

    def test_envelope(self):
        shape = classify_payload({"jsonrpc": "2.0", "id": 1, "result": [make_entry(1)]})
        assert isinstance(shape, Envelope)

    def test_both_shapes_normalize_alike(self):
        entries = [make_entry(1), make_entry(2)]
        assert normalize_peer_list(entries) == normalize_peer_list({"result": entries})

    def test_envelope_with_error(self):
        with pytest.raises(RpcResponseError):
            classify_payload({"error": {"code": -32000, "message": "unauthorized"}})

    def test_envelope_without_array(self):
        with pytest.raises(MalformedResponse):
            classify_payload({"result": {"peers": []}})

    def test_scalar_body(self):
        with pytest.raises(MalformedResponse):
            classify_payload("nope")

    def test_drops_non_objects(self):
        assert len(normalize_peer_list([make_entry(1), "junk", 3])) == 1

    def test_network_flags_become_bool(self):
        peers = normalize_peer_list([make_entry(1)])
        assert peers[0]["network"]["inbound"] is True

    def test_does_not_mutate_input(self):
        entry = make_entry(1)
        normalize_peer_list([entry])
        assert entry["network"]["inbound"] == "true"


class TestParseFlag:
    @pytest.mark.parametrize("value", [True, 1, "1", "true", "TRUE", " yes ", "on"])
    def test_truthy(self, value):
        assert parse_flag(value) is True

    @pytest.mark.parametrize("value", [False, 0, 2, "0", "false", "no", "", None, "maybe", []])
    def test_falsy(self, value):
        assert parse_flag(value) is False


# ── Fetching from fake bootnodes ─────────────────────────────────

def bootnode_app(body=None, delay: float = 0.0, status: int = 200) -> web.Application:
    async def handler(request: web.Request) -> web.Response:
        payload = await request.json()
        assert payload["method"] == "admin_peers"
        if delay:
            await asyncio.sleep(delay)
        if status != 200:
            return web.Response(status=status)
        return web.json_response(body)

    app = web.Application()
    app.router.add_post("/", handler)
    return app


class TestBootnodeFetcher:
    @pytest.mark.asyncio
    async def test_mixed_shapes(self):
        enveloped = bootnode_app({"jsonrpc": "2.0", "id": 1, "result": [make_entry(1)]})
        bare = bootnode_app([make_entry(2), make_entry(3)])
        async with TestServer(enveloped) as s1, TestServer(bare) as s2:
            endpoints = [
                BootnodeEndpoint(str(s1.make_url("/"))),
                BootnodeEndpoint(str(s2.make_url("/"))),
            ]
            async with JsonRpcClient() as client:
                outcomes = await BootnodeFetcher(client, endpoints, timeout=5).fetch_all()

        assert [o.ok for o in outcomes] == [True, True]
        assert [len(o.peers) for o in outcomes] == [1, 2]
        assert [o.endpoint for o in outcomes] == endpoints

    @pytest.mark.asyncio
    async def test_one_timeout_isolated(self, caplog):
        """One bootnode times out; the other's peers still come back."""
        slow = bootnode_app([make_entry(1)], delay=0.5)
        fast = bootnode_app([make_entry(2)])
        async with TestServer(slow) as s1, TestServer(fast) as s2:
            slow_ep = BootnodeEndpoint(str(s1.make_url("/")))
            fast_ep = BootnodeEndpoint(str(s2.make_url("/")))
            async with JsonRpcClient() as client:
                fetcher = BootnodeFetcher(client, [slow_ep, fast_ep], timeout=0.1)
                with caplog.at_level(logging.INFO, logger="peer_registry.network.fetcher"):
                    outcomes = await fetcher.fetch_all()

        assert outcomes[0].failure is FailureKind.TIMEOUT
        assert outcomes[0].peers == []
        assert outcomes[1].ok
        assert len(outcomes[1].peers) == 1

        errors = [
            r for r in caplog.records
            if r.name == "peer_registry.network.fetcher" and r.levelno == logging.ERROR
        ]
        assert len(errors) == 1
        assert slow_ep.url in errors[0].getMessage()
        assert any(
            fast_ep.url in r.getMessage() and r.levelno == logging.INFO
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_malformed_and_http_error(self):
        async with TestServer(bootnode_app({"unexpected": True})) as s1, \
                TestServer(bootnode_app(status=502)) as s2:
            endpoints = [
                BootnodeEndpoint(str(s1.make_url("/"))),
                BootnodeEndpoint(str(s2.make_url("/"))),
            ]
            async with JsonRpcClient() as client:
                outcomes = await BootnodeFetcher(client, endpoints, timeout=5).fetch_all()

        assert outcomes[0].failure is FailureKind.MALFORMED
        assert outcomes[1].failure is FailureKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_rpc_error_envelope(self):
        body = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "disabled"}}
        async with TestServer(bootnode_app(body)) as server:
            endpoint = BootnodeEndpoint(str(server.make_url("/")))
            async with JsonRpcClient() as client:
                outcome = await BootnodeFetcher(client, [endpoint]).fetch_one(endpoint)
        assert outcome.failure is FailureKind.RPC_ERROR
        assert "disabled" in outcome.detail

    @pytest.mark.asyncio
    async def test_no_endpoints(self):
        async with JsonRpcClient() as client:
            assert await BootnodeFetcher(client, []).fetch_all() == []
