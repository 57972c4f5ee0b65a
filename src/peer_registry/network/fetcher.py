"""Bootnode fetcher — pull every configured bootnode's peer table concurrently.

Bootnodes answer ``admin_peers`` in one of two shapes: a JSON-RPC envelope
``{"result": [...]}`` or a bare array of peer entries. Both are normalized
here into one raw peer list so the merge step never sees the difference.
One endpoint failing never affects the others.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from peer_registry.errors import (
    MalformedResponse,
    RpcError,
    RpcResponseError,
    RpcTimeout,
)
from peer_registry.network.rpc import BootnodeEndpoint, JsonRpcClient

logger = logging.getLogger(__name__)

PEERS_METHOD = "admin_peers"
DEFAULT_FETCH_TIMEOUT = 60.0

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_NETWORK_FLAGS = ("inbound", "trusted", "static")


class FailureKind(str, Enum):
    """Why a bootnode contributed no peers this cycle."""

    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    RPC_ERROR = "rpc_error"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class RawArray:
    """Body was a bare array of peer entries."""

    items: list[Any]


@dataclass(frozen=True)
class Envelope:
    """Body was a JSON-RPC envelope whose result is the array."""

    result: list[Any]


PeerListShape = Union[RawArray, Envelope]


def classify_payload(body: Any) -> PeerListShape:
    """Tell the two accepted response shapes apart.

    Raises:
        RpcResponseError: The envelope carries an ``error`` member.
        MalformedResponse: Neither shape matches.
    """
    if isinstance(body, list):
        return RawArray(items=body)
    if isinstance(body, dict):
        if body.get("error"):
            error = body["error"]
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            raise RpcResponseError(f"{PEERS_METHOD}: {message}")
        if isinstance(body.get("result"), list):
            return Envelope(result=body["result"])
        raise MalformedResponse("envelope result is not an array")
    raise MalformedResponse(f"unexpected body type {type(body).__name__}")


def parse_flag(value: Any) -> bool:
    """Turn a boolean-ish value into a bool.

    Accepts real booleans, the integers 0/1 and the strings
    1/0/true/false/yes/no/on/off in any case. Anything else is False.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


def normalize_entry(entry: dict[str, Any]) -> dict[str, Any]:
    """Copy an entry with its boolean-ish network flags made boolean."""
    network = entry.get("network")
    if not isinstance(network, dict):
        return dict(entry)
    fixed = dict(network)
    for flag in _NETWORK_FLAGS:
        if flag in fixed:
            fixed[flag] = parse_flag(fixed[flag])
    return {**entry, "network": fixed}


def normalize_peer_list(body: Any) -> list[dict[str, Any]]:
    """Unwrap either response shape into a list of peer entry dicts."""
    shape = classify_payload(body)
    items = shape.items if isinstance(shape, RawArray) else shape.result
    peers = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Dropping non-object peer entry: %r", item)
            continue
        peers.append(normalize_entry(item))
    return peers


@dataclass(frozen=True)
class FetchOutcome:
    """Result of querying one bootnode."""

    endpoint: BootnodeEndpoint
    peers: list[dict[str, Any]] = field(default_factory=list)
    failure: FailureKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None


class BootnodeFetcher:
    """Queries the configured bootnodes for their current peer tables."""

    def __init__(
        self,
        client: JsonRpcClient,
        endpoints: list[BootnodeEndpoint],
        timeout: float = DEFAULT_FETCH_TIMEOUT,
    ) -> None:
        self._client = client
        self.endpoints = list(endpoints)
        self.timeout = timeout

    async def fetch_all(self) -> list[FetchOutcome]:
        """Fetch from every bootnode concurrently.

        Returns:
            One outcome per endpoint, in configuration order.
        """
        return list(await asyncio.gather(*(self.fetch_one(ep) for ep in self.endpoints)))

    async def fetch_one(self, endpoint: BootnodeEndpoint) -> FetchOutcome:
        try:
            body = await self._client.post(
                endpoint,
                self._client.build_request(PEERS_METHOD),
                timeout=self.timeout,
            )
            peers = normalize_peer_list(body)
        except RpcError as e:
            kind = _failure_kind(e)
            logger.error("Error fetching peers from %s (%s): %s", endpoint.url, kind.value, e)
            return FetchOutcome(endpoint=endpoint, failure=kind, detail=str(e))

        logger.info("Fetched %d peers from %s", len(peers), endpoint.url)
        return FetchOutcome(endpoint=endpoint, peers=peers)


def _failure_kind(error: RpcError) -> FailureKind:
    if isinstance(error, RpcTimeout):
        return FailureKind.TIMEOUT
    if isinstance(error, MalformedResponse):
        return FailureKind.MALFORMED
    if isinstance(error, RpcResponseError):
        return FailureKind.RPC_ERROR
    return FailureKind.TRANSPORT
