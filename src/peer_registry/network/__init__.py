"""Networking layer — bootnode JSON-RPC calls and peer table fetching."""

from peer_registry.network.fetcher import BootnodeFetcher, FailureKind, FetchOutcome
from peer_registry.network.rpc import BootnodeEndpoint, JsonRpcClient, RequestIdGenerator

__all__ = [
    "BootnodeEndpoint",
    "BootnodeFetcher",
    "FailureKind",
    "FetchOutcome",
    "JsonRpcClient",
    "RequestIdGenerator",
]
