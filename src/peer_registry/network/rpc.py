"""JSON-RPC transport — POST calls to bootnodes with per-call timeouts.

Uses a shared aiohttp ClientSession. Every request carries an id from an
injected RequestIdGenerator, and every call has an explicit timeout. Failures
are raised as RpcError subclasses so callers can decide whether to isolate
or propagate them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from aiohttp import BasicAuth, ClientError, ClientSession, ClientTimeout

from peer_registry.errors import (
    MalformedResponse,
    RpcResponseError,
    RpcTimeout,
    RpcTransportError,
)

logger = logging.getLogger(__name__)

MAX_REQUEST_ID = 2**53 - 1  # Largest integer a JSON number holds exactly
DEFAULT_CALL_TIMEOUT = 10.0


@dataclass(frozen=True)
class BootnodeEndpoint:
    """A bootnode RPC endpoint with optional basic-auth credentials."""

    url: str
    username: str | None = None
    password: str | None = field(default=None, repr=False)

    @property
    def basic_auth(self) -> BasicAuth | None:
        if self.username is None:
            return None
        return BasicAuth(self.username, self.password or "")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url}
        if self.username is not None:
            data["auth"] = {"username": self.username, "password": self.password}
        return data

    @classmethod
    def from_dict(cls, data: Any) -> BootnodeEndpoint:
        """Build from a stored reference.

        Accepts ``{"url": ..., "auth": {...}}`` and the older
        ``[url, {"auth": {...}}]`` pair.
        """
        if isinstance(data, (list, tuple)) and data:
            url = data[0]
            opts = data[1] if len(data) > 1 and isinstance(data[1], dict) else {}
        elif isinstance(data, dict):
            url = data.get("url")
            opts = data
        else:
            raise ValueError(f"unrecognized bootnode reference: {data!r}")
        if not isinstance(url, str) or not url:
            raise ValueError("bootnode reference has no url")
        auth = opts.get("auth") or {}
        return cls(url=url, username=auth.get("username"), password=auth.get("password"))


class RequestIdGenerator:
    """Strictly increasing JSON-RPC request ids that wrap to ``start``.

    After ``maximum`` has been issued the next id is ``start`` again.
    """

    def __init__(self, start: int = 1, maximum: int = MAX_REQUEST_ID) -> None:
        if start > maximum:
            raise ValueError("start must not exceed maximum")
        self._start = start
        self._maximum = maximum
        self._next = start

    def __call__(self) -> int:
        value = self._next
        self._next = self._start if value >= self._maximum else value + 1
        return value


class JsonRpcClient:
    """Issues JSON-RPC 2.0 POST requests to bootnode endpoints."""

    def __init__(
        self,
        session: ClientSession | None = None,
        request_ids: RequestIdGenerator | None = None,
        default_timeout: float = DEFAULT_CALL_TIMEOUT,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._request_ids = request_ids or RequestIdGenerator()
        self.default_timeout = default_timeout

    async def start(self) -> None:
        """Open the client session if one was not injected."""
        if self._session is None:
            self._session = ClientSession()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> JsonRpcClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def build_request(self, method: str, params: list[Any] | None = None) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": self._request_ids(),
        }

    async def post(
        self,
        endpoint: BootnodeEndpoint,
        payload: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """POST a request and return the decoded JSON body as-is.

        Raises:
            RpcTimeout: No response within ``timeout`` seconds.
            RpcTransportError: Connection failure or HTTP error status.
            MalformedResponse: Body is not valid JSON.
        """
        if self._session is None:
            await self.start()
        assert self._session is not None

        limit = ClientTimeout(total=timeout if timeout is not None else self.default_timeout)
        try:
            async with self._session.post(
                endpoint.url,
                json=payload,
                auth=endpoint.basic_auth,
                timeout=limit,
            ) as resp:
                if resp.status >= 400:
                    raise RpcTransportError(f"HTTP {resp.status}", endpoint.url)
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise MalformedResponse(f"invalid JSON body: {e}", endpoint.url) from e
        except asyncio.TimeoutError as e:
            raise RpcTimeout(f"timed out after {limit.total}s", endpoint.url) from e
        except ClientError as e:
            raise RpcTransportError(str(e) or type(e).__name__, endpoint.url) from e

    async def call(
        self,
        endpoint: BootnodeEndpoint,
        method: str,
        params: list[Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Call ``method`` and return the ``result`` member of the envelope.

        Raises:
            RpcResponseError: The envelope carries an ``error`` member.
            MalformedResponse: The body is not a JSON-RPC envelope.
        """
        body = await self.post(endpoint, self.build_request(method, params), timeout)
        if not isinstance(body, dict):
            raise MalformedResponse(
                f"{method}: expected object, got {type(body).__name__}", endpoint.url,
            )
        error = body.get("error")
        if error:
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            raise RpcResponseError(f"{method}: {message or json.dumps(error)}", endpoint.url)
        if "result" not in body:
            raise MalformedResponse(f"{method}: envelope has no result", endpoint.url)
        return body["result"]
