"""HTTP routes — serve the stored directory.

  GET /peers   JSON array of peer records; 500 with {} if the snapshot
               cannot be read
  GET /health  liveness plus the last cycle summary
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Awaitable, Callable

from aiohttp import web

from peer_registry.registry.policy import visible_records

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def cors_middleware(origin_patterns: list[str]) -> Any:
    """Echo back ``Origin`` when it matches one of ``origin_patterns``."""
    compiled = [re.compile(p) for p in origin_patterns]

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        response = await handler(request)
        origin = request.headers.get("Origin")
        if origin and any(p.search(origin) for p in compiled):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
        return response

    return middleware


def setup_routes(app: web.Application, service: Any) -> None:
    """Register the read routes on *app*."""
    app["registry"] = service
    app.router.add_get("/peers", _peers)
    app.router.add_get("/health", _health)


async def _peers(request: web.Request) -> web.Response:
    service = request.app["registry"]
    try:
        directory = await service.store.load_directory()
        records = visible_records(
            directory, int(time.time()), service.config.visibility_threshold,
        )
    except Exception:
        logger.exception("Error retrieving peers")
        return web.json_response({}, status=500)
    return web.json_response([r.to_dict() for r in records])


async def _health(request: web.Request) -> web.Response:
    service = request.app["registry"]
    report = service.driver.last_report
    return web.json_response({
        "status": "healthy",
        "peers": report.peers if report else None,
        "bootnodes": len(service.config.bootnodes),
        "cycle_in_flight": service.driver.in_flight,
        "last_cycle": report.to_dict() if report else None,
    })
