"""Geo augmentation — resolve peer addresses to location metadata.

Successful lookups are cached under ``ipInfo.<ip>`` for a long time.
Failed lookups are logged and return nothing; they are never cached, so
the next cycle tries again.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from aiohttp import ClientError, ClientSession, ClientTimeout

from peer_registry.errors import GeoLookupError
from peer_registry.registry.peer import Directory, GeoInfo
from peer_registry.storage.cache import KeyValueCache

logger = logging.getLogger(__name__)

IPINFO_URL = "https://ipinfo.io"
LOOKUP_TIMEOUT = ClientTimeout(total=10)
DEFAULT_GEO_TTL = 10 * 24 * 60 * 60  # 10 days


class GeoLookup(Protocol):
    async def lookup(self, ip: str) -> GeoInfo: ...


class IpInfoLookup:
    """Resolves addresses against the ipinfo.io JSON API."""

    def __init__(
        self,
        token: str,
        session: ClientSession | None = None,
        base_url: str = IPINFO_URL,
    ) -> None:
        self._token = token
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def lookup(self, ip: str) -> GeoInfo:
        if self._session is None:
            self._session = ClientSession()
        url = f"{self._base_url}/{ip}/json"
        try:
            async with self._session.get(
                url, params={"token": self._token}, timeout=LOOKUP_TIMEOUT,
            ) as resp:
                if resp.status != 200:
                    raise GeoLookupError(f"ipinfo returned HTTP {resp.status} for {ip}")
                data = await resp.json(content_type=None)
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            raise GeoLookupError(f"ipinfo lookup for {ip} failed: {e}") from e
        return _from_ipinfo(data, ip)


def _from_ipinfo(data: Any, ip: str) -> GeoInfo:
    if not isinstance(data, dict) or data.get("bogon"):
        raise GeoLookupError(f"no location available for {ip}")
    return GeoInfo(
        ip=data.get("ip", ip),
        hostname=data.get("hostname"),
        city=data.get("city"),
        region=data.get("region"),
        country=data.get("country_name") or data.get("country"),
        countryCode=data.get("country"),
        loc=data.get("loc"),
        org=data.get("org"),
        postal=data.get("postal"),
        timezone=data.get("timezone"),
    )


class GeoAugmenter:
    """Cached geo resolution for peer addresses."""

    def __init__(
        self,
        cache: KeyValueCache,
        lookup: GeoLookup | None,
        ttl: float = DEFAULT_GEO_TTL,
        concurrency: int = 8,
        enabled: bool = True,
    ) -> None:
        self._cache = cache
        self._lookup = lookup
        self.ttl = ttl
        self.enabled = enabled and lookup is not None
        self._concurrency = max(1, concurrency)

    @staticmethod
    def cache_key(ip: str) -> str:
        return f"ipInfo.{ip}"

    async def resolve(self, ip: str) -> GeoInfo | None:
        """Location for ``ip``, or None when disabled or unresolvable."""
        if not self.enabled or not ip:
            return None
        assert self._lookup is not None

        key = self.cache_key(ip)
        cached = await self._cache.get(key)
        if cached is not None:
            try:
                geo = GeoInfo.from_dict(json.loads(cached))
            except ValueError:
                geo = None
            if geo is not None:
                return geo
            logger.debug("Ignoring unreadable geo cache entry for %s", ip)

        try:
            geo = await self._lookup.lookup(ip)
        except GeoLookupError as e:
            logger.error("Error retrieving IP info: %s", e)
            return None

        await self._cache.set(key, json.dumps(geo.to_dict()).encode(), ttl=self.ttl)
        return geo

    async def augment(self, directory: Directory) -> Directory:
        """Return a copy of ``directory`` with geo filled in where it was missing.

        Records that already carry geo, or whose lookup fails, are kept as is.
        Peers sharing an address are resolved with a single lookup.
        """
        missing = [r for r in directory.values() if r.geo is None and r.remote_ip]
        if not self.enabled or not missing:
            return dict(directory)

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _resolve(ip: str) -> GeoInfo | None:
            async with semaphore:
                return await self.resolve(ip)

        ips = sorted({r.remote_ip for r in missing})
        results = await asyncio.gather(*(_resolve(ip) for ip in ips))
        by_ip = dict(zip(ips, results))
        augmented = dict(directory)
        resolved = 0
        for record in missing:
            geo = by_ip[record.remote_ip]
            if geo is not None:
                augmented[record.identity] = record.with_geo(geo)
                resolved += 1
        logger.debug("Geo resolved for %d of %d peers", resolved, len(missing))
        return augmented
