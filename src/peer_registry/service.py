"""Registry service — wires the cache, RPC client, cycle driver and HTTP app."""

from __future__ import annotations

import logging

from aiohttp import web

from peer_registry.api.routes import cors_middleware, setup_routes
from peer_registry.config import RegistryConfig
from peer_registry.driver import CycleDriver
from peer_registry.geo import GeoAugmenter, IpInfoLookup
from peer_registry.network.fetcher import BootnodeFetcher
from peer_registry.network.rpc import JsonRpcClient, RequestIdGenerator
from peer_registry.registry.merger import PeerMerger
from peer_registry.registry.policy import StalenessPolicy
from peer_registry.registry.refresh import RefreshCoordinator
from peer_registry.storage.cache import KeyValueCache, MemoryCache, SqliteCache
from peer_registry.storage.directory import DirectoryStore

logger = logging.getLogger(__name__)


class RegistryService:
    """The running registry: background cycles plus the read API."""

    def __init__(
        self,
        config: RegistryConfig,
        cache: KeyValueCache | None = None,
        client: JsonRpcClient | None = None,
        geo_lookup: IpInfoLookup | None = None,
    ) -> None:
        config.validate()
        self.config = config

        if cache is None:
            cache = SqliteCache(config.cache_path) if config.cache_path else MemoryCache()
        self.cache = cache
        self.client = client or JsonRpcClient(
            request_ids=RequestIdGenerator(),
            default_timeout=config.refresh_call_timeout,
        )
        if geo_lookup is None and config.geo_active:
            geo_lookup = IpInfoLookup(config.ipinfo_token)
        self.geo_lookup = geo_lookup

        self.store = DirectoryStore(cache)
        self.augmenter = GeoAugmenter(
            cache,
            geo_lookup,
            ttl=config.geo_cache_ttl,
            concurrency=config.geo_concurrency,
            enabled=config.geo_active,
        )
        self.driver = CycleDriver(
            store=self.store,
            fetcher=BootnodeFetcher(self.client, config.endpoints(), config.fetch_timeout),
            merger=PeerMerger(self.augmenter),
            policy=StalenessPolicy(config.refresh_threshold, config.delete_threshold),
            coordinator=RefreshCoordinator(
                self.client,
                batch_size=config.refresh_batch_size,
                call_timeout=config.refresh_call_timeout,
                settle_delay=config.refresh_settle_delay,
            ),
            interval=config.cycle_interval,
            max_refresh_per_cycle=config.max_refresh_per_cycle,
            cache=cache,
        )

        self.app = web.Application(middlewares=[cors_middleware(config.cors_origins)])
        setup_routes(self.app, self)
        self._runner: web.AppRunner | None = None

    async def start(self, serve_http: bool = True) -> None:
        if isinstance(self.cache, SqliteCache):
            self.cache.open()
        await self.client.start()
        if serve_http:
            self._runner = web.AppRunner(self.app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.config.host, self.config.port)
            await site.start()
            logger.info("Listening on %s:%d", self.config.host, self.config.port)
        await self.driver.start()
        logger.info(
            "Registry started: bootnodes=%d geo=%s refresh<%.0fs delete>%.0fs",
            len(self.config.bootnodes),
            self.augmenter.enabled,
            self.config.refresh_threshold,
            self.config.delete_threshold,
        )

    async def stop(self) -> None:
        await self.driver.stop()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        await self.client.close()
        if self.geo_lookup is not None:
            await self.geo_lookup.close()
        if isinstance(self.cache, SqliteCache):
            self.cache.close()
        logger.info("Registry stopped")
