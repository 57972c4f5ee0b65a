"""Cycle driver — the periodic fetch/merge/evict/refresh loop.

One cycle:
  1. Load the stored directory and provenance
  2. Fetch every bootnode's peer table
  3. Merge observations (filling in geo data)
  4. Plan refreshes and evictions, drop evicted peers
  5. Save, so a crash during refresh keeps the merge
  6. Refresh the selected peers at their origin bootnodes
  7. Save again with refresh stamps
  8. Purge expired cache entries (stale geo lookups)

A cycle runs once right away and then every ``interval`` seconds. Ticks
that land while a cycle is still running are skipped: overlapping cycles
would race loading and saving the same snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from peer_registry.network.fetcher import BootnodeFetcher
from peer_registry.registry.merger import PeerMerger
from peer_registry.registry.peer import Timestamp
from peer_registry.registry.policy import StalenessPolicy, apply_evictions
from peer_registry.registry.refresh import RefreshCoordinator, apply_refresh_report
from peer_registry.storage.cache import KeyValueCache
from peer_registry.storage.directory import DirectoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleReport:
    """Summary of one completed cycle."""

    started_at: float
    duration: float
    endpoints_ok: int
    endpoints_failed: int
    peers: int
    public_peers: int
    observed: int
    evicted: int
    refreshed: int
    refresh_failed: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "duration_s": round(self.duration, 3),
            "endpoints_ok": self.endpoints_ok,
            "endpoints_failed": self.endpoints_failed,
            "peers": self.peers,
            "public_peers": self.public_peers,
            "observed": self.observed,
            "evicted": self.evicted,
            "refreshed": self.refreshed,
            "refresh_failed": self.refresh_failed,
        }


class CycleDriver:
    """Runs update cycles on a fixed interval, never two at a time."""

    def __init__(
        self,
        store: DirectoryStore,
        fetcher: BootnodeFetcher,
        merger: PeerMerger,
        policy: StalenessPolicy,
        coordinator: RefreshCoordinator,
        interval: float = 300.0,
        max_refresh_per_cycle: int = 50,
        clock: Callable[[], float] = time.time,
        cache: KeyValueCache | None = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.merger = merger
        self.policy = policy
        self.coordinator = coordinator
        self.interval = interval
        self.max_refresh_per_cycle = max_refresh_per_cycle
        self._clock = clock
        self.cache = cache
        self._lock = asyncio.Lock()
        self._running = False
        self._ticker: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self.last_report: CycleReport | None = None
        self.cycles_skipped = 0

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def start(self) -> None:
        """Kick off the first cycle and the interval ticker."""
        self._running = True
        self._ticker = asyncio.create_task(self._run_forever())
        logger.info("Cycle driver started: interval=%.0fs", self.interval)

    async def stop(self) -> None:
        self._running = False
        for task in (self._ticker, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        logger.info("Cycle driver stopped")

    async def _run_forever(self) -> None:
        while self._running:
            self.tick()
            await asyncio.sleep(self.interval)

    def tick(self) -> asyncio.Task | None:
        """Start a cycle in the background unless one is already running."""
        if self.in_flight:
            self.cycles_skipped += 1
            logger.warning("Previous cycle still running, skipping this tick")
            return None
        self._inflight = asyncio.create_task(self._safe_cycle())
        return self._inflight

    async def _safe_cycle(self) -> CycleReport | None:
        try:
            return await self.run_cycle()
        except Exception:
            logger.exception("Error updating peers")
            return None

    async def run_cycle(self) -> CycleReport | None:
        """Run one cycle now; returns None if another is in progress."""
        if self._lock.locked():
            self.cycles_skipped += 1
            logger.warning("Cycle already in progress, not starting another")
            return None
        async with self._lock:
            report = await self._cycle()
            self.last_report = report
            return report

    async def _cycle(self) -> CycleReport:
        started = self._clock()
        directory, provenance = await self.store.load()

        outcomes = await self.fetcher.fetch_all()
        now = Timestamp.at(self._clock())
        merged = await self.merger.merge(directory, provenance, outcomes, now)

        plan = self.policy.plan(
            merged.directory, merged.provenance, now.unix, self.max_refresh_per_cycle,
        )
        directory, provenance = apply_evictions(merged.directory, merged.provenance, plan.evict)
        for identity in plan.evict:
            logger.debug("Deleted stale peer %s", identity[:16])

        await self.store.save(directory, provenance)

        report = await self.coordinator.refresh(plan.refresh, directory, provenance)
        if report.submitted:
            directory = apply_refresh_report(directory, report, Timestamp.at(self._clock()))
            await self.store.save(directory, provenance)

        if self.cache is not None:
            purged = self.cache.purge_expired()
            if purged:
                logger.debug("Purged %d expired cache entries", purged)

        public = sum(1 for r in directory.values() if r.is_public)
        logger.info(
            "Found %d unique peers, %d are publicly accessible (no firewall)",
            len(directory), public,
        )
        return CycleReport(
            started_at=started,
            duration=self._clock() - started,
            endpoints_ok=sum(1 for o in outcomes if o.ok),
            endpoints_failed=sum(1 for o in outcomes if not o.ok),
            peers=len(directory),
            public_peers=public,
            observed=len(merged.observed),
            evicted=len(plan.evict),
            refreshed=report.success_count,
            refresh_failed=report.failure_count,
        )
