"""Refresh coordinator — re-validate stale peers at their origin bootnode.

For each peer: ``admin_removePeer`` with its enode URL, a short settle
delay, then ``admin_addPeer`` with the same URL. Peers are processed in
batches: concurrently within a batch, one batch after another, so no
bootnode sees more than ``batch_size`` refreshes at once. A failure marks
only that peer as failed for this cycle; there is no retry within a cycle.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Sequence

from peer_registry.errors import RpcError, RpcResponseError
from peer_registry.network.rpc import BootnodeEndpoint, JsonRpcClient
from peer_registry.registry.peer import Directory, Provenance, Timestamp

logger = logging.getLogger(__name__)

REMOVE_METHOD = "admin_removePeer"
ADD_METHOD = "admin_addPeer"

DEFAULT_BATCH_SIZE = 10
DEFAULT_SETTLE_DELAY = 1.0


@dataclass(frozen=True)
class RefreshReport:
    """Outcome of one refresh run."""

    succeeded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    batches: tuple[int, ...] = ()

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def submitted(self) -> int:
        return self.success_count + self.failure_count


class RefreshCoordinator:
    """Runs the remove-then-add round trip for refresh candidates."""

    def __init__(
        self,
        client: JsonRpcClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        call_timeout: float = 10.0,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._client = client
        self.batch_size = batch_size
        self.call_timeout = call_timeout
        self.settle_delay = settle_delay
        self._sleep = sleep

    async def refresh(
        self,
        identities: Sequence[str],
        directory: Directory,
        provenance: Provenance,
    ) -> RefreshReport:
        """Refresh ``identities`` in sequential batches.

        Peers missing from the directory or without provenance count as
        failures; they have no enode or no origin to contact.
        """
        succeeded: list[str] = []
        failed: list[str] = []
        batches: list[int] = []

        for start in range(0, len(identities), self.batch_size):
            batch = list(identities[start:start + self.batch_size])
            batches.append(len(batch))
            results = await asyncio.gather(
                *(self._refresh_identity(i, directory, provenance) for i in batch),
                return_exceptions=True,
            )
            for identity, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error("Refresh of %s raised: %r", identity[:16], result)
                if result is True:
                    succeeded.append(identity)
                else:
                    failed.append(identity)

        if identities:
            logger.info(
                "Refreshed %d peers in %d batches: %d ok, %d failed",
                len(identities), len(batches), len(succeeded), len(failed),
            )
        return RefreshReport(
            succeeded=tuple(succeeded),
            failed=tuple(failed),
            batches=tuple(batches),
        )

    async def _refresh_identity(
        self,
        identity: str,
        directory: Directory,
        provenance: Provenance,
    ) -> bool:
        record = directory.get(identity)
        origin = provenance.get(identity)
        if record is None or origin is None or not record.enode:
            logger.warning("Cannot refresh %s: no enode or origin known", identity[:16])
            return False
        return await self.refresh_peer(record.enode, origin.bootnode)

    async def refresh_peer(self, enode: str, endpoint: BootnodeEndpoint) -> bool:
        """One remove/settle/add round trip. True only if both calls succeed."""
        try:
            await self._expect_success(endpoint, REMOVE_METHOD, enode)
            await self._sleep(self.settle_delay)
            await self._expect_success(endpoint, ADD_METHOD, enode)
        except RpcError as e:
            logger.warning("Refresh of %s at %s failed: %s", enode[:24], endpoint.url, e)
            return False
        return True

    async def _expect_success(self, endpoint: BootnodeEndpoint, method: str, enode: str) -> None:
        result = await self._client.call(endpoint, method, [enode], timeout=self.call_timeout)
        if not result:
            raise RpcResponseError(f"{method} returned {result!r}", endpoint.url)


def apply_refresh_report(
    directory: Directory,
    report: RefreshReport,
    now: Timestamp,
) -> Directory:
    """Stamp refresh attempts, and refresh success, onto a new directory."""
    updated = dict(directory)
    ok = set(report.succeeded)
    for identity in (*report.succeeded, *report.failed):
        record = updated.get(identity)
        if record is None:
            continue
        contact = replace(record.contact, attempt=now)
        if identity in ok:
            contact = replace(contact, refresh=now)
        updated[identity] = record.with_contact(contact)
    return updated
