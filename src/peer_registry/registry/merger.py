"""Merge bootnode observations into the previous directory snapshot.

Outcomes are processed in configuration order. For a peer reported by more
than one bootnode, the last one processed wins field by field, while the
contact history carries over from the previous snapshot. The previous
snapshot is never mutated; a new mapping is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from peer_registry.geo import GeoAugmenter
from peer_registry.network.fetcher import FetchOutcome
from peer_registry.registry.peer import (
    ContactInfo,
    Directory,
    PeerRecord,
    Provenance,
    ProvenanceRecord,
    Timestamp,
    is_handshaking,
    peer_identity,
)

logger = logging.getLogger(__name__)

# Keys a bootnode might send that belong to our own bookkeeping. Geo data
# only ever comes from our own lookups.
_RESERVED_KEYS = ("contact", "ip_info")


@dataclass(frozen=True)
class MergeResult:
    directory: Directory
    provenance: Provenance
    observed: frozenset[str] = field(default_factory=frozenset)
    skipped_handshake: int = 0
    skipped_malformed: int = 0


def merge_observations(
    previous: Directory,
    previous_provenance: Provenance,
    outcomes: Iterable[FetchOutcome],
    now: Timestamp,
) -> MergeResult:
    """Fold one cycle of fetch outcomes into the previous snapshot."""
    directory: Directory = dict(previous)
    provenance: Provenance = dict(previous_provenance)
    observed: set[str] = set()
    handshaking = 0
    malformed = 0

    for outcome in outcomes:
        if not outcome.ok:
            continue
        origin = ProvenanceRecord(bootnode=outcome.endpoint)
        for entry in outcome.peers:
            try:
                identity = peer_identity(entry.get("enode", ""))
            except ValueError as e:
                logger.debug("Skipping peer from %s: %s", outcome.endpoint.url, e)
                malformed += 1
                continue

            if is_handshaking(entry.get("protocols")):
                handshaking += 1
                continue

            reported = {k: v for k, v in entry.items() if k not in _RESERVED_KEYS}
            existing = directory.get(identity)
            if existing is not None:
                record = PeerRecord(
                    identity=identity,
                    attributes={**existing.attributes, **reported},
                    contact=existing.contact.seen(now),
                    geo=existing.geo,
                )
            else:
                record = PeerRecord(
                    identity=identity,
                    attributes=reported,
                    contact=ContactInfo.starting(now),
                )
            directory[identity] = record
            provenance[identity] = origin
            observed.add(identity)

    if handshaking or malformed:
        logger.debug(
            "Merge skipped %d handshaking and %d malformed entries",
            handshaking, malformed,
        )
    return MergeResult(
        directory=directory,
        provenance=provenance,
        observed=frozenset(observed),
        skipped_handshake=handshaking,
        skipped_malformed=malformed,
    )


class PeerMerger:
    """Merges observations and fills in missing geo data in the same pass."""

    def __init__(self, augmenter: GeoAugmenter | None = None) -> None:
        self._augmenter = augmenter

    async def merge(
        self,
        previous: Directory,
        previous_provenance: Provenance,
        outcomes: Iterable[FetchOutcome],
        now: Timestamp,
    ) -> MergeResult:
        result = merge_observations(previous, previous_provenance, outcomes, now)
        if self._augmenter is None:
            return result
        directory = await self._augmenter.augment(result.directory)
        return MergeResult(
            directory=directory,
            provenance=result.provenance,
            observed=result.observed,
            skipped_handshake=result.skipped_handshake,
            skipped_malformed=result.skipped_malformed,
        )
