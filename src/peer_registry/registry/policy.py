"""Staleness policy — decide which peers to refresh and which to evict.

  refresh candidate:  not refreshed (or, never refreshed, not first seen)
                      for longer than refresh_threshold
  evictable:          not reported by any bootnode for longer than
                      delete_threshold

A candidate with known provenance is refreshed rather than evicted, once:
if it already had a refresh attempt after becoming evictable, it is evicted.
Peers without provenance can only be evicted.
"""

from __future__ import annotations

from dataclasses import dataclass

from peer_registry.errors import ConfigError
from peer_registry.registry.peer import Directory, PeerRecord, Provenance


@dataclass(frozen=True)
class CyclePlan:
    """What one cycle will do to the directory."""

    refresh: tuple[str, ...] = ()
    evict: tuple[str, ...] = ()


@dataclass(frozen=True)
class StalenessPolicy:
    refresh_threshold: float
    delete_threshold: float

    def __post_init__(self) -> None:
        if self.refresh_threshold <= 0 or self.delete_threshold <= 0:
            raise ConfigError("staleness thresholds must be positive")
        if self.refresh_threshold >= self.delete_threshold:
            raise ConfigError(
                "refresh_threshold must be smaller than delete_threshold "
                f"({self.refresh_threshold} >= {self.delete_threshold})"
            )

    def is_refresh_candidate(self, record: PeerRecord, now: int) -> bool:
        return now - record.contact.refreshed_or_first.unix > self.refresh_threshold

    def is_evictable(self, record: PeerRecord, now: int) -> bool:
        return now - record.contact.last.unix > self.delete_threshold

    def has_refresh_grace(self, record: PeerRecord) -> bool:
        """No refresh attempt yet since the peer crossed the delete threshold."""
        attempt = record.contact.attempt
        if attempt is None:
            return True
        return attempt.unix <= record.contact.last.unix + self.delete_threshold

    def plan(
        self,
        directory: Directory,
        provenance: Provenance,
        now: int,
        max_refresh: int,
    ) -> CyclePlan:
        """Select up to ``max_refresh`` peers to refresh and the peers to evict.

        Candidates are taken oldest-refresh-first. Evictable peers that are
        not selected for refresh this cycle are evicted.
        """
        candidates = [
            record for record in directory.values()
            if record.identity in provenance
            and self.is_refresh_candidate(record, now)
            and (not self.is_evictable(record, now) or self.has_refresh_grace(record))
        ]
        candidates.sort(key=lambda r: (r.contact.refreshed_or_first.unix, r.identity))
        selected = tuple(r.identity for r in candidates[:max(0, max_refresh)])

        chosen = set(selected)
        evict = tuple(
            identity for identity, record in directory.items()
            if identity not in chosen and self.is_evictable(record, now)
        )
        return CyclePlan(refresh=selected, evict=evict)


def apply_evictions(
    directory: Directory,
    provenance: Provenance,
    identities: tuple[str, ...] | list[str],
) -> tuple[Directory, Provenance]:
    """New directory and provenance without ``identities``."""
    gone = set(identities)
    return (
        {k: v for k, v in directory.items() if k not in gone},
        {k: v for k, v in provenance.items() if k not in gone},
    )


def visible_records(
    directory: Directory,
    now: int,
    threshold: float | None = None,
) -> list[PeerRecord]:
    """Records to publish; with ``threshold``, only peers seen within it."""
    if threshold is None:
        return list(directory.values())
    return [r for r in directory.values() if now - r.contact.last.unix < threshold]
