"""Directory store — whole-snapshot persistence of the peer directory.

Two keys in the cache:
  peers:       identity -> serialized PeerRecord
  peersDebug:  identity -> serialized ProvenanceRecord

Each save replaces a snapshot wholesale (last writer wins). A snapshot that
is not valid JSON raises StoreError so a cycle never overwrites data it
could not read. Individual bad records are skipped with a warning.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from peer_registry.errors import StoreError
from peer_registry.registry.peer import (
    Directory,
    PeerRecord,
    Provenance,
    ProvenanceRecord,
)
from peer_registry.storage.cache import KeyValueCache

logger = logging.getLogger(__name__)

PEERS_KEY = "peers"
PROVENANCE_KEY = "peersDebug"


class DirectoryStore:
    """Loads and saves the directory and provenance snapshots."""

    def __init__(self, cache: KeyValueCache) -> None:
        self._cache = cache

    async def load(self) -> tuple[Directory, Provenance]:
        directory = await self.load_directory()
        provenance: Provenance = {}
        for identity, raw in (await self._load_mapping(PROVENANCE_KEY)).items():
            try:
                provenance[identity] = ProvenanceRecord.from_dict(raw)
            except ValueError as e:
                logger.warning("Skipping provenance for %s: %s", identity[:16], e)
        return directory, provenance

    async def load_directory(self) -> Directory:
        directory: Directory = {}
        for identity, raw in (await self._load_mapping(PEERS_KEY)).items():
            try:
                directory[identity] = PeerRecord.from_dict(identity, raw)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping stored peer %s: %s", identity[:16], e)
        return directory

    async def save(self, directory: Directory, provenance: Provenance) -> None:
        await self._cache.set(
            PEERS_KEY,
            _encode({k: record.to_dict() for k, record in directory.items()}),
        )
        await self._cache.set(
            PROVENANCE_KEY,
            _encode({k: record.to_dict() for k, record in provenance.items()}),
        )
        logger.debug("Saved %d peers, %d provenance entries", len(directory), len(provenance))

    async def _load_mapping(self, key: str) -> dict[str, Any]:
        raw = await self._cache.get(key)
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise StoreError(f"snapshot {key!r} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"snapshot {key!r} is not a mapping")
        return data


def _encode(data: dict[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode()
