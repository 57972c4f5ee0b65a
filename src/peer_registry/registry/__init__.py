"""Peer directory — records, merge, staleness policy and refresh."""

from peer_registry.registry.peer import (
    ContactInfo,
    GeoInfo,
    PeerRecord,
    ProvenanceRecord,
    Timestamp,
    peer_identity,
)
from peer_registry.registry.policy import CyclePlan, StalenessPolicy

__all__ = [
    "ContactInfo",
    "CyclePlan",
    "GeoInfo",
    "PeerRecord",
    "ProvenanceRecord",
    "StalenessPolicy",
    "Timestamp",
    "peer_identity",
]
