"""Directory records — peers, their contact history and provenance."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from peer_registry.network.rpc import BootnodeEndpoint

HANDSHAKE_STATE = "handshake"

_ENODE_RE = re.compile(r"^enode://([0-9a-fA-F]{128})@")
_GEO_FIELDS = (
    "ip", "hostname", "city", "region", "country", "countryCode",
    "loc", "org", "postal", "timezone",
)


def peer_identity(enode: Any) -> str:
    """Derive the stable peer key from an ``enode://`` URL.

    The key is the 128-hex-digit node public key, lower-cased, so the same
    node reported under different addresses or letter case maps to one record.

    Raises:
        ValueError: ``enode`` does not carry a well-formed node key.
    """
    if not isinstance(enode, str):
        raise ValueError(f"enode must be a string, got {str(enode)[:80]!r}")
    match = _ENODE_RE.match(enode)
    if match is None:
        raise ValueError(f"not an enode URL with a node key: {enode[:80]!r}")
    return match.group(1).lower()


def is_handshaking(protocols: Any) -> bool:
    """True when every reported sub-protocol is still in handshake."""
    if not isinstance(protocols, dict) or not protocols:
        return False
    return all(state == HANDSHAKE_STATE for state in protocols.values())


@dataclass(frozen=True)
class Timestamp:
    """A point in time kept as epoch seconds plus its RFC 3339 rendering."""

    unix: int
    rfc3339: str

    @classmethod
    def at(cls, unix: float) -> Timestamp:
        seconds = int(unix)
        text = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return cls(unix=seconds, rfc3339=text)

    @classmethod
    def now(cls) -> Timestamp:
        return cls.at(time.time())

    def to_dict(self) -> dict[str, Any]:
        return {"unix": self.unix, "rfc3339": self.rfc3339}

    @classmethod
    def from_dict(cls, data: Any) -> Timestamp:
        if not isinstance(data, dict) or "unix" not in data:
            raise ValueError(f"bad timestamp: {data!r}")
        unix = int(data["unix"])
        rendered = data.get("rfc3339")
        return cls(unix=unix, rfc3339=rendered) if rendered else cls.at(unix)


@dataclass(frozen=True)
class ContactInfo:
    """Contact history of a peer.

    ``first`` never changes after creation. ``last`` moves whenever a
    bootnode reports the peer. ``refresh`` moves only after a confirmed
    refresh round trip, ``attempt`` after any refresh attempt.
    """

    first: Timestamp
    last: Timestamp
    refresh: Timestamp | None = None
    attempt: Timestamp | None = None

    @classmethod
    def starting(cls, now: Timestamp) -> ContactInfo:
        return cls(first=now, last=now)

    @property
    def refreshed_or_first(self) -> Timestamp:
        """Reference point for refresh staleness."""
        return self.refresh if self.refresh is not None else self.first

    def seen(self, now: Timestamp) -> ContactInfo:
        return replace(self, last=now)

    def to_dict(self) -> dict[str, Any]:
        data = {"first": self.first.to_dict(), "last": self.last.to_dict()}
        if self.refresh is not None:
            data["refresh"] = self.refresh.to_dict()
        if self.attempt is not None:
            data["attempt"] = self.attempt.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ContactInfo:
        if not isinstance(data, dict):
            raise ValueError("contact must be an object")
        first = Timestamp.from_dict(data.get("first"))
        last = Timestamp.from_dict(data["last"]) if data.get("last") else first
        refresh = Timestamp.from_dict(data["refresh"]) if data.get("refresh") else None
        attempt = Timestamp.from_dict(data["attempt"]) if data.get("attempt") else None
        return cls(first=first, last=last, refresh=refresh, attempt=attempt)


@dataclass(frozen=True)
class GeoInfo:
    """Location metadata for a peer's address."""

    ip: str | None = None
    hostname: str | None = None
    city: str | None = None
    region: str | None = None
    country: str | None = None
    countryCode: str | None = None
    loc: str | None = None
    org: str | None = None
    postal: str | None = None
    timezone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in _GEO_FIELDS}

    @classmethod
    def from_dict(cls, data: Any) -> GeoInfo | None:
        """Build from a provider or stored payload; empty payloads give None."""
        if not isinstance(data, dict) or not data:
            return None
        return cls(**{name: data.get(name) for name in _GEO_FIELDS})


@dataclass(frozen=True)
class PeerRecord:
    """One directory entry.

    ``attributes`` holds the fields the bootnode reported (enode, name,
    caps, network, protocols, ...) and is passed through untouched apart
    from ingestion normalization.
    """

    identity: str
    attributes: dict[str, Any]
    contact: ContactInfo
    geo: GeoInfo | None = None

    @property
    def enode(self) -> str:
        return self.attributes.get("enode", "")

    @property
    def remote_ip(self) -> str:
        """IP part of ``network.remoteAddress`` (IPv6 brackets stripped)."""
        network = self.attributes.get("network")
        if not isinstance(network, dict):
            return ""
        address = network.get("remoteAddress")
        if not isinstance(address, str):
            return ""
        if address.startswith("["):
            return address[1:].split("]", 1)[0]
        if address.count(":") > 1:
            return address
        return address.split(":", 1)[0]

    @property
    def is_public(self) -> bool:
        """Peers advertising an ENR accept inbound connections."""
        return bool(self.attributes.get("enr"))

    def with_contact(self, contact: ContactInfo) -> PeerRecord:
        return replace(self, contact=contact)

    def with_geo(self, geo: GeoInfo) -> PeerRecord:
        return replace(self, geo=geo)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.attributes)
        data["ip_info"] = self.geo.to_dict() if self.geo else {}
        data["contact"] = self.contact.to_dict()
        return data

    @classmethod
    def from_dict(cls, identity: str, data: Any) -> PeerRecord:
        if not isinstance(data, dict):
            raise ValueError("peer record must be an object")
        attributes = {k: v for k, v in data.items() if k not in ("ip_info", "contact")}
        return cls(
            identity=identity,
            attributes=attributes,
            contact=ContactInfo.from_dict(data.get("contact")),
            geo=GeoInfo.from_dict(data.get("ip_info")),
        )


@dataclass(frozen=True)
class ProvenanceRecord:
    """Last bootnode known to have reported a peer."""

    bootnode: BootnodeEndpoint

    def to_dict(self) -> dict[str, Any]:
        return {"bootnode": self.bootnode.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> ProvenanceRecord:
        if not isinstance(data, dict) or "bootnode" not in data:
            raise ValueError("provenance record has no bootnode")
        return cls(bootnode=BootnodeEndpoint.from_dict(data["bootnode"]))


Directory = dict[str, PeerRecord]
Provenance = dict[str, ProvenanceRecord]
