"""Registry configuration — JSON file, environment overrides, validation.

Example ``registry.json``::

    {
      "port": 3000,
      "bootnodes": [
        {"url": "https://ams.peers.example.org:8540", "auth": true},
        {"url": "https://besu.example.org"}
      ],
      "refresh_threshold": 3600,
      "delete_threshold": 86400
    }

Environment variables:
    PORT:                 Listening port
    DEBUG:                Skip geo lookups when truthy
    IPINFO_API_TOKEN:     ipinfo.io token (required unless geo is off)
    NODE_AUTH_USERNAME:   Credentials for bootnodes with ``"auth": true``
    NODE_AUTH_PASSWORD
    REGISTRY_CACHE_PATH:  SQLite cache file (empty keeps the cache in memory)
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from peer_registry.errors import ConfigError
from peer_registry.network.rpc import BootnodeEndpoint

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}

DEFAULT_CORS_ORIGINS = [
    r"\.?etcnodes\.org$",
    r"nodes\.etc-network\.info$",
    r"127\.0\.0\.1",
    r"localhost",
]


@dataclass
class BootnodeConfig:
    """One configured bootnode."""

    url: str
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    auth: bool = False  # Take credentials from NODE_AUTH_* when not given inline


@dataclass
class RegistryConfig:
    """Full configuration for the registry service."""

    host: str = "0.0.0.0"
    port: int = 3000
    bootnodes: list[BootnodeConfig] = field(default_factory=list)

    # Outbound calls
    fetch_timeout: float = 60.0
    refresh_call_timeout: float = 10.0

    # Staleness (seconds)
    refresh_threshold: float = 60.0 * 60
    delete_threshold: float = 60.0 * 60 * 24

    # Refresh protocol
    refresh_batch_size: int = 10
    max_refresh_per_cycle: int = 50
    refresh_settle_delay: float = 1.0

    cycle_interval: float = 5 * 60.0

    # Geo
    geo_enabled: bool = True
    geo_cache_ttl: float = 10 * 60 * 60 * 24.0
    geo_concurrency: int = 8
    ipinfo_token: str = field(default="", repr=False)
    debug: bool = False

    # Read side
    visibility_threshold: float | None = None
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    cache_path: str = ""

    @property
    def geo_active(self) -> bool:
        return self.geo_enabled and not self.debug

    def endpoints(self) -> list[BootnodeEndpoint]:
        return [
            BootnodeEndpoint(url=b.url, username=b.username, password=b.password)
            for b in self.bootnodes
        ]

    def validate(self) -> None:
        """Check invariants; raises ConfigError on the first violation."""
        if not self.bootnodes:
            raise ConfigError("at least one bootnode must be configured")
        for b in self.bootnodes:
            if not b.url:
                raise ConfigError("bootnode entry without url")
            if (b.auth or b.username is not None or b.password is not None) and not (
                b.username and b.password
            ):
                raise ConfigError(f"bootnode {b.url} requires a username and password")
        if self.refresh_threshold <= 0 or self.delete_threshold <= 0:
            raise ConfigError("refresh_threshold and delete_threshold must be positive")
        if self.refresh_threshold >= self.delete_threshold:
            raise ConfigError(
                "refresh_threshold must be smaller than delete_threshold "
                f"({self.refresh_threshold} >= {self.delete_threshold})"
            )
        if self.refresh_batch_size < 1:
            raise ConfigError("refresh_batch_size must be at least 1")
        if self.max_refresh_per_cycle < 0:
            raise ConfigError("max_refresh_per_cycle must not be negative")
        if self.cycle_interval <= 0:
            raise ConfigError("cycle_interval must be positive")
        if self.fetch_timeout <= 0 or self.refresh_call_timeout <= 0:
            raise ConfigError("timeouts must be positive")
        if self.geo_active and not self.ipinfo_token:
            raise ConfigError("IPINFO_API_TOKEN is required when geo lookups are enabled")
        for pattern in self.cors_origins:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(f"invalid CORS origin pattern {pattern!r}: {e}") from e


def parse_bool(value: Any) -> bool:
    """Strict boolean parsing for config values."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigError(f"not a boolean: {value!r}")


def _number(raw: Mapping[str, Any], key: str, default: float, kind: type = float) -> Any:
    value = raw.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e


def build_config(
    raw: Mapping[str, Any],
    env: Mapping[str, str] | None = None,
) -> RegistryConfig:
    """Build a validated config from parsed JSON plus the environment."""
    env = os.environ if env is None else env
    defaults = RegistryConfig()

    env_user = env.get("NODE_AUTH_USERNAME")
    env_password = env.get("NODE_AUTH_PASSWORD")
    bootnodes = []
    for entry in raw.get("bootnodes", []):
        if isinstance(entry, str):
            entry = {"url": entry}
        if not isinstance(entry, dict):
            raise ConfigError(f"bootnode entry must be an object or url: {entry!r}")
        wants_auth = parse_bool(entry.get("auth", False))
        username = entry.get("username")
        password = entry.get("password")
        if wants_auth and username is None and password is None:
            username, password = env_user, env_password
        bootnodes.append(BootnodeConfig(
            url=entry.get("url", ""),
            username=username,
            password=password,
            auth=wants_auth,
        ))

    port = env.get("PORT") or raw.get("port", defaults.port)
    visibility = raw.get("visibility_threshold")

    config = RegistryConfig(
        host=raw.get("host", defaults.host),
        port=_number({"port": port}, "port", defaults.port, int),
        bootnodes=bootnodes,
        fetch_timeout=_number(raw, "fetch_timeout", defaults.fetch_timeout),
        refresh_call_timeout=_number(raw, "refresh_call_timeout", defaults.refresh_call_timeout),
        refresh_threshold=_number(raw, "refresh_threshold", defaults.refresh_threshold),
        delete_threshold=_number(raw, "delete_threshold", defaults.delete_threshold),
        refresh_batch_size=_number(raw, "refresh_batch_size", defaults.refresh_batch_size, int),
        max_refresh_per_cycle=_number(
            raw, "max_refresh_per_cycle", defaults.max_refresh_per_cycle, int,
        ),
        refresh_settle_delay=_number(raw, "refresh_settle_delay", defaults.refresh_settle_delay),
        cycle_interval=_number(raw, "cycle_interval", defaults.cycle_interval),
        geo_enabled=parse_bool(raw.get("geo_enabled", defaults.geo_enabled)),
        geo_cache_ttl=_number(raw, "geo_cache_ttl", defaults.geo_cache_ttl),
        geo_concurrency=_number(raw, "geo_concurrency", defaults.geo_concurrency, int),
        ipinfo_token=env.get("IPINFO_API_TOKEN") or raw.get("ipinfo_token", ""),
        debug=parse_bool(env.get("DEBUG", raw.get("debug", False))),
        visibility_threshold=(
            None if visibility is None else _number(raw, "visibility_threshold", 0.0)
        ),
        cors_origins=list(raw.get("cors_origins", DEFAULT_CORS_ORIGINS)),
        cache_path=env.get("REGISTRY_CACHE_PATH") or raw.get("cache_path", ""),
    )
    config.validate()
    return config


def load_config(
    config_path: str | Path,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> RegistryConfig:
    """Load and validate configuration from a JSON file.

    ``overrides`` (CLI flags, keyed by field name) win over the environment,
    which wins over the file.

    Raises:
        ConfigError: File missing, unreadable, or values invalid.
    """
    path = Path(config_path).resolve()
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        raw = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError("config root must be an object")

    config = build_config(raw, env)
    changes = {k: v for k, v in (overrides or {}).items() if v is not None}
    if changes:
        config = replace(config, **changes)
        config.validate()
    return config
