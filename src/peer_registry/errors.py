"""Exception hierarchy shared across the registry."""

from __future__ import annotations


class RegistryError(Exception):
    """Base class for all registry errors."""


class ConfigError(RegistryError):
    """Configuration is invalid; the process must not start."""


class RpcError(RegistryError):
    """An outbound JSON-RPC call did not produce a usable result."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class RpcTimeout(RpcError):
    """The call did not complete within its timeout."""


class RpcTransportError(RpcError):
    """Connection failure or non-2xx HTTP status."""


class RpcResponseError(RpcError):
    """The endpoint answered with a JSON-RPC error or an unsuccessful result."""


class MalformedResponse(RpcError):
    """The body was not JSON or had an unexpected shape."""


class StoreError(RegistryError):
    """A persisted snapshot could not be decoded."""


class GeoLookupError(RegistryError):
    """The geolocation provider failed to resolve an address."""
