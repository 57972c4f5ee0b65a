"""HTTP read surface."""

from peer_registry.api.routes import cors_middleware, setup_routes

__all__ = ["cors_middleware", "setup_routes"]
