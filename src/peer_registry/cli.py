"""CLI entry point for the peer registry service.

Usage:
    peer-registry --config registry.json
    peer-registry --config registry.json --port 3001
    peer-registry --config registry.json --cache ./data/registry.db

Environment variables are described in ``peer_registry.config``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from peer_registry.config import RegistryConfig, load_config
from peer_registry.errors import ConfigError
from peer_registry.service import RegistryService


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Aggregate bootnode peer tables into a geolocated peer directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config", "-c",
        required=True,
        help="Path to JSON config file",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Override listening port",
    )
    parser.add_argument(
        "--cache",
        help="Path to SQLite cache file (overrides config)",
    )
    parser.add_argument(
        "--log-level", "-l",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser.parse_args(argv)


async def run_service(service: RegistryService) -> None:
    """Start the service and run until interrupted."""
    await service.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def handle_signal() -> None:
        print("\nShutting down...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await stop_event.wait()
    await service.stop()


def print_summary(config: RegistryConfig) -> None:
    print("=" * 60)
    print("  Peer Registry")
    print("=" * 60)
    print(f"  Port: {config.port}")
    print(f"  Bootnodes: {len(config.bootnodes)}")
    for b in config.bootnodes:
        print(f"    {b.url}{'  (auth)' if b.username else ''}")
    print(f"  Cycle interval: {config.cycle_interval:.0f}s")
    print(f"  Refresh after: {config.refresh_threshold:.0f}s, "
          f"delete after: {config.delete_threshold:.0f}s")
    print(f"  Refresh batches: {config.refresh_batch_size} "
          f"(max {config.max_refresh_per_cycle} per cycle)")
    print(f"  Geo lookups: {'on' if config.geo_active else 'off'}")
    print(f"  Cache: {config.cache_path or 'in-memory'}")
    print("=" * 60 + "\n")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = load_config(
            args.config,
            overrides={"port": args.port, "cache_path": args.cache},
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print_summary(config)
    asyncio.run(run_service(RegistryService(config)))


if __name__ == "__main__":
    main()
