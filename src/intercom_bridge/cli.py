"""CLI entry point for launching an intercom bridge.

Usage:
    intercom-bridge
    intercom-bridge --config bridge.json --port 8081
    intercom-bridge --peers 192.168.1.10:8080,192.168.1.11:8080 --token secret

Environment variables:
    BRIDGE_HOST:    Override listening host
    BRIDGE_PORT:    Override listening port
    BRIDGE_TOKEN:   Relay auth token (enables the auth gate)
    BRIDGE_PEERS:   Comma-separated bootstrap peers

Command-line flags take precedence over environment variables, which take
precedence over the config file.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from intercom_bridge.bridge import Bridge, BridgeConfig


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Launch an intercom bridge (local clients <-> peer swarm)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to JSON config file",
    )
    parser.add_argument(
        "--host",
        help="Override listening host",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Override listening port",
    )
    parser.add_argument(
        "--peers",
        help="Comma-separated bootstrap peer addresses (host:port)",
    )
    parser.add_argument(
        "--token", "-t",
        help="Relay auth token",
    )
    parser.add_argument(
        "--log-level", "-l",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser.parse_args(argv)


def _split_peers(value: str) -> list[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


def load_config(config_path: str | None, overrides: dict[str, Any]) -> BridgeConfig:
    """Build the bridge configuration from file, environment and overrides."""
    raw: dict[str, Any] = {}
    if config_path:
        path = Path(config_path).resolve()
        if not path.exists():
            print(f"Error: config file not found: {path}", file=sys.stderr)
            sys.exit(1)
        with open(path) as f:
            raw = json.load(f)

    # Environment
    if os.environ.get("BRIDGE_HOST"):
        raw["host"] = os.environ["BRIDGE_HOST"]
    if os.environ.get("BRIDGE_PORT"):
        raw["port"] = int(os.environ["BRIDGE_PORT"])
    if os.environ.get("BRIDGE_TOKEN"):
        raw["auth_token"] = os.environ["BRIDGE_TOKEN"]
    if os.environ.get("BRIDGE_PEERS"):
        raw["bootstrap_peers"] = _split_peers(os.environ["BRIDGE_PEERS"])

    # CLI overrides
    if overrides.get("host"):
        raw["host"] = overrides["host"]
    if overrides.get("port"):
        raw["port"] = overrides["port"]
    if overrides.get("token"):
        raw["auth_token"] = overrides["token"]
    if overrides.get("peers"):
        raw["bootstrap_peers"] = overrides["peers"]

    defaults = BridgeConfig()
    return BridgeConfig(
        host=raw.get("host", defaults.host),
        port=int(raw.get("port", defaults.port)),
        public_key=raw.get("public_key", defaults.public_key),
        bootstrap_peers=raw.get("bootstrap_peers", defaults.bootstrap_peers),
        archive_capacity=raw.get("archive_capacity", defaults.archive_capacity),
        auth_token=raw.get("auth_token", defaults.auth_token),
        public_channels=raw.get("public_channels", defaults.public_channels),
        auto_join_channels=raw.get("auto_join_channels", defaults.auto_join_channels),
        auto_join_delay=raw.get("auto_join_delay", defaults.auto_join_delay),
        agent_ttl=raw.get("agent_ttl", defaults.agent_ttl),
        stats_retention_hours=raw.get("stats_retention_hours", defaults.stats_retention_hours),
        maintenance_interval=raw.get("maintenance_interval", defaults.maintenance_interval),
    )


async def run_bridge(bridge: Bridge) -> None:
    """Start the bridge and run until interrupted."""
    await bridge.start()

    # Handle graceful shutdown
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def handle_signal() -> None:
        print("\nShutting down...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await stop_event.wait()
    await bridge.stop()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    print("=" * 60)
    print("  Intercom Bridge (unified mode)")
    print("=" * 60)

    overrides: dict[str, Any] = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.peers:
        overrides["peers"] = _split_peers(args.peers)
    if args.token:
        overrides["token"] = args.token

    config = load_config(args.config, overrides)
    if args.config:
        print(f"  Config loaded: {args.config}")
    print(f"  Listening: {config.host}:{config.port}")
    print(f"  Bootstrap peers: {config.bootstrap_peers}")
    print(f"  Relay auth: {'enabled' if config.auth_token else 'disabled'}")
    print(f"  Public channels: {', '.join(config.public_channels)}")
    print(f"  Auto-join: {', '.join(config.auto_join_channels)}")

    bridge = Bridge(config)
    print(f"  Public key: {bridge.public_key[:16]}...")

    print("\n" + "=" * 60)
    print(f"  HTTP:      http://{config.host}:{config.port}/health")
    print(f"  WebSocket: ws://{config.host}:{config.port}/ws")
    print("=" * 60 + "\n")

    asyncio.run(run_bridge(bridge))


if __name__ == "__main__":
    main()
