"""
shadowmesh-relay: run a ShadowMesh relay node.

Settings are layered: defaults, then --config FILE, then SHADOWMESH_*
environment variables, then command-line flags.
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import DEFAULT_LISTEN_HOST, RelayConfig, parse_address
from .errors import ConfigError
from .relay import run_relay

logger = logging.getLogger("shadowmesh")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shadowmesh-relay",
        description="Encrypted store-and-forward relay node",
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument("--listen", metavar="HOST:PORT", help="Listen address (default :9999)")
    parser.add_argument(
        "--peer", metavar="HOST:PORT", action="append", default=[],
        help="Peer relay to forward to (repeatable)",
    )
    parser.add_argument("--forward-timeout", type=float, metavar="SECONDS",
                        help="Per-peer forward timeout")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(args: argparse.Namespace, environ: Optional[dict] = None) -> RelayConfig:
    """Resolve the effective configuration from all layers."""
    config = RelayConfig.load(args.config) if args.config else RelayConfig.default()
    config.apply_env(environ)

    if args.listen:
        config.listen_host, config.listen_port = parse_address(
            args.listen, default_host=DEFAULT_LISTEN_HOST
        )
    if args.peer:
        config.peers = [parse_address(p) for p in args.peer]
    if args.forward_timeout is not None:
        if args.forward_timeout <= 0:
            raise ConfigError("--forward-timeout must be positive")
        config.forward_timeout = args.forward_timeout
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
        datefmt='%H:%M:%S',
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except (ConfigError, OSError, ValueError) as e:
        parser.error(str(e))

    setup_logging(config.log_level)

    try:
        asyncio.run(run_relay(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except OSError as e:
        logger.error(f"Relay failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
