"""
Configuration management for ShadowMesh relays.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Tuple

from .errors import ConfigError

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 9999
DEFAULT_FORWARD_TIMEOUT = 2.0
DEFAULT_DEDUP_TTL_SECONDS = 300.0
DEFAULT_DEDUP_MAX_ENTRIES = 10000
DEFAULT_MAX_FRAME_SIZE = 1024 * 1024

# Environment overrides
# SHADOWMESH_RELAY_ADDR="host:port" or ":port"
# SHADOWMESH_RELAY_PEERS="host1:port1,host2:port2"
ENV_RELAY_ADDR = "SHADOWMESH_RELAY_ADDR"
ENV_RELAY_PEERS = "SHADOWMESH_RELAY_PEERS"
ENV_FORWARD_TIMEOUT = "SHADOWMESH_FORWARD_TIMEOUT"
ENV_LOG_LEVEL = "SHADOWMESH_LOG_LEVEL"


def parse_address(
    address: str,
    default_host: str = "127.0.0.1",
    default_port: Optional[int] = None,
) -> Tuple[str, int]:
    """
    Parse "host:port" into (host, port).

    ":port" uses default_host; a bare host uses default_port if given.
    IPv6 literals must be bracketed: "[::1]:9999".
    """
    address = address.strip()
    if not address:
        raise ConfigError("Empty address")

    if ':' in address:
        host, port_str = address.rsplit(':', 1)
    elif default_port is not None:
        host, port_str = address, str(default_port)
    else:
        raise ConfigError(f"Address {address!r} is missing a port")

    host = host.strip('[]') or default_host
    if ':' in host and not address.startswith('['):
        raise ConfigError(f"IPv6 address {address!r} must be bracketed")
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(f"Invalid port in address {address!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port out of range in address {address!r}")
    return host, port


def parse_peers(value: str) -> List[Tuple[str, int]]:
    """Parse a comma-separated list of peer addresses."""
    return [parse_address(p) for p in value.split(',') if p.strip()]


@dataclass
class RelayConfig:
    """Relay node configuration."""
    listen_host: str = DEFAULT_LISTEN_HOST
    listen_port: int = DEFAULT_LISTEN_PORT
    peers: List[Tuple[str, int]] = field(default_factory=list)
    forward_timeout: float = DEFAULT_FORWARD_TIMEOUT
    dedup_ttl_seconds: float = DEFAULT_DEDUP_TTL_SECONDS
    dedup_max_entries: int = DEFAULT_DEDUP_MAX_ENTRIES
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE
    log_level: str = "INFO"

    def __post_init__(self):
        self.peers = [tuple(p) if not isinstance(p, str) else parse_address(p)
                      for p in self.peers]
        if self.forward_timeout <= 0:
            raise ConfigError("forward_timeout must be positive")
        if self.max_frame_size <= 0:
            raise ConfigError("max_frame_size must be positive")

    def peer_set(self) -> Tuple[Tuple[str, int], ...]:
        """Immutable snapshot of the peer relays."""
        return tuple((host, int(port)) for host, port in self.peers)

    @classmethod
    def default(cls) -> "RelayConfig":
        """Create default configuration."""
        return cls()

    @classmethod
    def load(cls, path: Path) -> "RelayConfig":
        """Load configuration from a JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "RelayConfig":
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid relay configuration: {e}") from None

    def apply_env(self, environ: Optional[dict] = None) -> "RelayConfig":
        """Override fields from SHADOWMESH_* environment variables."""
        env = os.environ if environ is None else environ

        addr = env.get(ENV_RELAY_ADDR)
        if addr:
            self.listen_host, self.listen_port = parse_address(
                addr, default_host=DEFAULT_LISTEN_HOST
            )

        peers = env.get(ENV_RELAY_PEERS)
        if peers:
            self.peers = parse_peers(peers)

        timeout = env.get(ENV_FORWARD_TIMEOUT)
        if timeout:
            try:
                self.forward_timeout = float(timeout)
            except ValueError:
                raise ConfigError(f"Invalid {ENV_FORWARD_TIMEOUT}: {timeout!r}") from None
            if self.forward_timeout <= 0:
                raise ConfigError("forward_timeout must be positive")

        level = env.get(ENV_LOG_LEVEL)
        if level:
            self.log_level = level.upper()

        return self

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "RelayConfig":
        """Defaults overridden by the environment."""
        return cls().apply_env(environ)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data['peers'] = [f"{host}:{port}" for host, port in self.peers]
        return data

    def save(self, path: Path) -> None:
        """Save configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
