"""Configuration loader for faber-runner."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("~/.faber.yaml")
DEFAULT_DEVICE_FLOW_HOST = r"github\.com"

EXAMPLE_CONFIG = """\
default_server: production
servers:
  production:
    host: your-server.com
    user: root
    key_path: ~/.ssh/id_rsa
"""


@dataclass(frozen=True)
class ServerTarget:
    """Connection details for a single managed host."""

    host: str
    user: str
    key_path: Path
    port: int = 22

    @property
    def user_host(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"


@dataclass
class ServerConfig:
    """Raw server entry as written in the config file."""

    name: str
    host: str
    user: str
    key_path: str
    port: int | None = None


@dataclass
class Config:
    """Main configuration for the runner."""

    default_server: str
    servers: dict[str, ServerConfig]
    connect_timeout: float = 30.0
    device_flow_host: str = DEFAULT_DEVICE_FLOW_HOST
    progress_log: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "faber-progress.log"
    )
    source_path: Path | None = None  # Where the config was loaded from


def default_config_path() -> Path:
    """Return ``$FABER_CONFIG`` if set, otherwise ``~/.faber.yaml``."""
    env_path = os.environ.get("FABER_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def load_config(config_path: str | Path | None = None) -> Config:
    """Load and validate configuration from a YAML (or JSON) file."""
    if config_path is None:
        config_path = default_config_path()
    config_path = Path(config_path).expanduser().resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n\n"
            f"Please create it with your server configuration. Example:\n"
            f"{EXAMPLE_CONFIG}"
        )

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    config = _parse_config(raw)
    config.source_path = config_path
    return config


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw YAML data into Config object."""
    default_server = raw.get("default_server", raw.get("defaultServer"))
    servers_raw = raw.get("servers")
    if not default_server or not servers_raw:
        raise ConfigError('Config must have "default_server" and "servers" fields')
    if not isinstance(servers_raw, dict):
        raise ConfigError('"servers" must be a mapping of name to server settings')

    servers = {
        name: _parse_server(name, server_raw or {})
        for name, server_raw in servers_raw.items()
    }

    if default_server not in servers:
        raise ConfigError(
            f'Default server "{default_server}" not found in servers configuration'
        )

    config = Config(default_server=default_server, servers=servers)
    if "connect_timeout" in raw:
        config.connect_timeout = float(raw["connect_timeout"])
    if raw.get("device_flow_host"):
        config.device_flow_host = str(raw["device_flow_host"])
    if raw.get("progress_log"):
        config.progress_log = Path(raw["progress_log"]).expanduser()
    return config


def _parse_server(name: str, server_raw: dict[str, Any]) -> ServerConfig:
    """Parse a single server entry."""
    host = server_raw.get("host")
    if not host:
        raise ConfigError(f"Server '{name}' must have a 'host' field")

    user = server_raw.get("user")
    if not user:
        raise ConfigError(f"Server '{name}' must have a 'user' field")

    key_path = server_raw.get("key_path", server_raw.get("keyPath"))
    if not key_path:
        raise ConfigError(f"Server '{name}' must have a 'key_path' field")

    port = server_raw.get("port")
    return ServerConfig(
        name=name,
        host=str(host),
        user=str(user),
        key_path=str(key_path),
        port=int(port) if port else None,
    )


def get_server_target(config: Config, server_name: str | None = None) -> ServerTarget:
    """Resolve a server entry (or the default one) into a ServerTarget."""
    name = server_name or config.default_server
    server = config.servers.get(name)
    if server is None:
        raise ConfigError(f'Server "{name}" not found in configuration')

    return ServerTarget(
        host=server.host,
        user=server.user,
        key_path=Path(server.key_path).expanduser(),
        port=server.port or 22,
    )
