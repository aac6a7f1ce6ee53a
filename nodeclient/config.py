"""
Configuration for the node client.

Values are layered, lowest to highest precedence:

1. defaults declared on ``ClientSettings``
2. a YAML file named by ``$SUBSTRATE_HANDSHAKE_CONFIG``
3. ``$SUBSTRATE_NODE_ADDRESS`` / ``$SUBSTRATE_GENESIS_HASH``
4. command line flags (applied by the CLI through ``with_overrides``)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from shared.errors import ConfigError
from shared.log import get_logger
from shared.utils import GENESIS_HASH_BYTES, hash_to_hex, is_hex_hash, is_ws_uri, parse_hex_hash

logger = get_logger(__name__)

DEFAULT_NODE_ADDRESS = "ws://127.0.0.1:9944"
DEFAULT_GENESIS_HASH = "5972ecbfbc42507482dbcb0a2892bcd70161fd9acdfdf7e6455ab39bac3dfb83"

CONFIG_FILE_ENV = "SUBSTRATE_HANDSHAKE_CONFIG"
NODE_ADDRESS_ENV = "SUBSTRATE_NODE_ADDRESS"
GENESIS_HASH_ENV = "SUBSTRATE_GENESIS_HASH"

_TIMEOUT_FIELDS = ("handshake_timeout", "request_timeout", "open_timeout", "ping_interval", "ping_timeout")


def validate_node_address(value: Any) -> str:
    if not is_ws_uri(value):
        raise ConfigError(f"node address must be a ws:// or wss:// URI, got {value!r}")
    return value


def validate_genesis_hash(value: Any) -> str:
    """Normalize to 64 lowercase hex characters without prefix."""
    if not is_hex_hash(value):
        raise ConfigError(f"genesis hash must be {GENESIS_HASH_BYTES * 2} hex characters, got {value!r}")
    return parse_hex_hash(value).hex()


def validate_timeout(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number, got {type(value).__name__}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return float(value)


@dataclass(frozen=True)
class Endpoint:
    """Where to connect and which chain we expect to find there."""
    uri: str
    genesis_hash: bytes

    def __post_init__(self) -> None:
        validate_node_address(self.uri)
        if not isinstance(self.genesis_hash, bytes) or len(self.genesis_hash) != GENESIS_HASH_BYTES:
            raise ConfigError(f"genesis hash must be exactly {GENESIS_HASH_BYTES} bytes")

    @property
    def genesis_hex(self) -> str:
        return hash_to_hex(self.genesis_hash)


@dataclass
class ClientSettings:
    node_address: str = DEFAULT_NODE_ADDRESS
    genesis_hash: str = DEFAULT_GENESIS_HASH
    handshake_timeout: float = 10.0  # seconds
    request_timeout: float = 10.0  # seconds, applied to each request on its own
    open_timeout: float = 10.0
    ping_interval: float = 15.0
    ping_timeout: float = 45.0
    node_name: str = "my-node"
    chain_name: str = "my-chain"
    capabilities: List[str] = field(default_factory=lambda: ["full"])
    config_file: Optional[Path] = None

    def validate(self) -> None:
        """
        Raises:
            ConfigError: if any field is unusable.
        """
        self.node_address = validate_node_address(self.node_address)
        self.genesis_hash = validate_genesis_hash(self.genesis_hash)
        for name in _TIMEOUT_FIELDS:
            setattr(self, name, validate_timeout(name, getattr(self, name)))
        if not isinstance(self.node_name, str) or not isinstance(self.chain_name, str):
            raise ConfigError("node_name and chain_name must be strings")
        if not isinstance(self.capabilities, list) or not all(isinstance(c, str) for c in self.capabilities):
            raise ConfigError("capabilities must be a list of strings")

    def endpoint(self) -> Endpoint:
        return Endpoint(uri=self.node_address, genesis_hash=parse_hex_hash(self.genesis_hash))

    def with_overrides(self, **overrides: Any) -> "ClientSettings":
        """Copy with every non-None override applied, validated."""
        settings = replace(self, **{k: v for k, v in overrides.items() if v is not None})
        settings.validate()
        return settings

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], config_file: Optional[Path] = None) -> "ClientSettings":
        known_fields = {f.name for f in fields(cls)} - {"config_file"}
        unknown = sorted(set(data) - known_fields)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        settings = cls(**{k: v for k, v in data.items() if k in known_fields}, config_file=config_file)
        settings.validate()
        return settings

    @classmethod
    def from_file(cls, path: Path) -> "ClientSettings":
        """Load settings from a YAML file"""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must contain a mapping")
        logger.debug("Loaded config from %s", path)
        return cls.from_mapping(data, config_file=path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_address": self.node_address,
            "genesis_hash": self.genesis_hash,
            "handshake_timeout": self.handshake_timeout,
            "request_timeout": self.request_timeout,
            "open_timeout": self.open_timeout,
            "ping_interval": self.ping_interval,
            "ping_timeout": self.ping_timeout,
            "node_name": self.node_name,
            "chain_name": self.chain_name,
            "capabilities": list(self.capabilities),
            "config_file": str(self.config_file) if self.config_file else None,
        }


def load_settings(environ: Optional[Mapping[str, str]] = None) -> ClientSettings:
    """Defaults, then the YAML file from the environment, then environment overrides."""
    environ = os.environ if environ is None else environ

    config_path = environ.get(CONFIG_FILE_ENV)
    if config_path:
        settings = ClientSettings.from_file(Path(config_path).expanduser())
    else:
        settings = ClientSettings()
        settings.validate()

    return settings.with_overrides(
        node_address=environ.get(NODE_ADDRESS_ENV) or None,
        genesis_hash=environ.get(GENESIS_HASH_ENV) or None,
    )
