"""Configuration management for the WireKVS client.

Settings are resolved in three layers, later ones winning:

1. Dataclass defaults
2. ``[sync]`` / ``[credentials]`` tables of ``~/.wirekvs/config.toml``
   (directory overridable with ``WIREKVS_DIR``)
3. ``WIREKVS_*`` environment variables
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://kvs.wireway.ch/v2"
DEFAULT_EVENTS_URL = "wss://kvs.wireway.ch/events"


def get_wirekvs_dir() -> Path:
    """Get the WireKVS configuration directory.

    Priority:
    1. WIREKVS_DIR environment variable
    2. ~/.wirekvs/
    """
    env_dir = os.environ.get("WIREKVS_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".wirekvs"


@dataclass(frozen=True)
class SyncConfig:
    """Tunables for the transport, connection and subscription layers."""

    api_base_url: str = DEFAULT_API_URL
    events_base_url: str = DEFAULT_EVENTS_URL

    # Timeouts (seconds)
    request_timeout: float = 30.0
    connect_timeout: float = 10.0
    heartbeat_interval: float = 15.0
    heartbeat_timeout: float = 10.0

    # Reconnect backoff
    backoff_base: float = 1.0
    backoff_cap: float = 60.0
    backoff_multiplier: float = 2.0
    backoff_jitter: float = 0.25
    give_up_after: int = 10  # 0 = never surface unavailability

    subscriber_queue_size: int = 100

    def validate(self) -> SyncConfig:
        """Raise ValueError if any setting is out of range."""
        for name in (
            "request_timeout",
            "connect_timeout",
            "heartbeat_interval",
            "heartbeat_timeout",
            "backoff_base",
            "backoff_cap",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not 0 <= self.backoff_jitter < 1:
            raise ValueError("backoff_jitter must be in [0, 1)")
        if self.give_up_after < 0:
            raise ValueError("give_up_after must be >= 0")
        if self.subscriber_queue_size < 1:
            raise ValueError("subscriber_queue_size must be >= 1")
        return self

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Build from a mapping, ignoring unknown keys and mistyped values."""
        defaults = cls()
        overrides: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = _coerce(data[f.name], type(getattr(defaults, f.name)))
            if value is None:
                logger.warning("Ignoring invalid config value %s=%r", f.name, data[f.name])
                continue
            overrides[f.name] = value
        return replace(defaults, **overrides)

    def with_env(self) -> SyncConfig:
        """Return a copy with ``WIREKVS_*`` environment overrides applied."""
        env_map = {
            "api_base_url": "WIREKVS_API_URL",
            "events_base_url": "WIREKVS_EVENTS_URL",
            "request_timeout": "WIREKVS_REQUEST_TIMEOUT",
            "connect_timeout": "WIREKVS_CONNECT_TIMEOUT",
            "heartbeat_interval": "WIREKVS_HEARTBEAT_INTERVAL",
            "heartbeat_timeout": "WIREKVS_HEARTBEAT_TIMEOUT",
            "backoff_base": "WIREKVS_BACKOFF_BASE",
            "backoff_cap": "WIREKVS_BACKOFF_CAP",
            "backoff_multiplier": "WIREKVS_BACKOFF_MULTIPLIER",
            "backoff_jitter": "WIREKVS_BACKOFF_JITTER",
            "give_up_after": "WIREKVS_GIVE_UP_AFTER",
            "subscriber_queue_size": "WIREKVS_QUEUE_SIZE",
        }
        data = {name: os.environ[var] for name, var in env_map.items() if var in os.environ}
        if not data:
            return self
        merged = self.to_dict()
        merged.update(data)
        return SyncConfig.from_dict(merged)

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables only."""
        return cls().with_env()


def _coerce(value: Any, target: type) -> Any:
    """Convert a raw TOML/env value to ``target``; None when impossible."""
    if target is bool:
        if isinstance(value, bool):
            return value
        return str(value).lower() in ("true", "1", "yes")
    if target is str:
        return str(value)
    try:
        return target(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Credentials:
    """Credentials used by the CLI when none are passed explicitly."""

    token: str | None = None
    database_id: str | None = None
    access_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credentials:
        return cls(
            token=data.get("token"),
            database_id=data.get("database_id"),
            access_key=data.get("access_key"),
        )

    def with_env(self) -> Credentials:
        return Credentials(
            token=os.environ.get("WIREKVS_TOKEN", self.token),
            database_id=os.environ.get("WIREKVS_DATABASE_ID", self.database_id),
            access_key=os.environ.get("WIREKVS_ACCESS_KEY", self.access_key),
        )


@dataclass(frozen=True)
class ClientConfig:
    """Full client configuration: sync tunables plus default credentials."""

    sync: SyncConfig = field(default_factory=SyncConfig)
    credentials: Credentials = field(default_factory=Credentials)

    @classmethod
    def load(cls, config_dir: Path | None = None) -> ClientConfig:
        """Load from ``config.toml`` (if present) and the environment."""
        if config_dir is None:
            config_dir = get_wirekvs_dir()

        data: dict[str, Any] = {}
        config_file = config_dir / "config.toml"
        if config_file.exists():
            try:
                with open(config_file, "rb") as f:
                    data = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError):
                logger.warning("Failed to read %s, using defaults", config_file, exc_info=True)

        sync = SyncConfig.from_dict(data.get("sync", {})).with_env()
        credentials = Credentials.from_dict(data.get("credentials", {})).with_env()
        return cls(sync=sync, credentials=credentials)


# Cached config instance for the CLI
_config: ClientConfig | None = None


def get_config() -> ClientConfig:
    """Get the cached client configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = ClientConfig.load()
    return _config


def reset_config() -> None:
    """Reset the cached configuration (useful for testing)."""
    global _config
    _config = None
