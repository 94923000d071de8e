"""
Configuration loader — reads config.yaml and environment variables.

Environment variables override config.yaml values.
"""

import os
import logging
from dataclasses import dataclass, field, fields as dataclass_fields
from pathlib import Path

import yaml

from .models import MAX_INTERVAL_SECONDS, MIN_INTERVAL_SECONDS

log = logging.getLogger(__name__)


@dataclass
class APIConfig:
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class ProbeConfig:
    timeout_ms: int = 5000
    follow_redirects: bool = True


@dataclass
class RefreshConfig:
    """Auto-refresh defaults, used until a value has been persisted."""
    enabled: bool = True
    interval_seconds: int = 10


@dataclass
class StorageConfig:
    db_path: str = "portwatch.db"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"


@dataclass
class AppConfig:
    api: APIConfig = field(default_factory=APIConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


_SECTIONS = {
    "api": APIConfig,
    "probe": ProbeConfig,
    "refresh": RefreshConfig,
    "storage": StorageConfig,
    "logging": LoggingConfig,
}

_ENV_OVERRIDES = {
    "API_HOST": ("api", "host", str),
    "API_PORT": ("api", "port", int),
    "PROBE_TIMEOUT_MS": ("probe", "timeout_ms", int),
    "PROBE_FOLLOW_REDIRECTS": ("probe", "follow_redirects", _as_bool),
    "REFRESH_ENABLED": ("refresh", "enabled", _as_bool),
    "REFRESH_INTERVAL_SECONDS": ("refresh", "interval_seconds", int),
    "DB_PATH": ("storage", "db_path", str),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_FORMAT": ("logging", "format", str),
}


def load_config(config_path: str = None) -> AppConfig:
    """
    Build the app config from defaults, then config.yaml, then env vars.

    Out-of-range probe and refresh values are replaced by their defaults
    with a warning, so a bad file never stops the monitor from starting.
    """
    if config_path is None:
        config_path = os.getenv("CONFIG_PATH", "config.yaml")

    data = {}
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}

    config = AppConfig(**{
        name: _build_section(cls, data.get(name) or {}, name)
        for name, cls in _SECTIONS.items()
    })

    for env_key, (section, attr, cast) in _ENV_OVERRIDES.items():
        value = os.getenv(env_key)
        if value:
            setattr(getattr(config, section), attr, cast(value))

    _check_bounds(config)
    return config


def _build_section(cls, data: dict, section_name: str):
    """Instantiate one config section, skipping (and warning on) unknown keys."""
    known = {f.name for f in dataclass_fields(cls)}
    for key in sorted(set(data) - known):
        log.warning("Unknown config key '%s' in section '%s'. Valid keys: %s",
                    key, section_name, sorted(known))
    return cls(**{k: v for k, v in data.items() if k in known and v is not None})


def _check_bounds(config: AppConfig):
    interval = config.refresh.interval_seconds
    if not MIN_INTERVAL_SECONDS <= interval <= MAX_INTERVAL_SECONDS:
        log.warning("refresh.interval_seconds=%s outside [%s, %s], using %s",
                    interval, MIN_INTERVAL_SECONDS, MAX_INTERVAL_SECONDS,
                    RefreshConfig.interval_seconds)
        config.refresh.interval_seconds = RefreshConfig.interval_seconds
    if config.probe.timeout_ms <= 0:
        log.warning("probe.timeout_ms=%s must be positive, using %s",
                    config.probe.timeout_ms, ProbeConfig.timeout_ms)
        config.probe.timeout_ms = ProbeConfig.timeout_ms
