"""Server configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: PAYGATE_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class AuthConfig:
    timestamp_tolerance_ms: int = 300_000
    # "authenticate_then_limit" or "limit_then_authenticate"
    pipeline_order: str = "authenticate_then_limit"


@dataclass
class LimitsConfig:
    rate_window_seconds: float = 60.0
    rate_max_requests: int = 30
    rate_shards: int = 16
    idle_eviction_seconds: float = 300.0
    eviction_interval_seconds: float = 60.0
    active_window_seconds: float = 600.0
    max_page_size: int = 200


@dataclass
class QueueConfig:
    max_size: int = 10_000


@dataclass
class StorageConfig:
    device_backend: str = "file"  # "file" or "memory"
    devices_path: str = "data/devices.json"
    payments_dir: str = "data/payments"
    store_timeout_seconds: float = 5.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "PAYGATE_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "PAYGATE_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "PAYGATE_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "PAYGATE_AUTH_TIMESTAMP_TOLERANCE_MS": lambda v: setattr(config.auth, "timestamp_tolerance_ms", int(v)),
        "PAYGATE_AUTH_PIPELINE_ORDER": lambda v: setattr(config.auth, "pipeline_order", v),
        "PAYGATE_LIMITS_RATE_WINDOW": lambda v: setattr(config.limits, "rate_window_seconds", float(v)),
        "PAYGATE_LIMITS_RATE_MAX_REQUESTS": lambda v: setattr(config.limits, "rate_max_requests", int(v)),
        "PAYGATE_LIMITS_IDLE_EVICTION": lambda v: setattr(config.limits, "idle_eviction_seconds", float(v)),
        "PAYGATE_LIMITS_ACTIVE_WINDOW": lambda v: setattr(config.limits, "active_window_seconds", float(v)),
        "PAYGATE_QUEUE_MAX_SIZE": lambda v: setattr(config.queue, "max_size", int(v)),
        "PAYGATE_STORAGE_DEVICE_BACKEND": lambda v: setattr(config.storage, "device_backend", v),
        "PAYGATE_STORAGE_DEVICES_PATH": lambda v: setattr(config.storage, "devices_path", v),
        "PAYGATE_STORAGE_PAYMENTS_DIR": lambda v: setattr(config.storage, "payments_dir", v),
        "PAYGATE_STORAGE_TIMEOUT": lambda v: setattr(config.storage, "store_timeout_seconds", float(v)),
        "PAYGATE_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "PAYGATE_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def _apply_section(section: object, values: dict) -> None:
    known = {f.name for f in fields(section)}
    for k, v in values.items():
        if k in known:
            setattr(section, k, v)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for name in ("server", "auth", "limits", "queue", "storage", "logging"):
            if isinstance(raw.get(name), dict):
                _apply_section(getattr(config, name), raw[name])

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
