from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from zkwire.protocol.constants import DEFAULT_MAX_FRAME_SIZE
from zkwire.protocol.errors import BadArgumentsError
from zkwire.protocol.validator import validate_config

ENV_PREFIX = "ZKWIRE_"

DEFAULT_CONFIG: Dict[str, Any] = {
    "hosts": "127.0.0.1:2181",
    "session_timeout_ms": 10000,
    "connect_timeout_ms": 10000,
    "reconnect_backoff_ms": 100,
    "max_reconnect_backoff_ms": 2000,
    "max_frame_size": DEFAULT_MAX_FRAME_SIZE,
    "read_only": False,
    "event_queue_size": 1024,
    "close_timeout_ms": 2000,
    "log_level": "INFO",
}

CLIENT_CONFIG: Dict[str, Any] = DEFAULT_CONFIG.copy()


class ConfigError(Exception):
    """Raised when configuration values are invalid."""

    pass


def load_config(env_path: str = ".env") -> Dict[str, Any]:
    """Load client configuration from env file/environment variables."""
    if os.path.exists(env_path):
        load_dotenv(env_path)

    for key, default_value in DEFAULT_CONFIG.items():
        env_key = f"{ENV_PREFIX}{key.upper()}"
        value = os.getenv(env_key, default_value)
        CLIENT_CONFIG[key] = _coerce_type(value, type(default_value))

    check_config(CLIENT_CONFIG)
    logging.getLogger("zkwire").setLevel(CLIENT_CONFIG["log_level"])
    return CLIENT_CONFIG


def _coerce_type(value: Any, target_type: type) -> Any:
    if isinstance(value, target_type):
        return value
    try:
        if target_type is bool:
            return str(value).lower() in ("1", "true", "yes", "on")
        return target_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Cannot convert {value} to {target_type}") from exc


def check_config(config: Dict[str, Any]) -> None:
    try:
        validate_config(config)
    except BadArgumentsError as exc:
        raise ConfigError(exc.message) from exc
    if config["max_reconnect_backoff_ms"] < config["reconnect_backoff_ms"]:
        raise ConfigError("max_reconnect_backoff_ms must not be below reconnect_backoff_ms")


def merged(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Current configuration with per-client overrides applied and checked."""
    config = {**CLIENT_CONFIG, **(overrides or {})}
    check_config(config)
    return config


def get(key: str, default: Any = None) -> Any:
    return CLIENT_CONFIG.get(key, default)


__all__ = [
    "CLIENT_CONFIG",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "ConfigError",
    "check_config",
    "get",
    "load_config",
    "merged",
]
