"""
Configuration management and loading.

Handles monitor settings for the webhook client, ledger, health prober and logging.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_REQUEST_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_REQUESTS = 50
DEFAULT_LATENCY_WINDOW = 10
DEFAULT_DISCONNECT_THRESHOLD = 3
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 60.0
DEFAULT_IDLE_THRESHOLD_SECONDS = 30.0
DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class WebhookConfig:
    """Target endpoint and timeout for caller-issued requests."""
    url: Optional[str] = None
    timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.url is not None and not self.url.strip():
            raise ValueError("webhook.url cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("webhook.timeout_seconds must be > 0")


@dataclass(frozen=True)
class LedgerConfig:
    """Capacity and statistics windows for the request ledger."""
    max_requests: int = DEFAULT_MAX_REQUESTS
    latency_window: int = DEFAULT_LATENCY_WINDOW
    disconnect_threshold: int = DEFAULT_DISCONNECT_THRESHOLD

    def __post_init__(self):
        if self.max_requests <= 0:
            raise ValueError("ledger.max_requests must be > 0")
        if self.latency_window <= 0:
            raise ValueError("ledger.latency_window must be > 0")
        if self.disconnect_threshold <= 0:
            raise ValueError("ledger.disconnect_threshold must be > 0")


@dataclass(frozen=True)
class HealthCheckConfig:
    """Schedule for the background health prober."""
    interval_seconds: float = DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS
    idle_threshold_seconds: float = DEFAULT_IDLE_THRESHOLD_SECONDS
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValueError("health_check.interval_seconds must be > 0")
        if self.idle_threshold_seconds < 0:
            raise ValueError("health_check.idle_threshold_seconds must be >= 0")
        if self.probe_timeout_seconds <= 0:
            raise ValueError("health_check.probe_timeout_seconds must be > 0")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        if self.level.upper() not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {sorted(_LOG_LEVELS)}")

    @property
    def numeric_level(self) -> int:
        return getattr(logging, self.level.upper())


@dataclass(frozen=True)
class MonitorConfig:
    """Complete monitor configuration."""
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTION_KEYS = {
    "webhook": {"url", "timeout_seconds"},
    "ledger": {"max_requests", "latency_window", "disconnect_threshold"},
    "health_check": {"interval_seconds", "idle_threshold_seconds", "probe_timeout_seconds"},
    "logging": {"level"},
}


def load_monitor_config(path: str) -> MonitorConfig:
    """Load and validate monitor configuration from a YAML file.

    Every section is optional and falls back to the built-in defaults, but
    unknown keys are rejected so a typo never silently reverts a setting.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated MonitorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Monitor config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _read_section(raw_config, name)
        for name in _SECTION_KEYS
    }

    webhook_data = sections["webhook"]
    url = webhook_data.get("url")
    if url is not None and not isinstance(url, str):
        raise ValueError("'url' in webhook must be a string")

    return MonitorConfig(
        webhook=WebhookConfig(
            url=url,
            timeout_seconds=_number(
                webhook_data, "timeout_seconds", "webhook", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
        ),
        ledger=LedgerConfig(
            max_requests=_integer(
                sections["ledger"], "max_requests", "ledger", DEFAULT_MAX_REQUESTS
            ),
            latency_window=_integer(
                sections["ledger"], "latency_window", "ledger", DEFAULT_LATENCY_WINDOW
            ),
            disconnect_threshold=_integer(
                sections["ledger"], "disconnect_threshold", "ledger", DEFAULT_DISCONNECT_THRESHOLD
            ),
        ),
        health_check=HealthCheckConfig(
            interval_seconds=_number(
                sections["health_check"], "interval_seconds", "health_check",
                DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS
            ),
            idle_threshold_seconds=_number(
                sections["health_check"], "idle_threshold_seconds", "health_check",
                DEFAULT_IDLE_THRESHOLD_SECONDS
            ),
            probe_timeout_seconds=_number(
                sections["health_check"], "probe_timeout_seconds", "health_check",
                DEFAULT_PROBE_TIMEOUT_SECONDS
            ),
        ),
        logging=LoggingConfig(
            level=_string(sections["logging"], "level", "logging", "INFO").upper()
        ),
    )


def _read_section(raw_config: Dict, name: str) -> Dict[str, Any]:
    """Extract one section and reject keys it does not define.

    Args:
        raw_config: Parsed YAML document
        name: Section name

    Returns:
        The section dictionary, empty if absent

    Raises:
        ValueError: If the section is not a dictionary or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _number(data: Dict, key: str, path: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _integer(data: Dict, key: str, path: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _string(data: Dict, key: str, path: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value
