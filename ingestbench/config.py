"""Benchmark configuration resolved from defaults, environment, .env file and flags."""
from __future__ import annotations

import dataclasses
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Union

from dotenv import find_dotenv, load_dotenv

LOGGER = logging.getLogger(__name__)

DEFAULT_POINT_COUNT = 10

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ms|us|s|m|h)")
_UNIT_SECONDS = {"us": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


def parse_duration(value: Union[str, int, float]) -> float:
    """Convert ``"10ms"``, ``"3s"``, ``"1m30s"`` or plain seconds into seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip().lower()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass
    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _raw(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def _read_str(name: str, default: str) -> str:
    return _raw(name) or default


def _read_int(name: str, default: int) -> int:
    candidate = _raw(name)
    if candidate is None:
        return default
    try:
        return int(candidate)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {candidate!r}") from exc


def _read_float(name: str, default: float) -> float:
    candidate = _raw(name)
    if candidate is None:
        return default
    try:
        return float(candidate)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {candidate!r}") from exc


def _read_bool(name: str, default: bool) -> bool:
    candidate = _raw(name)
    if candidate is None:
        return default
    lowered = candidate.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {candidate!r}")


def _read_duration(name: str, default: float) -> float:
    candidate = _raw(name)
    if candidate is None:
        return default
    try:
        return parse_duration(candidate)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a duration, got {candidate!r}") from exc


@dataclass(frozen=True)
class BenchConfig:
    """Everything a benchmark run needs; immutable once resolved."""

    token_file: Path = Path("data/device_tokens.txt")
    device_count: int = 10

    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    mqtt_tls: bool = False
    topic: str = "devices/telemetry"
    qos: int = 0
    keepalive: int = 60
    max_reconnect_interval: float = 5.0
    connect_timeout: float = 5.0
    publish_timeout: float = 10.0
    disconnect_grace: float = 0.2

    interval: float = 0.01
    cycle_count: int = 200
    connect_wait: float = 3.0
    log_cycles: bool = False

    min_value: float = 1.0
    max_value: float = 10.0
    points_per_message: int = DEFAULT_POINT_COUNT

    db_host: str = "127.0.0.1"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = ""
    db_name: str = "thingspanel"
    db_sslmode: str = "disable"
    db_table: str = "telemetry_datas"
    db_connect_timeout: float = 5.0

    monitor_interval: float = 10.0
    monitor_init_timeout: float = 10.0
    advisory_threshold: float = 95.0

    log_level: str = "INFO"
    log_dir: Path = Path("data/logs")

    @staticmethod
    def load(env_file: Optional[Union[str, Path]] = None) -> "BenchConfig":
        """Read the ``.env`` file (if any) into the environment, then build the config."""
        if env_file is not None:
            path = Path(env_file)
            if path.exists():
                load_dotenv(path, override=True)
            else:
                LOGGER.warning("Config file %s not found, using defaults and environment", path)
        else:
            discovered = find_dotenv(usecwd=True)
            if discovered:
                load_dotenv(discovered, override=True)
        return BenchConfig.from_env()

    @staticmethod
    def from_env() -> "BenchConfig":
        defaults = BenchConfig()
        points = _read_int("DATA_POINT_COUNT", defaults.points_per_message)
        if points <= 0:
            LOGGER.info("DATA_POINT_COUNT not set, using default %d", DEFAULT_POINT_COUNT)
            points = DEFAULT_POINT_COUNT
        return BenchConfig(
            token_file=Path(_read_str("TOKEN_FILE", str(defaults.token_file))),
            device_count=_read_int("DEVICE_COUNT", defaults.device_count),
            mqtt_host=_read_str("MQTT_HOST", defaults.mqtt_host),
            mqtt_port=_read_int("MQTT_PORT", defaults.mqtt_port),
            mqtt_tls=_read_bool("MQTT_TLS", defaults.mqtt_tls),
            topic=_read_str("MQTT_TOPIC", defaults.topic),
            qos=_read_int("MQTT_QOS", defaults.qos),
            keepalive=_read_int("MQTT_KEEPALIVE", defaults.keepalive),
            max_reconnect_interval=_read_duration(
                "MQTT_MAX_RECONNECT_INTERVAL", defaults.max_reconnect_interval
            ),
            connect_timeout=_read_duration("MQTT_CONNECT_TIMEOUT", defaults.connect_timeout),
            publish_timeout=_read_duration("PUBLISH_TIMEOUT", defaults.publish_timeout),
            disconnect_grace=_read_duration("DISCONNECT_GRACE", defaults.disconnect_grace),
            interval=_read_duration("DATA_INTERVAL", defaults.interval),
            cycle_count=_read_int("CYCLE_COUNT", defaults.cycle_count),
            connect_wait=_read_duration("CONNECT_WAIT", defaults.connect_wait),
            log_cycles=_read_bool("LOG_CYCLES", defaults.log_cycles),
            min_value=_read_float("MIN_VALUE", defaults.min_value),
            max_value=_read_float("MAX_VALUE", defaults.max_value),
            points_per_message=points,
            db_host=_read_str("DB_HOST", defaults.db_host),
            db_port=_read_int("DB_PORT", defaults.db_port),
            db_user=_read_str("DB_USER", defaults.db_user),
            db_password=_read_str("DB_PASSWORD", defaults.db_password),
            db_name=_read_str("DB_NAME", defaults.db_name),
            db_sslmode=_read_str("DB_SSLMODE", defaults.db_sslmode),
            db_table=_read_str("DB_TABLE", defaults.db_table),
            db_connect_timeout=_read_duration("DB_CONNECT_TIMEOUT", defaults.db_connect_timeout),
            monitor_interval=_read_duration("MONITOR_INTERVAL", defaults.monitor_interval),
            monitor_init_timeout=_read_duration(
                "MONITOR_INIT_TIMEOUT", defaults.monitor_init_timeout
            ),
            advisory_threshold=_read_float("ADVISORY_THRESHOLD", defaults.advisory_threshold),
            log_level=_read_str("LOG_LEVEL", defaults.log_level).upper(),
            log_dir=Path(_read_str("LOG_DIR", str(defaults.log_dir))),
        )

    def with_overrides(self, **overrides: Any) -> "BenchConfig":
        """Apply flag values on top of this config; ``None`` means "not given"."""
        known = {field.name for field in dataclasses.fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "points_per_message" in changes and changes["points_per_message"] <= 0:
            del changes["points_per_message"]
        return dataclasses.replace(self, **changes)

    def validate(self) -> "BenchConfig":
        if self.qos not in (0, 1, 2):
            raise ConfigError(f"QoS must be 0, 1 or 2, got {self.qos}")
        if self.interval <= 0:
            raise ConfigError("Data interval must be greater than 0")
        if self.cycle_count < 0:
            raise ConfigError("Cycle count cannot be negative")
        if self.device_count < 0:
            raise ConfigError("Device count cannot be negative")
        if self.connect_wait < 0:
            raise ConfigError("Connect wait cannot be negative")
        if self.min_value > self.max_value:
            raise ConfigError(
                f"min_value ({self.min_value}) cannot exceed max_value ({self.max_value})"
            )
        if self.monitor_interval <= 0:
            raise ConfigError("Monitor interval must be greater than 0")
        if self.publish_timeout <= 0:
            raise ConfigError("Publish timeout must be greater than 0")
        return self

    @property
    def broker_address(self) -> str:
        return f"{self.mqtt_host}:{self.mqtt_port}"

    def describe(self) -> List[str]:
        return [
            f"- devices: file={self.token_file}, count={self.device_count}",
            f"- mqtt: server={self.broker_address}, tls={self.mqtt_tls}, "
            f"qos={self.qos}, topic={self.topic}",
            f"- test: interval={self.interval}s, cycles={self.cycle_count}, "
            f"connect_wait={self.connect_wait}s",
            f"- data: min={self.min_value:.1f}, max={self.max_value:.1f}, "
            f"points={self.points_per_message}",
            f"- database: host={self.db_host}:{self.db_port}, user={self.db_user}, "
            f"name={self.db_name}, table={self.db_table}",
            f"- monitor: interval={self.monitor_interval}s, "
            f"advisory_threshold={self.advisory_threshold:.1f}%",
        ]
