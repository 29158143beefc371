from __future__ import annotations

import pytest

from ingestbench.config import BenchConfig

CONFIG_ENV_KEYS = (
    "TOKEN_FILE",
    "DEVICE_COUNT",
    "MQTT_HOST",
    "MQTT_PORT",
    "MQTT_TLS",
    "MQTT_TOPIC",
    "MQTT_QOS",
    "MQTT_KEEPALIVE",
    "MQTT_MAX_RECONNECT_INTERVAL",
    "MQTT_CONNECT_TIMEOUT",
    "PUBLISH_TIMEOUT",
    "DISCONNECT_GRACE",
    "DATA_INTERVAL",
    "CYCLE_COUNT",
    "CONNECT_WAIT",
    "LOG_CYCLES",
    "MIN_VALUE",
    "MAX_VALUE",
    "DATA_POINT_COUNT",
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_PASSWORD",
    "DB_NAME",
    "DB_SSLMODE",
    "DB_TABLE",
    "DB_CONNECT_TIMEOUT",
    "MONITOR_INTERVAL",
    "MONITOR_INIT_TIMEOUT",
    "ADVISORY_THRESHOLD",
    "LOG_LEVEL",
    "LOG_DIR",
    "TENANT_ID",
    "DEVICE_PREFIX",
    "DEVICE_NUMBER",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    # blank values read as unset and are restored after the test, even if a
    # .env file loaded during the test overwrote them
    for key in CONFIG_ENV_KEYS:
        monkeypatch.setenv(key, "")
    yield


@pytest.fixture
def config() -> BenchConfig:
    return BenchConfig(
        device_count=3,
        interval=1.0,
        cycle_count=6,
        connect_wait=3.0,
        points_per_message=4,
        publish_timeout=1.0,
        disconnect_grace=0.0,
        monitor_interval=10.0,
    )
