from __future__ import annotations

from pathlib import Path

import pytest

from ingestbench.config import BenchConfig, ConfigError, parse_duration


@pytest.mark.parametrize(
    "text, expected",
    [
        ("10ms", 0.01),
        ("3s", 3.0),
        ("1m30s", 90.0),
        ("1h", 3600.0),
        ("500us", 0.0005),
        ("2.5", 2.5),
        (" 0.5s ", 0.5),
    ],
)
def test_parse_duration_accepts_common_forms(text, expected) -> None:
    assert parse_duration(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["", "abc", "10x", "s10", "10ms junk"])
def test_parse_duration_rejects_garbage(text) -> None:
    with pytest.raises(ValueError):
        parse_duration(text)


def test_defaults_without_environment() -> None:
    config = BenchConfig.from_env()

    assert config == BenchConfig()
    assert config.qos == 0
    assert config.points_per_message == 10
    assert config.broker_address == "127.0.0.1:1883"


def test_environment_values_are_read(monkeypatch) -> None:
    monkeypatch.setenv("MQTT_HOST", "broker.local")
    monkeypatch.setenv("MQTT_PORT", "8883")
    monkeypatch.setenv("MQTT_TLS", "yes")
    monkeypatch.setenv("DATA_INTERVAL", "250ms")
    monkeypatch.setenv("CYCLE_COUNT", "5")
    monkeypatch.setenv("LOG_CYCLES", "true")
    monkeypatch.setenv("DB_TABLE", "public.telemetry_datas")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = BenchConfig.from_env()

    assert config.mqtt_host == "broker.local"
    assert config.mqtt_port == 8883
    assert config.mqtt_tls is True
    assert config.interval == pytest.approx(0.25)
    assert config.cycle_count == 5
    assert config.log_cycles is True
    assert config.db_table == "public.telemetry_datas"
    assert config.log_level == "DEBUG"


def test_non_positive_point_count_falls_back_to_default(monkeypatch) -> None:
    monkeypatch.setenv("DATA_POINT_COUNT", "0")

    assert BenchConfig.from_env().points_per_message == 10


@pytest.mark.parametrize(
    "key, value",
    [("MQTT_PORT", "not-a-port"), ("MQTT_TLS", "maybe"), ("DATA_INTERVAL", "soon")],
)
def test_invalid_environment_values_raise(monkeypatch, key, value) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ConfigError, match=key):
        BenchConfig.from_env()


def test_env_file_overrides_process_environment(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DEVICE_COUNT", "7")
    env_file = tmp_path / ".env"
    env_file.write_text("DEVICE_COUNT=42\nMQTT_TOPIC=bench/topic\n", encoding="utf-8")

    config = BenchConfig.load(env_file)

    assert config.device_count == 42
    assert config.topic == "bench/topic"


def test_missing_env_file_keeps_environment(monkeypatch, tmp_path: Path, caplog) -> None:
    monkeypatch.setenv("DEVICE_COUNT", "7")

    with caplog.at_level("WARNING"):
        config = BenchConfig.load(tmp_path / "missing.env")

    assert config.device_count == 7
    assert "not found" in caplog.text


def test_overrides_ignore_none_and_reject_unknown_keys() -> None:
    base = BenchConfig()

    updated = base.with_overrides(device_count=5, mqtt_host=None, points_per_message=0)

    assert updated.device_count == 5
    assert updated.mqtt_host == base.mqtt_host
    assert updated.points_per_message == base.points_per_message
    with pytest.raises(ConfigError, match="bogus"):
        base.with_overrides(bogus=1)


@pytest.mark.parametrize(
    "changes",
    [
        {"qos": 3},
        {"interval": 0},
        {"cycle_count": -1},
        {"device_count": -1},
        {"connect_wait": -0.5},
        {"min_value": 5.0, "max_value": 1.0},
        {"monitor_interval": 0},
        {"publish_timeout": 0},
    ],
)
def test_validate_rejects_unusable_values(changes) -> None:
    with pytest.raises(ConfigError):
        BenchConfig().with_overrides(**changes).validate()


def test_describe_does_not_leak_password() -> None:
    config = BenchConfig(db_password="hunter2")

    assert all("hunter2" not in line for line in config.describe())
