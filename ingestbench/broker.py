"""Thin paho-mqtt session used by each simulated device."""
from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Optional, Tuple

import paho.mqtt.client as mqtt

from ingestbench.config import BenchConfig

LOGGER = logging.getLogger(__name__)
PAHO_LOGGER = logging.getLogger("paho")


class BrokerError(RuntimeError):
    """Raised when a device cannot establish its broker session."""


class PublishError(RuntimeError):
    """Raised when a single publish is rejected, fails or is not acknowledged in time."""


_ERROR_MAP = {
    int(mqtt.MQTT_ERR_AGAIN): ("network", "Resource temporarily unavailable"),
    int(mqtt.MQTT_ERR_CONN_LOST): ("network", "Connection lost"),
    int(mqtt.MQTT_ERR_CONN_REFUSED): ("network", "Connection refused"),
    int(mqtt.MQTT_ERR_NO_CONN): ("network", "Client not connected"),
    int(mqtt.MQTT_ERR_PROTOCOL): ("protocol", "Protocol error"),
    int(mqtt.MQTT_ERR_NOMEM): ("client-memory", "Out of memory"),
    int(mqtt.MQTT_ERR_PAYLOAD_SIZE): ("payload", "Payload too large for broker"),
    int(mqtt.MQTT_ERR_QUEUE_SIZE): ("client-backpressure", "Local queue is full"),
    int(mqtt.MQTT_ERR_TLS): ("tls", "TLS handshake failed"),
    int(mqtt.MQTT_ERR_AUTH): ("auth", "Authentication error"),
    int(mqtt.MQTT_ERR_ACL_DENIED): ("auth", "ACL denied"),
    int(mqtt.MQTT_ERR_NOT_SUPPORTED): ("client", "Operation not supported"),
    int(mqtt.MQTT_ERR_KEEPALIVE): ("network", "Keepalive failure"),
    int(mqtt.MQTT_ERR_ERRNO): ("network", "System socket error"),
}


def classify_failure(
    rc: Optional[int] = None, exc: Optional[BaseException] = None
) -> Tuple[str, str]:
    """Map low-level MQTT results into human-readable buckets."""
    if exc is not None:
        if isinstance(exc, MemoryError):
            return ("client-memory", "MemoryError while handling payload")
        if isinstance(exc, (TimeoutError, socket.timeout)):
            return ("network-timeout", f"Timeout: {exc}")
        if isinstance(exc, socket.gaierror):
            return ("dns", f"Cannot resolve broker host: {exc}")
        if isinstance(exc, OSError):
            return ("network", f"{exc.__class__.__name__}: {exc}")
        return ("internal-error", f"{exc.__class__.__name__}: {exc}")

    if rc is None:
        return ("unknown", "Unknown failure cause")

    rc_val = int(rc)
    if rc_val in _ERROR_MAP:
        return _ERROR_MAP[rc_val]
    return ("broker", mqtt.error_string(rc_val))


class BrokerSession:
    """One clean-session MQTT connection with automatic reconnect."""

    def __init__(self, identity: str, config: BenchConfig) -> None:
        self.identity = identity
        self.config = config
        self.client_id = f"{identity}_{time.strftime('%H%M%S')}"
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        self.client.username_pw_set(identity)
        max_delay = max(config.max_reconnect_interval, 0.1)
        self.client.reconnect_delay_set(min_delay=min(1.0, max_delay), max_delay=max_delay)
        self.client.connect_timeout = config.connect_timeout
        if config.mqtt_tls:
            self.client.tls_set()
        self.client.enable_logger(PAHO_LOGGER)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self._connack = threading.Event()
        self._connack_failure: Optional[str] = None
        self._disconnected = threading.Event()
        self._ever_connected = False

    def _on_connect(self, _client, _userdata, _flags, reason_code, _properties) -> None:
        if reason_code.is_failure:
            self._connack_failure = str(reason_code)
        elif self._ever_connected:
            LOGGER.info("Device reconnected", extra={"device": self.identity})
        else:
            self._ever_connected = True
        self._connack.set()

    def _on_disconnect(self, _client, _userdata, _flags, reason_code, _properties) -> None:
        self._disconnected.set()
        if reason_code.is_failure:
            LOGGER.warning(
                "Device connection lost, reconnecting",
                extra={"device": self.identity, "reason": str(reason_code)},
            )

    def connect(self) -> None:
        """Open the connection and wait for the broker's CONNACK."""
        try:
            self.client.connect(
                self.config.mqtt_host, self.config.mqtt_port, keepalive=self.config.keepalive
            )
        except (OSError, ValueError) as exc:
            label, detail = classify_failure(exc=exc)
            raise BrokerError(f"{label}: {detail}") from exc

        self.client.loop_start()
        if not self._connack.wait(self.config.connect_timeout):
            self._abandon()
            raise BrokerError(
                f"network-timeout: no CONNACK within {self.config.connect_timeout:.1f}s"
            )
        if self._connack_failure is not None:
            reason = self._connack_failure
            self._abandon()
            raise BrokerError(f"broker: {reason}")

    def publish(self, topic: str, payload: str, qos: int, timeout: float) -> None:
        """Publish and block until acknowledged (QoS 1/2) or written (QoS 0)."""
        info = self.client.publish(topic, payload, qos=qos)
        if int(info.rc) != int(mqtt.MQTT_ERR_SUCCESS):
            label, detail = classify_failure(rc=info.rc)
            raise PublishError(f"{label}: {detail}")
        try:
            info.wait_for_publish(timeout)
        except (RuntimeError, ValueError) as exc:
            raise PublishError(str(exc)) from exc
        if not info.is_published():
            raise PublishError(f"network-timeout: no acknowledgement within {timeout:.1f}s")

    def disconnect(self, grace: float) -> None:
        """Send DISCONNECT, give it ``grace`` seconds to flush, then stop the network loop."""
        self._disconnected.clear()
        rc = self.client.disconnect()
        if int(rc) == int(mqtt.MQTT_ERR_SUCCESS):
            self._disconnected.wait(grace)
        self.client.loop_stop()

    def _abandon(self) -> None:
        self.client.disconnect()
        self.client.loop_stop()
