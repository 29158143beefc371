"""Publisher thread simulating a single device."""
from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, Optional

from ingestbench.broker import BrokerError, BrokerSession, PublishError
from ingestbench.config import BenchConfig
from ingestbench.counters import SharedCounters
from ingestbench.cycle import CycleBarrier, StopSignal
from ingestbench.payload import SensorPayload

LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[[str], BrokerSession]


class PublisherWorker(threading.Thread):
    """Telemetry worker that publishes one MQTT message per cycle for a single device."""

    def __init__(
        self,
        identity: str,
        index: int,
        config: BenchConfig,
        barrier: CycleBarrier,
        stop_signal: StopSignal,
        counters: SharedCounters,
        session_factory: Optional[SessionFactory] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(daemon=True, name=f"device-{index:05d}")
        self.identity = identity
        self.config = config
        self.barrier = barrier
        self.stop_signal = stop_signal
        self.counters = counters
        self.session_factory = session_factory or (lambda ident: BrokerSession(ident, config))
        self.payload = SensorPayload(
            config.points_per_message, config.min_value, config.max_value, rng=rng
        )
        self.connected = False
        self.published = 0
        self.failed = 0

    def run(self) -> None:
        try:
            self._run()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Device worker crashed", extra={"device": self.identity})
        finally:
            self.counters.record_exited()

    def _run(self) -> None:
        session = self.session_factory(self.identity)
        try:
            session.connect()
        except BrokerError as exc:
            LOGGER.error(
                "Device failed to connect to MQTT broker: %s", exc, extra={"device": self.identity}
            )
            return

        self.connected = True
        self.counters.record_connected()
        try:
            self._publish_loop(session)
        finally:
            session.disconnect(self.config.disconnect_grace)

    def _publish_loop(self, session: BrokerSession) -> None:
        last_cycle = 0
        while True:
            cycle = self.barrier.wait_next(last_cycle)
            if cycle is None:
                return
            last_cycle = cycle

            self.payload.refresh()
            body = self.payload.to_json()
            try:
                session.publish(
                    self.config.topic, body, self.config.qos, self.config.publish_timeout
                )
            except PublishError as exc:
                self.failed += 1
                LOGGER.warning(
                    "Publish failed: %s", exc, extra={"device": self.identity, "cycle": cycle}
                )
            else:
                self.published += 1
                self.counters.record_sent(len(self.payload))
            # let the other device threads run
            time.sleep(0)
