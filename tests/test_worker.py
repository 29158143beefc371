from __future__ import annotations

import json
import random
import time

from ingestbench.counters import SharedCounters
from ingestbench.cycle import CycleBarrier, StopSignal
from ingestbench.worker import PublisherWorker

from .fakes import FakeSession


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def _build(config, session: FakeSession):
    stop = StopSignal()
    barrier = CycleBarrier(stop)
    counters = SharedCounters()
    worker = PublisherWorker(
        identity=session.identity,
        index=0,
        config=config,
        barrier=barrier,
        stop_signal=stop,
        counters=counters,
        session_factory=lambda _identity: session,
        rng=random.Random(3),
    )
    return worker, barrier, stop, counters


def test_worker_publishes_once_per_cycle(config) -> None:
    session = FakeSession("tok-1")
    worker, barrier, stop, counters = _build(config, session)

    worker.start()
    assert _wait_until(lambda: counters.connected == 1)
    barrier.fire()
    assert _wait_until(lambda: worker.published == 1)
    barrier.fire()
    assert _wait_until(lambda: worker.published == 2)
    stop.trip()
    worker.join(2.0)

    assert not worker.is_alive()
    assert worker.name == "device-00000"
    snapshot = counters.snapshot()
    assert snapshot.sent_messages == 2
    assert snapshot.sent_points == 2 * config.points_per_message
    assert snapshot.exited == 1
    topic, body, qos, timeout = session.published[0]
    assert topic == config.topic
    assert qos == config.qos
    assert timeout == config.publish_timeout
    assert list(json.loads(body)) == ["hum1", "hum2", "hum3", "hum4"]
    assert session.disconnected_with == config.disconnect_grace


def test_connect_failure_exits_without_counting_connection(config, caplog) -> None:
    session = FakeSession("tok-bad", connect_error="auth: Authentication error")
    worker, _barrier, _stop, counters = _build(config, session)

    with caplog.at_level("ERROR"):
        worker.start()
        worker.join(2.0)

    assert not worker.connected
    assert counters.snapshot().connected == 0
    assert counters.snapshot().exited == 1
    assert session.disconnected_with is None
    assert "failed to connect" in caplog.text


def test_publish_failure_is_logged_and_not_counted(config, caplog) -> None:
    session = FakeSession("tok-2", publish_error="network-timeout: no acknowledgement")
    worker, barrier, stop, counters = _build(config, session)

    with caplog.at_level("WARNING"):
        worker.start()
        assert _wait_until(lambda: counters.connected == 1)
        barrier.fire()
        assert _wait_until(lambda: worker.failed == 1)
        stop.trip()
        worker.join(2.0)

    assert counters.snapshot().sent_messages == 0
    assert counters.snapshot().exited == 1
    assert "Publish failed" in caplog.text


def test_stop_before_any_cycle_exits_cleanly(config) -> None:
    session = FakeSession("tok-3")
    worker, _barrier, stop, counters = _build(config, session)

    worker.start()
    assert _wait_until(lambda: counters.connected == 1)
    stop.trip()
    worker.join(2.0)

    assert worker.published == 0
    assert counters.snapshot().exited == 1
    assert session.disconnected_with is not None
