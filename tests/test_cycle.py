from __future__ import annotations

import threading
import time

from ingestbench.cycle import CycleBarrier, StopSignal


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_stop_signal_trip_is_idempotent_and_runs_listeners_once() -> None:
    signal = StopSignal()
    calls = []
    signal.add_listener(lambda: calls.append("first"))

    signal.trip()
    signal.trip()

    assert signal.is_set()
    assert calls == ["first"]


def test_listener_added_after_trip_runs_immediately() -> None:
    signal = StopSignal()
    signal.trip()
    calls = []

    signal.add_listener(lambda: calls.append("late"))

    assert calls == ["late"]


def test_sleep_returns_early_when_stopped() -> None:
    signal = StopSignal()
    threading.Timer(0.05, signal.trip).start()

    started = time.monotonic()
    assert signal.sleep(5.0) is True
    assert time.monotonic() - started < 2.0


def test_sleep_without_stop_returns_false() -> None:
    signal = StopSignal()

    assert signal.sleep(0.01) is False
    assert signal.sleep(0) is False


def test_every_waiter_is_released_once_per_fire() -> None:
    stop = StopSignal()
    barrier = CycleBarrier(stop)
    seen = {index: [] for index in range(4)}

    def waiter(index: int) -> None:
        last = 0
        while True:
            cycle = barrier.wait_next(last)
            if cycle is None:
                return
            seen[index].append(cycle)
            last = cycle

    threads = [threading.Thread(target=waiter, args=(index,)) for index in range(4)]
    for thread in threads:
        thread.start()

    barrier.fire()
    assert _wait_until(lambda: all(len(cycles) == 1 for cycles in seen.values()))
    barrier.fire()
    assert _wait_until(lambda: all(len(cycles) == 2 for cycles in seen.values()))
    stop.trip()
    for thread in threads:
        thread.join(2.0)
        assert not thread.is_alive()

    assert all(cycles == [1, 2] for cycles in seen.values())


def test_late_waiter_picks_up_current_cycle() -> None:
    barrier = CycleBarrier(StopSignal())
    barrier.fire()
    barrier.fire()

    assert barrier.wait_next(0) == 2
    assert barrier.cycle == 2


def test_stop_wins_over_pending_cycle() -> None:
    stop = StopSignal()
    barrier = CycleBarrier(stop)
    barrier.fire()
    stop.trip()

    assert barrier.wait_next(0) is None


def test_stop_wakes_blocked_waiter() -> None:
    stop = StopSignal()
    barrier = CycleBarrier(stop)
    result = []
    thread = threading.Thread(target=lambda: result.append(barrier.wait_next(0)))
    thread.start()

    time.sleep(0.05)
    stop.trip()
    thread.join(2.0)

    assert not thread.is_alive()
    assert result == [None]
