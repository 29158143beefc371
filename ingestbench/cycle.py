"""Cycle broadcast and cooperative stop primitives."""
from __future__ import annotations

import threading
from typing import Callable, List, Optional


class StopSignal:
    """Coordinate graceful shutdown between the coordinator, workers and signal handlers."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], None]] = []

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def sleep(self, timeout: float) -> bool:
        """Sleep for up to timeout seconds. Returns True if stop was triggered."""
        if timeout <= 0:
            return self.is_set()
        return self.wait(timeout)

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once when the signal trips (immediately if it already has)."""
        with self._lock:
            if not self._event.is_set():
                self._listeners.append(callback)
                return
        callback()

    def trip(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            listeners = list(self._listeners)
            self._listeners.clear()
        for callback in listeners:
            callback()


class CycleBarrier:
    """Broadcast keyed by a monotonically increasing cycle number.

    ``fire`` advances the cycle number by one and wakes every waiter. A worker
    remembers the last cycle it acted on and waits for a larger one, so each
    broadcast releases it at most once, and a worker that arrives after a
    broadcast still picks up the current cycle instead of waiting for the
    next one. Tripping the stop signal wakes every waiter and always wins
    over a pending cycle.
    """

    def __init__(self, stop_signal: StopSignal) -> None:
        self._condition = threading.Condition()
        self._cycle = 0
        self._stop_signal = stop_signal
        stop_signal.add_listener(self._wake_all)

    @property
    def cycle(self) -> int:
        with self._condition:
            return self._cycle

    def fire(self) -> int:
        with self._condition:
            self._cycle += 1
            self._condition.notify_all()
            return self._cycle

    def wait_next(self, last_seen: int) -> Optional[int]:
        """Block until a cycle newer than ``last_seen`` fires; ``None`` once stopped."""
        with self._condition:
            self._condition.wait_for(
                lambda: self._stop_signal.is_set() or self._cycle > last_seen
            )
            if self._stop_signal.is_set():
                return None
            return self._cycle

    def _wake_all(self) -> None:
        with self._condition:
            self._condition.notify_all()
