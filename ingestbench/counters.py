"""Process-wide run counters shared by workers, coordinator and monitor."""
from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class CounterSnapshot:
    connected: int = 0
    sent_points: int = 0
    sent_messages: int = 0
    exited: int = 0


class SharedCounters:
    """Monotonic counters; the lock is only ever held for the increment itself."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connected = 0
        self._sent_points = 0
        self._sent_messages = 0
        self._exited = 0

    def record_connected(self) -> None:
        with self._lock:
            self._connected += 1

    def record_sent(self, points: int) -> None:
        if points < 1:
            raise ValueError("A sent message carries at least one data point")
        with self._lock:
            self._sent_points += points
            self._sent_messages += 1

    def record_exited(self) -> None:
        with self._lock:
            self._exited += 1

    @property
    def connected(self) -> int:
        with self._lock:
            return self._connected

    @property
    def sent_points(self) -> int:
        with self._lock:
            return self._sent_points

    @property
    def exited(self) -> int:
        with self._lock:
            return self._exited

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            return CounterSnapshot(
                connected=self._connected,
                sent_points=self._sent_points,
                sent_messages=self._sent_messages,
                exited=self._exited,
            )
