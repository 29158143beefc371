"""Spawns the device workers and drives the synchronized send cycles."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from ingestbench.config import BenchConfig
from ingestbench.counters import SharedCounters
from ingestbench.cycle import CycleBarrier, StopSignal
from ingestbench.identities import IdentitySourceError
from ingestbench.worker import PublisherWorker, SessionFactory

LOGGER = logging.getLogger(__name__)

WorkerFactory = Callable[[int, str, "CycleCoordinator"], threading.Thread]


@dataclass(frozen=True)
class RunSummary:
    aborted: bool
    requested_devices: int
    spawned: int
    connected: int
    cycles: int
    duration: float
    sent_points: int
    sent_messages: int
    exited: int
    started_at: Optional[datetime] = None

    @property
    def exited_percent(self) -> float:
        return self.exited * 100.0 / self.spawned if self.spawned else 0.0

    @property
    def connected_percent(self) -> float:
        return self.connected * 100.0 / self.spawned if self.spawned else 0.0

    @property
    def points_per_second(self) -> float:
        return self.sent_points / self.duration if self.duration > 0 else 0.0

    @property
    def messages_per_second(self) -> float:
        return self.sent_messages / self.duration if self.duration > 0 else 0.0

    @property
    def ms_per_point(self) -> Optional[float]:
        if not self.sent_points:
            return None
        return self.duration * 1000 / self.sent_points

    def report_lines(self) -> List[str]:
        lines = [
            "========== Test report ==========",
            f"Total duration: {self.duration:.3f}s",
            f"Cycles: {self.cycles}",
            f"Exited devices: {self.exited} ({self.exited_percent:.1f}%)",
            f"Total points sent: {self.sent_points}",
            f"Total messages sent: {self.sent_messages}",
            f"Average throughput: {self.points_per_second:.2f} points/s "
            f"({self.messages_per_second:.2f} messages/s)",
        ]
        if self.ms_per_point is not None:
            lines.append(f"Average time per point: {self.ms_per_point:.3f} ms")
        lines.append("=================================")
        return lines


class CycleSchedule:
    """Absolute send targets: each target is the previous target plus the interval.

    Targets never depend on when the previous cycle actually fired, so an
    overrun is absorbed by the following cycles instead of shifting all of them.
    """

    def __init__(self, start: float, interval: float) -> None:
        self.interval = interval
        self._target = start

    @property
    def target(self) -> float:
        return self._target

    def next_target(self) -> float:
        self._target += self.interval
        return self._target

    @staticmethod
    def delay_until(target: float, now: float) -> float:
        return max(0.0, target - now)


def _default_worker(index: int, identity: str, coordinator: "CycleCoordinator") -> threading.Thread:
    return PublisherWorker(
        identity=identity,
        index=index,
        config=coordinator.config,
        barrier=coordinator.barrier,
        stop_signal=coordinator.stop_signal,
        counters=coordinator.counters,
        session_factory=coordinator.session_factory,
    )


class CycleCoordinator:
    """Owns the device workers, the cycle barrier and the global cadence."""

    def __init__(
        self,
        config: BenchConfig,
        identities: Sequence[str],
        counters: SharedCounters,
        stop_signal: Optional[StopSignal] = None,
        session_factory: Optional[SessionFactory] = None,
        worker_factory: Optional[WorkerFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Optional[bool]]] = None,
    ) -> None:
        self.config = config
        self.identities = list(identities)
        self.counters = counters
        self.stop_signal = stop_signal or StopSignal()
        self.barrier = CycleBarrier(self.stop_signal)
        self.session_factory = session_factory
        self._worker_factory = worker_factory or _default_worker
        self._clock = clock
        self._sleep = sleep or self.stop_signal.sleep
        self.workers: List[threading.Thread] = []
        self.effective_start: Optional[float] = None
        self.started_at: Optional[datetime] = None

    def spawn(self) -> List[threading.Thread]:
        if not self.identities:
            raise IdentitySourceError("No device identities available")
        requested = self.config.device_count
        available = len(self.identities)
        LOGGER.info("Available devices: %d", available)
        if available < requested:
            LOGGER.warning(
                "Available devices (%d) fewer than requested (%d), using %d",
                available,
                requested,
                available,
            )
        for index, identity in enumerate(self.identities[: min(requested, available)]):
            worker = self._worker_factory(index, identity, self)
            self.workers.append(worker)
            worker.start()
        return self.workers

    def run(self) -> RunSummary:
        self.spawn()
        spawned = len(self.workers)

        self._sleep(self.config.connect_wait)
        connected = self.counters.connected
        LOGGER.info(
            "Connected devices: %d (%.1f%%)",
            connected,
            connected * 100.0 / spawned if spawned else 0.0,
        )
        if connected == 0:
            LOGGER.error(
                "No device connected, terminating test after %.1fs settle wait",
                self.config.connect_wait,
            )
            self.stop()
            self.drain()
            return self._summary(aborted=True, duration=0.0)

        self._run_cycles()
        stopped_at = self._clock()
        self.stop()
        duration = stopped_at - self.effective_start if self.effective_start is not None else 0.0
        LOGGER.info("Waiting for all devices to exit...")
        self.drain()
        summary = self._summary(aborted=False, duration=duration)
        for line in summary.report_lines():
            LOGGER.info(line)
        return summary

    def _run_cycles(self) -> int:
        total = self.config.cycle_count
        schedule = CycleSchedule(self._clock(), self.config.interval)
        for cycle in range(1, total + 1):
            target = schedule.next_target()
            if self._sleep(schedule.delay_until(target, self._clock())):
                LOGGER.warning("Stop requested, ending after %d/%d cycles", cycle - 1, total)
                return self.barrier.cycle
            self.barrier.fire()
            if self.effective_start is None:
                self.effective_start = self._clock()
                self.started_at = datetime.now(timezone.utc)
            if self.config.log_cycles:
                self._log_cycle(cycle, total)

        if total:
            # the last cycle gets one interval to complete before workers are stopped
            self._sleep(schedule.delay_until(schedule.next_target(), self._clock()))
        return self.barrier.cycle

    def _log_cycle(self, cycle: int, total: int) -> None:
        points = self.counters.sent_points
        start = self.effective_start if self.effective_start is not None else self._clock()
        elapsed = self._clock() - start
        rate = points / elapsed if elapsed > 0 else 0.0
        LOGGER.info(
            "Cycle %d/%d: sent points %d (%.1f points/s)", cycle, total, points, rate,
            extra={"cycle": cycle},
        )

    def stop(self) -> None:
        self.stop_signal.trip()

    def drain(self) -> None:
        for worker in self.workers:
            worker.join()

    def _summary(self, aborted: bool, duration: float) -> RunSummary:
        snapshot = self.counters.snapshot()
        return RunSummary(
            aborted=aborted,
            requested_devices=self.config.device_count,
            spawned=len(self.workers),
            connected=snapshot.connected,
            cycles=self.barrier.cycle,
            duration=duration,
            sent_points=snapshot.sent_points,
            sent_messages=snapshot.sent_messages,
            exited=snapshot.exited,
            started_at=self.started_at,
        )
