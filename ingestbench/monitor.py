"""Background delivery monitor comparing sent counters against stored records."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ingestbench.config import BenchConfig
from ingestbench.counters import CounterSnapshot, SharedCounters
from ingestbench.store import RecordStore, StoreError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorBaseline:
    stored: int
    counters: CounterSnapshot
    at: float


@dataclass(frozen=True)
class IntervalSnapshot:
    stored: int
    counters: CounterSnapshot
    at: float


def delivery_ratio(stored_delta: int, sent_delta: int) -> Optional[float]:
    """Stored growth over sent growth in percent, clamped to [0, 100]; None without sends."""
    if sent_delta <= 0:
        return None
    ratio = stored_delta * 100.0 / sent_delta
    return min(100.0, max(0.0, ratio))


def format_elapsed(seconds: float) -> str:
    mins, sec = divmod(int(round(seconds)), 60)
    hrs, mins = divmod(mins, 60)
    if hrs:
        return f"{hrs}h {mins}m {sec}s"
    if mins:
        return f"{mins}m {sec}s"
    return f"{sec}s"


@dataclass(frozen=True)
class MonitorReport:
    elapsed: float
    interval: float
    sent_points: int
    sent_points_delta: int
    sent_messages: int
    sent_messages_delta: int
    stored: int
    stored_delta: int
    total_sent_points: int
    total_sent_messages: int
    total_stored: int
    points_per_message: int
    advisory_threshold: float

    @staticmethod
    def _rate(count: int, seconds: float) -> float:
        return count / seconds if seconds > 0 else 0.0

    @property
    def sent_rate(self) -> float:
        return self._rate(self.sent_points_delta, self.interval)

    @property
    def message_rate(self) -> float:
        return self._rate(self.sent_messages_delta, self.interval)

    @property
    def stored_rate(self) -> float:
        return self._rate(self.stored_delta, self.interval)

    @property
    def total_sent_rate(self) -> float:
        return self._rate(self.total_sent_points, self.elapsed)

    @property
    def total_stored_rate(self) -> float:
        return self._rate(self.total_stored, self.elapsed)

    @property
    def interval_ratio(self) -> Optional[float]:
        return delivery_ratio(self.stored_delta, self.sent_points_delta)

    @property
    def total_ratio(self) -> Optional[float]:
        """Rows stored since the baseline over every point sent so far."""
        return delivery_ratio(self.total_stored, self.sent_points)

    @property
    def theoretical_messages(self) -> float:
        return self.total_sent_points / self.points_per_message

    @property
    def message_deviation(self) -> Optional[float]:
        """Percent gap between points-derived and counted messages."""
        if not self.total_sent_messages:
            return None
        return (
            (self.theoretical_messages - self.total_sent_messages)
            * 100.0
            / self.total_sent_messages
        )

    @property
    def advisory(self) -> bool:
        ratio = self.total_ratio
        return ratio is not None and ratio > self.advisory_threshold

    def lines(self) -> List[str]:
        lines = [
            "========== Monitor report ==========",
            f"Running for: {format_elapsed(self.elapsed)}",
            f"Interval ({self.interval:.1f}s):",
            f"  - sent points: {self.sent_points} (+{self.sent_points_delta}), "
            f"rate {self.sent_rate:.1f} points/s",
            f"  - sent messages: {self.sent_messages} (+{self.sent_messages_delta}), "
            f"rate {self.message_rate:.1f} messages/s",
            f"  - stored records: {self.stored} (+{self.stored_delta}), "
            f"rate {self.stored_rate:.1f} records/s",
        ]
        if self.interval_ratio is not None:
            lines.append(
                f"  - interval write ratio: {self.interval_ratio:.1f}% (stored delta / sent delta)"
            )
        lines += [
            "Cumulative:",
            f"  - total sent points: {self.total_sent_points}, "
            f"average rate {self.total_sent_rate:.1f} points/s",
            f"  - total stored records: {self.total_stored}, "
            f"average rate {self.total_stored_rate:.1f} records/s",
        ]
        if self.total_ratio is not None:
            lines.append(
                f"  - overall write ratio: {self.total_ratio:.1f}% (stored since start / sent)"
            )
            if self.advisory:
                lines.append("  - note: the database may still be processing earlier data")
        deviation = self.message_deviation
        lines.append(
            f"  - theoretical messages: {self.theoretical_messages:.1f} "
            f"(points / {self.points_per_message}), actual: {self.total_sent_messages}, "
            + (f"deviation: {deviation:+.1f}%" if deviation is not None else "deviation: n/a")
        )
        lines.append("====================================")
        return lines


def compute_report(
    baseline: MonitorBaseline,
    previous: IntervalSnapshot,
    counters: CounterSnapshot,
    stored: int,
    now: float,
    points_per_message: int,
    advisory_threshold: float = 95.0,
) -> MonitorReport:
    return MonitorReport(
        elapsed=now - baseline.at,
        interval=now - previous.at,
        sent_points=counters.sent_points,
        sent_points_delta=counters.sent_points - previous.counters.sent_points,
        sent_messages=counters.sent_messages,
        sent_messages_delta=counters.sent_messages - previous.counters.sent_messages,
        stored=stored,
        stored_delta=stored - previous.stored,
        total_sent_points=counters.sent_points - baseline.counters.sent_points,
        total_sent_messages=counters.sent_messages - baseline.counters.sent_messages,
        total_stored=stored - baseline.stored,
        points_per_message=points_per_message,
        advisory_threshold=advisory_threshold,
    )


class DeliveryMonitor(threading.Thread):
    """Polls the record store on its own timer and logs delivery statistics.

    ``ready`` is set once the baseline is captured, or immediately when the
    store is unreachable, in which case the monitor stays idle for the rest
    of the process. A failed count on a later tick is logged and skipped; the
    baseline is never re-captured.
    """

    def __init__(
        self,
        config: BenchConfig,
        counters: SharedCounters,
        store: RecordStore,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(daemon=True, name="delivery-monitor")
        self.config = config
        self.counters = counters
        self.store = store
        self._clock = clock
        self.ready = threading.Event()
        self._stop_event = threading.Event()
        self.baseline: Optional[MonitorBaseline] = None
        self.last_report: Optional[MonitorReport] = None
        self.skipped_ticks = 0
        self._last: Optional[IntervalSnapshot] = None

    @property
    def degraded(self) -> bool:
        return self.ready.is_set() and self.baseline is None

    def initialize(self) -> bool:
        try:
            self.store.open()
            stored = self.store.count()
        except StoreError as exc:
            LOGGER.error("Monitor: database unavailable, delivery monitoring disabled: %s", exc)
            self.ready.set()
            return False

        now = self._clock()
        snapshot = self.counters.snapshot()
        self.baseline = MonitorBaseline(stored=stored, counters=snapshot, at=now)
        self._last = IntervalSnapshot(stored=stored, counters=snapshot, at=now)
        LOGGER.info(
            "Monitor: connected to database, checking %s every %.1fs; current records: %d",
            self.store.table,
            self.config.monitor_interval,
            stored,
        )
        self.ready.set()
        return True

    def tick(self) -> Optional[MonitorReport]:
        if self.baseline is None or self._last is None:
            return None
        snapshot = self.counters.snapshot()
        try:
            stored = self.store.count()
        except StoreError as exc:
            self.skipped_ticks += 1
            LOGGER.warning("Monitor: record count failed, skipping this interval: %s", exc)
            return None

        now = self._clock()
        report = compute_report(
            self.baseline,
            self._last,
            snapshot,
            stored,
            now,
            self.config.points_per_message,
            self.config.advisory_threshold,
        )
        self._last = IntervalSnapshot(stored=stored, counters=snapshot, at=now)
        self.last_report = report
        for line in report.lines():
            LOGGER.info(line)
        return report

    def run(self) -> None:
        try:
            if not self.initialize():
                return
            while not self._stop_event.wait(self.config.monitor_interval):
                self.tick()
        finally:
            self.store.close()

    def stop(self) -> None:
        self._stop_event.set()
