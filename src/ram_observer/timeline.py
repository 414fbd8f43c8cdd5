"""Bounded per-process metric history for trend glyphs.

Each pid keeps at most `capacity` (timestamp, value) samples, oldest first.
Pids missing from the latest snapshot are evicted.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ram_observer.process import ProcessRecord

SPARK_CHARS = "▁▂▃▄▅▆▇█"


@dataclass(frozen=True)
class Sample:
    """Single metric sample for one process."""

    timestamp: float
    value: float


def sparkline(values: Sequence[float], width: int = 12) -> str:
    """Render the last `width` values as block glyphs.

    Values are scaled linearly between the window minimum and maximum. A
    window with no variation renders as the lowest glyph repeated. Fewer than
    two values render as an empty string.
    """
    window = list(values)[-width:]
    if len(window) < 2:
        return ""
    low, high = min(window), max(window)
    span = high - low
    if span == 0:
        return SPARK_CHARS[0] * len(window)
    top = len(SPARK_CHARS) - 1
    return "".join(SPARK_CHARS[round((v - low) / span * top)] for v in window)


class TimelineLedger:
    """Per-pid ring buffers of metric samples.

    Stores up to `capacity` samples per pid (default 60, two minutes at the
    default refresh interval).
    """

    def __init__(self, capacity: int = 60) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._series: dict[int, deque[Sample]] = {}

    def __len__(self) -> int:
        """Return number of tracked pids."""
        return len(self._series)

    def __contains__(self, pid: object) -> bool:
        return pid in self._series

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, pid: int, timestamp: float, value: float) -> None:
        """Append a sample, dropping the oldest once the pid is at capacity."""
        series = self._series.get(pid)
        if series is None:
            series = self._series[pid] = deque(maxlen=self._capacity)
        series.append(Sample(timestamp=timestamp, value=value))

    def evict(self, live_pids: Iterable[int]) -> int:
        """Forget every pid not in `live_pids`. Returns the number removed."""
        live = set(live_pids)
        stale = [pid for pid in self._series if pid not in live]
        for pid in stale:
            del self._series[pid]
        return len(stale)

    def record_snapshot(
        self,
        records: Iterable[ProcessRecord],
        timestamp: float,
        metric: str = "rss_kb",
    ) -> None:
        """Record `metric` once per pid, then evict absent pids.

        A pid listed twice in one snapshot keeps its last record, as in
        build_forest.
        """
        latest = {record.pid: getattr(record, metric) for record in records}
        for pid, value in latest.items():
            self.record(pid, timestamp, value)
        self.evict(latest)

    def samples(self, pid: int) -> list[Sample]:
        """Copy of a pid's samples, oldest first. Unknown pids give []."""
        return list(self._series.get(pid, ()))

    def values(self, pid: int) -> list[float]:
        return [sample.value for sample in self._series.get(pid, ())]

    def trend(self, pid: int, width: int = 12) -> str:
        """Sparkline of a pid's most recent values."""
        return sparkline(self.values(pid), width)
