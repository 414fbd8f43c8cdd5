"""Data sources: process snapshots, per-process memory details, system totals.

Every collector degrades instead of raising. A missing tool, a timeout or
garbled output is logged and turned into an empty or zero result, and the
refresh cycle treats that as "no data this cycle".
"""

from __future__ import annotations

import re
import subprocess
import sys
from dataclasses import asdict, dataclass

import psutil
import structlog

from ram_observer.process import ZERO_DETAILS, DetailMetrics, ProcessRecord

log = structlog.get_logger()

PS_COMMAND = ["ps", "-axo", "pid,ppid,rss,vsz,etime,lstart,command"]
# pid ppid rss vsz etime + 5 lstart tokens + at least one command token
MIN_PS_TOKENS = 11

_FOOTPRINT_COMPRESSED = re.compile(r"(\d+(?:\.\d+)?)\s*(KB|MB|GB)\s+compressed", re.IGNORECASE)
_FOOTPRINT_SWAPPED = re.compile(r"(\d+(?:\.\d+)?)\s*(KB|MB|GB)\s+swapped", re.IGNORECASE)
_PRESSURE_FREE = re.compile(r"System-wide memory free percentage:\s+(\d+)%")

_UNIT_BYTES = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}


def _run(args: list[str], timeout: float) -> subprocess.CompletedProcess[bytes] | None:
    """Run a command, returning None if it is missing or times out."""
    try:
        return subprocess.run(args, capture_output=True, timeout=timeout)
    except (subprocess.TimeoutExpired, OSError) as e:
        log.warning("command_failed", command=args[0], error=str(e))
        return None


def _is_darwin() -> bool:
    return sys.platform == "darwin"


class ProcessCollector:
    """Snapshot source backed by `ps`."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def collect(self) -> list[ProcessRecord]:
        """Take a process snapshot. Returns [] if ps fails."""
        result = _run(PS_COMMAND, self.timeout)
        if result is None:
            return []
        if result.returncode != 0:
            log.warning(
                "ps_failed",
                returncode=result.returncode,
                stderr=result.stderr.decode("utf-8", errors="replace").strip()[:200],
            )
            return []
        # Command lines may contain arbitrary bytes
        return self.parse(result.stdout.decode("utf-8", errors="replace"))

    def parse(self, output: str) -> list[ProcessRecord]:
        """Parse ps output, skipping the header and malformed lines."""
        lines = output.strip().splitlines()
        records = []
        dropped = 0
        for line in lines[1:]:
            record = self._parse_line(line)
            if record is None:
                dropped += 1
            else:
                records.append(record)
        if dropped:
            log.debug("ps_lines_dropped", count=dropped)
        return records

    @staticmethod
    def _parse_line(line: str) -> ProcessRecord | None:
        tokens = line.split()
        if len(tokens) < MIN_PS_TOKENS:
            return None
        try:
            pid, ppid, rss_kb, vsz_kb = (int(t) for t in tokens[:4])
        except ValueError:
            return None
        return ProcessRecord(
            pid=pid,
            ppid=ppid,
            rss_kb=rss_kb,
            vsz_kb=vsz_kb,
            command=" ".join(tokens[10:]),
            elapsed=tokens[4],
            started=" ".join(tokens[5:10]),
        )


def parse_footprint(output: str) -> DetailMetrics:
    """Extract compressed and swapped sizes from `footprint` output."""
    compressed = swapped = 0
    for line in output.splitlines():
        if match := _FOOTPRINT_COMPRESSED.search(line):
            compressed = _to_bytes(match.group(1), match.group(2))
        if match := _FOOTPRINT_SWAPPED.search(line):
            swapped = _to_bytes(match.group(1), match.group(2))
    return DetailMetrics(compressed_bytes=compressed, swap_bytes=swapped)


def _to_bytes(value: str, unit: str) -> int:
    return int(float(value) * _UNIT_BYTES[unit.upper()])


class MemoryDetailCollector:
    """Detail source for compressed and swapped memory of one process.

    Uses `footprint` on macOS. Elsewhere falls back to psutil, which reports
    swap (Linux) but has no notion of compressed memory.
    """

    def __init__(self, timeout: float = 10.0, use_footprint: bool | None = None) -> None:
        self.timeout = timeout
        self.use_footprint = _is_darwin() if use_footprint is None else use_footprint

    def collect_for(self, pid: int) -> DetailMetrics:
        """Fetch detail metrics. Returns zeros on any failure."""
        if self.use_footprint:
            result = _run(["footprint", str(pid)], self.timeout)
            if result is None:
                return ZERO_DETAILS
            return parse_footprint(result.stdout.decode("utf-8", errors="replace"))

        try:
            info = psutil.Process(pid).memory_full_info()
        except (psutil.Error, OSError) as e:
            log.debug("memory_detail_failed", pid=pid, error=str(e))
            return ZERO_DETAILS
        return DetailMetrics(compressed_bytes=0, swap_bytes=getattr(info, "swap", 0))


@dataclass
class SystemStats:
    """System-wide memory summary for the header."""

    total_bytes: int = 0
    used_bytes: int = 0
    free_bytes: int = 0
    active_bytes: int = 0
    inactive_bytes: int = 0
    wired_bytes: int = 0
    swap_total_bytes: int = 0
    swap_used_bytes: int = 0
    pressure_level: str = "normal"  # normal, warn, critical
    pressure_percent: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def pressure_level(percent: float) -> str:
    """Classify memory pressure: critical above 80, warn above 60."""
    if percent > 80:
        return "critical"
    if percent > 60:
        return "warn"
    return "normal"


def parse_memory_pressure(output: str) -> int | None:
    """Used-memory percentage from `memory_pressure` output, or None."""
    match = _PRESSURE_FREE.search(output)
    if match is None:
        return None
    return 100 - int(match.group(1))


class SystemStatsCollector:
    """System summary source backed by psutil (plus memory_pressure on macOS)."""

    def __init__(self, timeout: float = 10.0, use_memory_pressure: bool | None = None) -> None:
        self.timeout = timeout
        self.use_memory_pressure = (
            _is_darwin() if use_memory_pressure is None else use_memory_pressure
        )

    def collect(self) -> SystemStats:
        """Collect memory totals and pressure. Returns zeros on failure."""
        try:
            vm = psutil.virtual_memory()
            swap = psutil.swap_memory()
        except (psutil.Error, OSError) as e:
            log.warning("system_stats_failed", error=str(e))
            return SystemStats()

        percent = None
        if self.use_memory_pressure:
            result = _run(["memory_pressure"], self.timeout)
            if result is not None:
                percent = parse_memory_pressure(result.stdout.decode("utf-8", errors="replace"))
        if percent is None:
            percent = round(vm.percent)

        return SystemStats(
            total_bytes=vm.total,
            used_bytes=vm.used,
            free_bytes=vm.available,
            active_bytes=getattr(vm, "active", 0),
            inactive_bytes=getattr(vm, "inactive", 0),
            wired_bytes=getattr(vm, "wired", 0),
            swap_total_bytes=swap.total,
            swap_used_bytes=swap.used,
            pressure_level=pressure_level(percent),
            pressure_percent=percent,
        )
