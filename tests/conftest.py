"""Shared test fixtures for ram-observer."""

from collections.abc import Iterable
from pathlib import Path

import pytest

from ram_observer.config import Config, RefreshConfig
from ram_observer.process import DetailMetrics, ProcessRecord
from ram_observer.refresh import RefreshCoordinator


def make_record(
    pid: int,
    ppid: int = 0,
    rss_kb: int = 100,
    vsz_kb: int | None = None,
    command: str | None = None,
    elapsed: str = "01:00",
    started: str = "Wed Jan 28 17:21:44 2026",
) -> ProcessRecord:
    """Create a ProcessRecord for testing."""
    return ProcessRecord(
        pid=pid,
        ppid=ppid,
        rss_kb=rss_kb,
        vsz_kb=vsz_kb if vsz_kb is not None else rss_kb * 10,
        command=command if command is not None else f"/usr/bin/proc{pid}",
        elapsed=elapsed,
        started=started,
    )


def example_snapshot() -> list[ProcessRecord]:
    """Four processes: 1 -> {10 -> {30}, 20}."""
    return [
        make_record(1, 0, rss_kb=500, command="/sbin/launchd"),
        make_record(10, 1, rss_kb=300, command="/usr/libexec/logd"),
        make_record(20, 1, rss_kb=200, command="/usr/sbin/syslogd"),
        make_record(30, 10, rss_kb=100, command="/usr/bin/worker --verbose"),
    ]


class FakeSnapshotSource:
    """Snapshot source returning queued snapshots, then repeating the last."""

    def __init__(self, *snapshots: Iterable[ProcessRecord]) -> None:
        self.snapshots = [list(s) for s in snapshots] or [[]]
        self.calls = 0

    def push(self, snapshot: Iterable[ProcessRecord]) -> None:
        self.snapshots.append(list(snapshot))

    def collect(self) -> list[ProcessRecord]:
        index = min(self.calls, len(self.snapshots) - 1)
        self.calls += 1
        return list(self.snapshots[index])


class FakeDetailSource:
    """Detail source answering from a dict and remembering requested pids."""

    def __init__(self, details: dict[int, DetailMetrics] | None = None) -> None:
        self.details = details or {}
        self.requested: list[int] = []

    def collect_for(self, pid: int) -> DetailMetrics:
        self.requested.append(pid)
        return self.details.get(pid, DetailMetrics())


class ManualClock:
    """Clock advanced by hand."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def snapshot_source() -> FakeSnapshotSource:
    return FakeSnapshotSource(example_snapshot())


@pytest.fixture
def detail_source() -> FakeDetailSource:
    return FakeDetailSource()


@pytest.fixture
def coordinator(snapshot_source, detail_source, clock) -> RefreshCoordinator:
    """Coordinator with fake sources, a manual clock and no pacing delay."""
    return RefreshCoordinator(
        snapshot_source,
        detail_source,
        RefreshConfig(enrich_pace=0.0),
        clock=clock,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point Path.home() at a temporary directory."""
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def default_config() -> Config:
    return Config()
