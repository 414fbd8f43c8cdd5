"""Tests for the TUI app and its row formatting."""

import pytest
from conftest import (
    FakeDetailSource,
    FakeSnapshotSource,
    ManualClock,
    example_snapshot,
    make_record,
)

from ram_observer.collector import SystemStats
from ram_observer.config import Config, ExportConfig, RefreshConfig
from ram_observer.refresh import RefreshCoordinator
from ram_observer.tree import MetricKey, build_forest, flatten, walk
from ram_observer.tui.app import (
    ProcessView,
    RamObserverApp,
    column_header,
    format_row,
    header_line,
    name_width,
    tree_label,
)


def _rows():
    forest = build_forest(example_snapshot())
    for node in walk(forest):
        node.expanded = True
    return flatten(forest)


def _app(tmp_path, snapshot=None) -> RamObserverApp:
    coordinator = RefreshCoordinator(
        FakeSnapshotSource(snapshot if snapshot is not None else example_snapshot()),
        FakeDetailSource(),
        RefreshConfig(enrich_pace=0.0),
        clock=ManualClock(),
        sleep=lambda seconds: None,
    )
    config = Config(export=ExportConfig(directory=str(tmp_path)))
    return RamObserverApp(config=config, coordinator=coordinator)


async def _started(pilot) -> RefreshCoordinator:
    """Run one frame so the first snapshot is on screen."""
    await pilot.pause()
    pilot.app._tick()
    await pilot.pause()
    return pilot.app.coordinator


# ─────────────────────────────────────────────────────────────────────────────
# Formatting helpers
# ─────────────────────────────────────────────────────────────────────────────


def test_column_header_marks_sort_key():
    """The sorted column carries a down arrow."""
    header = column_header(MetricKey.SWAP)
    assert "SWAP↓" in header
    assert "RSS↓" not in header
    assert header.rstrip().endswith("TREND")


def test_tree_label():
    """Tree label joins prefix, connector, indicator and name."""
    rows = {row.node.pid: row for row in _rows()}
    assert tree_label(rows[1]) == "▼ launchd"
    assert tree_label(rows[30]) == "│  └─   worker"
    assert tree_label(rows[20]) == "└─   syslogd"


def test_format_row_columns():
    """A formatted row shows the pid, name, sizes, age and trend."""
    row = _rows()[0]
    line = format_row(row, trend="▁█", width=20)
    assert line.startswith(" 1      ")
    assert "launchd" in line
    assert "500KB" in line
    assert "4.9MB" in line
    assert "1m" in line
    assert line.endswith("▁█")


def test_format_row_truncates_long_names():
    """Labels longer than the column are cut to the column width."""
    forest = build_forest([make_record(1, command="/usr/bin/" + "x" * 50)])
    line = format_row(flatten(forest)[0], width=12)
    assert "x" * 10 in line
    assert "x" * 11 not in line


def test_name_width_has_minimum():
    """NAME keeps a usable width on narrow terminals."""
    assert name_width(20) == 12
    assert name_width(200) > name_width(120)


def test_header_line():
    """Header shows used/total, swap and pressure."""
    stats = SystemStats(
        total_bytes=16 * 1024**3,
        used_bytes=8 * 1024**3,
        swap_used_bytes=1024**3,
        pressure_percent=50,
    )
    line = header_line(stats)
    assert "RAM: 8.0GB/16.0GB" in line
    assert "Swap: 1.0GB" in line
    assert "████░░░░ 50%" in line
    assert header_line(None).startswith("RAM: --")


# ─────────────────────────────────────────────────────────────────────────────
# App
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_app_compose(tmp_path):
    """App composes header, process view and status bar."""
    app = _app(tmp_path)
    async with app.run_test() as pilot:
        assert pilot.app.query_one("#header") is not None
        assert pilot.app.query_one("#process-view") is not None
        assert pilot.app.query_one("#status") is not None


@pytest.mark.asyncio
async def test_first_frame_shows_snapshot(tmp_path):
    """The first frame refreshes and titles the view with the row count."""
    app = _app(tmp_path)
    async with app.run_test(size=(120, 30)) as pilot:
        coordinator = await _started(pilot)
        assert coordinator.generation == 1
        view = pilot.app.query_one(ProcessView)
        assert view.border_title == "PROCESSES (1)"
        assert coordinator.view.viewport_height == view.list_height


@pytest.mark.asyncio
async def test_navigation_keys(tmp_path):
    """Arrow and vi keys expand, move and collapse."""
    app = _app(tmp_path)
    async with app.run_test(size=(120, 30)) as pilot:
        coordinator = await _started(pilot)

        await pilot.press("right")
        assert [r.node.pid for r in coordinator.visible_rows()] == [1, 10, 20]

        await pilot.press("j")
        assert coordinator.selected().pid == 10
        await pilot.press("l")
        await pilot.press("down")
        assert coordinator.selected().pid == 30

        await pilot.press("h")
        assert coordinator.selected().pid == 10
        await pilot.press("k")
        assert coordinator.selected().pid == 1


@pytest.mark.asyncio
async def test_sort_and_freeze_keys(tmp_path):
    """s cycles the sort column and f freezes updates."""
    app = _app(tmp_path)
    async with app.run_test(size=(120, 30)) as pilot:
        coordinator = await _started(pilot)

        await pilot.press("s")
        assert coordinator.view.sort_key is MetricKey.VIRT
        assert coordinator.current_message() == "Sorted by VIRT"

        await pilot.press("f")
        assert coordinator.view.frozen
        assert not coordinator.due()
        await pilot.press("f")
        assert not coordinator.view.frozen


@pytest.mark.asyncio
async def test_search_mode_captures_keys(tmp_path):
    """Keys typed after / build the query instead of running bindings."""
    app = _app(tmp_path)
    async with app.run_test(size=(120, 30)) as pilot:
        coordinator = await _started(pilot)
        await pilot.press("right")

        await pilot.press("slash")
        assert coordinator.view.search_mode
        await pilot.press("s", "y", "s", "q")
        assert coordinator.view.query == "sysq"
        assert coordinator.view.sort_key is MetricKey.RSS
        assert not pilot.app._exit

        await pilot.press("backspace")
        assert coordinator.view.query == "sys"
        await pilot.press("enter")
        assert not coordinator.view.search_mode
        assert [r.node.pid for r in coordinator.visible_rows()] == [20]
        view = pilot.app.query_one(ProcessView)
        assert view.border_title == "PROCESSES (1)  filter: sys"


@pytest.mark.asyncio
async def test_search_escape_clears_filter(tmp_path):
    """Escape leaves search mode and drops the query."""
    app = _app(tmp_path)
    async with app.run_test(size=(120, 30)) as pilot:
        coordinator = await _started(pilot)
        await pilot.press("slash", "z", "z")
        assert coordinator.visible_rows() == []
        await pilot.press("escape")
        assert not coordinator.view.search_mode
        assert coordinator.view.query == ""
        assert len(coordinator.visible_rows()) == 1


@pytest.mark.asyncio
async def test_export_key_writes_snapshot(tmp_path):
    """x writes a snapshot to the export directory and reports it."""
    app = _app(tmp_path)
    async with app.run_test(size=(120, 30)) as pilot:
        coordinator = await _started(pilot)
        await pilot.press("x")
        files = list(tmp_path.glob("ram-snapshot-*.json"))
        assert len(files) == 1
        assert coordinator.current_message() == f"Exported to {files[0].name}"


@pytest.mark.asyncio
async def test_export_failure_is_reported(tmp_path):
    """A failed export shows a message instead of crashing."""
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    app = _app(blocker)
    async with app.run_test(size=(120, 30)) as pilot:
        coordinator = await _started(pilot)
        await pilot.press("x")
        assert coordinator.current_message().startswith("Export failed:")


@pytest.mark.asyncio
async def test_empty_snapshot_renders_placeholder(tmp_path):
    """An empty process list renders a placeholder line."""
    app = _app(tmp_path, snapshot=[])
    async with app.run_test(size=(120, 30)) as pilot:
        coordinator = await _started(pilot)
        view = pilot.app.query_one(ProcessView)
        assert "(no processes)" in view.render_rows(coordinator).plain


@pytest.mark.asyncio
async def test_render_rows_only_draws_window(tmp_path):
    """Only rows inside the scroll window are rendered."""
    records = [make_record(1, rss_kb=10_000)] + [
        make_record(pid, 1, rss_kb=1000 - pid) for pid in range(2, 100)
    ]
    app = _app(tmp_path, snapshot=records)
    async with app.run_test(size=(120, 20)) as pilot:
        coordinator = await _started(pilot)
        await pilot.press("right")
        view = pilot.app.query_one(ProcessView)
        lines = view.render_rows(coordinator).plain.splitlines()
        assert len(lines) == view.list_height + 1  # plus column header

        await pilot.press("pagedown")
        assert coordinator.view.cursor == view.list_height
        assert coordinator.view.scroll_offset > 0


@pytest.mark.asyncio
async def test_quit_binding(tmp_path):
    """q quits the app."""
    app = _app(tmp_path)
    async with app.run_test() as pilot:
        await pilot.press("q")
        assert pilot.app._exit
