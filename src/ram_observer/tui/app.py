"""Live process-tree dashboard for ram-observer.

The app owns one RefreshCoordinator and drives it from a single frame
timer: drain enrichment results, refresh when due, redraw. Only the rows
inside the scroll window are rendered on each frame.
"""

from typing import Any

import structlog
from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.css.query import NoMatches
from textual.widgets import Static

from ram_observer.collector import (
    MemoryDetailCollector,
    ProcessCollector,
    SystemStats,
    SystemStatsCollector,
)
from ram_observer.config import Config
from ram_observer.export import export_snapshot
from ram_observer.formatting import bytes_human, format_age, kb_human, pressure_bar
from ram_observer.refresh import RefreshCoordinator
from ram_observer.timeline import TimelineLedger
from ram_observer.tree import MetricKey, VisibleRow

log = structlog.get_logger()

KEY_HELP = (
    " ↑↓/jk Navigate  ←→/hl Collapse/Expand  f Freeze  / Search  s Sort  x Export  q Quit"
)

# PID, RSS, VIRT, COMP, SWAP, AGE widths; NAME takes what is left
_PID_WIDTH = 7
_METRIC_WIDTH = 8
_MIN_NAME_WIDTH = 12


def name_width(total_width: int, trend_width: int = 12) -> int:
    """Width of the NAME column for a given line width."""
    fixed = 1 + _PID_WIDTH + 1 + 5 * (_METRIC_WIDTH + 1) + 2 + trend_width
    return max(_MIN_NAME_WIDTH, total_width - fixed - 1)


def format_columns(
    pid: str,
    name: str,
    rss: str,
    virt: str,
    comp: str,
    swap: str,
    age: str,
    trend: str,
    width: int = 24,
) -> str:
    """Lay out one table line."""
    return (
        f" {pid:<{_PID_WIDTH}} {name:<{width}.{width}}"
        f" {rss:>{_METRIC_WIDTH}} {virt:>{_METRIC_WIDTH}} {comp:>{_METRIC_WIDTH}}"
        f" {swap:>{_METRIC_WIDTH}} {age:>{_METRIC_WIDTH}}  {trend}"
    )


def column_header(sort_key: MetricKey, width: int = 24) -> str:
    """Header line with the sorted column marked by an arrow."""
    labels = {key: key.label + ("↓" if key is sort_key else "") for key in MetricKey}
    return format_columns(
        "PID",
        "NAME",
        labels[MetricKey.RSS],
        labels[MetricKey.VIRT],
        labels[MetricKey.COMP],
        labels[MetricKey.SWAP],
        labels[MetricKey.AGE],
        "TREND",
        width=width,
    )


def tree_label(row: VisibleRow) -> str:
    """Prefix, connector, expand indicator and name for the NAME column."""
    return f"{row.prefix}{row.connector}{row.indicator}{row.node.name}"


def format_row(row: VisibleRow, trend: str = "", width: int = 24) -> str:
    """Plain-text table line for one visible row."""
    node = row.node
    return format_columns(
        str(node.pid),
        tree_label(row),
        kb_human(node.rss_kb),
        kb_human(node.vsz_kb),
        bytes_human(node.compressed_bytes),
        bytes_human(node.swap_bytes),
        format_age(node.age_seconds),
        trend,
        width=width,
    )


def header_line(stats: SystemStats | None) -> str:
    """Memory summary shown in the header."""
    if stats is None:
        return "RAM: --  Swap: --  Pressure: --"
    used = bytes_human(stats.used_bytes)
    total = bytes_human(stats.total_bytes)
    swap = bytes_human(stats.swap_used_bytes)
    bar = pressure_bar(stats.pressure_percent, width=8)
    return f"RAM: {used}/{total}  Swap: {swap}  Pressure: {bar} {stats.pressure_percent}%"


class HeaderBar(Static):
    """System memory summary with a LIVE/FROZEN badge."""

    DEFAULT_CSS = """
    HeaderBar {
        height: 3;
        padding: 0 1;
        border: solid green;
        border-title-align: left;
    }
    """

    def on_mount(self) -> None:
        self.border_title = "RAM OBSERVER"
        self.update_stats(None, frozen=False)

    def update_stats(self, stats: SystemStats | None, frozen: bool) -> None:
        """Redraw the summary and border color."""
        pressure = self.app.config.tui.colors.pressure
        level = stats.pressure_level if stats is not None else "normal"
        color = getattr(pressure, level, pressure.normal)
        self.styles.border = ("solid", color)
        self.border_subtitle = "FROZEN" if frozen else "LIVE"

        text = Text(header_line(stats), style="bold")
        badge = " FROZEN " if frozen else "  LIVE  "
        text.append("  ")
        text.append(badge, style="bold reverse yellow" if frozen else "bold reverse green")
        self.update(text)


class ProcessView(Static):
    """Tree table. Renders only the rows inside the scroll window."""

    DEFAULT_CSS = """
    ProcessView {
        height: 1fr;
        border: solid $primary;
        border-title-align: left;
    }
    """

    def on_mount(self) -> None:
        self.border_title = "PROCESSES"

    @property
    def list_height(self) -> int:
        """Rows available below the column header."""
        return max(1, self.content_size.height - 1)

    def _row_style(self, row: VisibleRow, selected: bool) -> str:
        tui = self.app.config.tui
        rows = tui.colors.rows
        if selected:
            return rows.selected
        if row.node.rss_kb > tui.critical_rss_kb:
            return rows.critical
        if row.node.rss_kb > tui.warn_rss_kb:
            return rows.warn
        return rows.normal

    def render_rows(self, coordinator: RefreshCoordinator) -> Text:
        """Build the visible window as Rich text."""
        config = self.app.config
        view = coordinator.view
        rows = coordinator.visible_rows()
        width = name_width(self.content_size.width, config.timeline.sparkline_width)
        colors = config.tui.colors.rows

        text = Text(no_wrap=True, overflow="ellipsis")
        text.append(column_header(view.sort_key, width), style="bold dim")

        if not rows:
            text.append("\n  (no processes)", style="dim")
            return text

        window = rows[view.scroll_offset : view.scroll_offset + self.list_height]
        for offset, row in enumerate(window):
            index = view.scroll_offset + offset
            selected = index == view.cursor
            trend = coordinator.ledger.trend(row.node.pid, config.timeline.sparkline_width)
            line = Text(format_row(row, trend, width), style=self._row_style(row, selected))
            if not selected:
                # Tree guides span from after the PID column to the indicator
                guide_start = 1 + _PID_WIDTH + 1
                guide_end = guide_start + min(len(row.prefix) + len(row.connector), width)
                line.stylize(colors.tree, guide_start, guide_end)
                line.stylize(colors.pid, 1, 1 + _PID_WIDTH)
                trend_start = len(line.plain) - len(trend)
                line.stylize(colors.trend, trend_start)
            text.append("\n")
            text.append_text(line)
        return text

    def redraw(self, coordinator: RefreshCoordinator) -> None:
        rows = coordinator.visible_rows()
        query = coordinator.view.query
        title = f"PROCESSES ({len(rows)})"
        if query:
            title += f"  filter: {query}"
        self.border_title = title
        self.update(self.render_rows(coordinator))


class StatusBar(Static):
    """Key help or search prompt, then the status message or column hint."""

    DEFAULT_CSS = """
    StatusBar {
        height: 2;
        padding: 0 0;
    }
    """

    def redraw(self, coordinator: RefreshCoordinator) -> None:
        view = coordinator.view
        text = Text(no_wrap=True, overflow="ellipsis")
        if view.search_mode:
            text.append(f" /{view.query}█", style="bold cyan")
        else:
            text.append(KEY_HELP, style="bold")

        text.append("\n")
        message = coordinator.current_message()
        if message:
            text.append(f" {message}", style="yellow")
        else:
            selected = coordinator.selected()
            hint = view.sort_key.hint
            if selected is not None and selected.parent is not None:
                hint = f"{hint}  [{selected.breadcrumb()}]"
            text.append(f" {hint}", style="dim")
        self.update(text)


class RamObserverApp(App):
    """Live process-tree dashboard."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #header {
        height: 3;
    }

    #process-view {
        height: 1fr;
    }

    #status {
        height: 2;
    }
    """

    BINDINGS = [
        Binding("up,k", "cursor_up", "Up", show=False),
        Binding("down,j", "cursor_down", "Down", show=False),
        Binding("pageup", "page_up", "Page up", show=False),
        Binding("pagedown", "page_down", "Page down", show=False),
        Binding("right,l", "expand", "Expand", show=False),
        Binding("left,h", "collapse", "Collapse", show=False),
        Binding("f", "toggle_freeze", "Freeze"),
        Binding("s", "cycle_sort", "Sort"),
        Binding("slash", "search", "Search"),
        Binding("x", "export", "Export"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        config: Config | None = None,
        coordinator: RefreshCoordinator | None = None,
    ) -> None:
        super().__init__()
        self.config = config or Config.load()
        self.coordinator = coordinator or self._default_coordinator(self.config)

    @staticmethod
    def _default_coordinator(config: Config) -> RefreshCoordinator:
        timeout = config.refresh.command_timeout
        return RefreshCoordinator(
            ProcessCollector(timeout=timeout),
            MemoryDetailCollector(timeout=timeout),
            config.refresh,
            stats_source=SystemStatsCollector(timeout=timeout),
            ledger=TimelineLedger(capacity=config.timeline.capacity),
            message_seconds=config.tui.message_seconds,
        )

    def compose(self) -> ComposeResult:
        """Create the TUI layout."""
        yield HeaderBar(id="header")
        yield ProcessView(id="process-view")
        yield StatusBar(id="status")

    def on_mount(self) -> None:
        """Start the frame timer. The first tick takes the first snapshot."""
        self.title = "ram-observer"
        log.info("tui_started")
        self.set_interval(self.config.refresh.frame_interval, self._tick)

    def on_unmount(self) -> None:
        if not self.coordinator.join_enrichment(timeout=1.0):
            log.debug("enrichment_still_running_at_exit")
        log.info("tui_stopped")

    def on_resize(self, event: events.Resize) -> None:
        self._sync_viewport()
        self.redraw()

    def _sync_viewport(self) -> None:
        try:
            view = self.query_one("#process-view", ProcessView)
        except NoMatches:
            return
        self.coordinator.set_viewport(view.list_height)

    def _tick(self) -> None:
        """One frame: apply enrichment, refresh when due, redraw."""
        self._sync_viewport()
        self.coordinator.drain_updates()
        if self.coordinator.due():
            self.coordinator.refresh()
        self.redraw()

    def redraw(self) -> None:
        coordinator = self.coordinator
        try:
            self.query_one("#header", HeaderBar).update_stats(
                coordinator.system_stats, coordinator.view.frozen
            )
            self.query_one("#process-view", ProcessView).redraw(coordinator)
            self.query_one("#status", StatusBar).redraw(coordinator)
        except NoMatches:
            pass

    # ─────────────────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────────────────

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        """Disable navigation bindings while the search prompt has the keyboard."""
        if self.coordinator.view.search_mode and action in _SEARCH_BLOCKED_ACTIONS:
            return False
        return True

    def on_key(self, event: events.Key) -> None:
        """Line editing for the search prompt."""
        if not self.coordinator.view.search_mode:
            return
        event.stop()
        event.prevent_default()
        coordinator = self.coordinator
        if event.key == "escape":
            coordinator.cancel_search()
        elif event.key == "enter":
            coordinator.commit_search()
        elif event.key == "backspace":
            coordinator.set_query(coordinator.view.query[:-1])
        elif event.is_printable and event.character:
            coordinator.set_query(coordinator.view.query + event.character)
        self.redraw()

    def action_cursor_up(self) -> None:
        self.coordinator.move_cursor(-1)
        self.redraw()

    def action_cursor_down(self) -> None:
        self.coordinator.move_cursor(1)
        self.redraw()

    def action_page_up(self) -> None:
        self.coordinator.page(-1)
        self.redraw()

    def action_page_down(self) -> None:
        self.coordinator.page(1)
        self.redraw()

    def action_expand(self) -> None:
        self.coordinator.expand_current()
        self.redraw()

    def action_collapse(self) -> None:
        self.coordinator.collapse_current()
        self.redraw()

    def action_toggle_freeze(self) -> None:
        self.coordinator.toggle_frozen()
        self.redraw()

    def action_cycle_sort(self) -> None:
        self.coordinator.cycle_sort()
        self.redraw()

    def action_search(self) -> None:
        self.coordinator.begin_search()
        self.redraw()

    def action_export(self) -> None:
        """Write the visible rows to a JSON snapshot."""
        coordinator = self.coordinator
        try:
            path = export_snapshot(
                coordinator.visible_rows(),
                coordinator.system_stats,
                self.config.export_dir,
            )
        except OSError as e:
            log.warning("export_failed", error=str(e))
            coordinator.flash(f"Export failed: {e}")
        else:
            coordinator.flash(f"Exported to {path.name}")
        self.redraw()


_SEARCH_BLOCKED_ACTIONS = {
    "cursor_up",
    "cursor_down",
    "page_up",
    "page_down",
    "expand",
    "collapse",
    "toggle_freeze",
    "cycle_sort",
    "search",
    "export",
    "quit",
}


def run_tui(config: Config | None = None, **kwargs: Any) -> None:
    """Run the TUI application."""
    app = RamObserverApp(config, **kwargs)
    app.run()
