"""Refresh coordination: snapshot, rebuild, reconcile, flatten, enrich.

The coordinator is driven from a single render/input loop. `refresh()` runs
synchronously and only publishes the new row list once reconciliation, the
timeline update and flattening are all done, so a half-built view is never
visible. Enrichment is the only concurrent work: one daemon thread at a time
fetches detail metrics for the top visible rows and posts `DetailUpdate`s to
a queue. The loop applies them in `drain_updates()`; worker threads never
touch nodes.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import structlog

from ram_observer.collector import SystemStats
from ram_observer.config import RefreshConfig
from ram_observer.process import ZERO_DETAILS, DetailMetrics, ProcessNode, ProcessRecord
from ram_observer.timeline import TimelineLedger
from ram_observer.tree import (
    MetricKey,
    VisibleRow,
    build_forest,
    collect_expanded,
    flatten,
    restore_expanded,
    walk,
)

log = structlog.get_logger()

# Sort keys whose values arrive through enrichment
_DETAIL_KEYS = (MetricKey.COMP, MetricKey.SWAP)


class SnapshotSource(Protocol):
    def collect(self) -> list[ProcessRecord]: ...


class DetailSource(Protocol):
    def collect_for(self, pid: int) -> DetailMetrics: ...


class StatsSource(Protocol):
    def collect(self) -> SystemStats: ...


class CoordinatorState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass
class ViewState:
    """User-driven view state, owned by the coordinator for the process lifetime."""

    sort_key: MetricKey = MetricKey.RSS
    query: str = ""
    cursor: int = 0
    scroll_offset: int = 0
    viewport_height: int = 20
    frozen: bool = False
    search_mode: bool = False
    last_enriched: float | None = None  # Clock time the last enrichment started
    status_message: str | None = None
    status_until: float = 0.0


@dataclass(frozen=True)
class DetailUpdate:
    """Result of one detail fetch, tagged with the forest it was scheduled for."""

    generation: int
    pid: int
    metrics: DetailMetrics


class RefreshCoordinator:
    """Owns the live forest, the visible rows and the view state."""

    def __init__(
        self,
        snapshot_source: SnapshotSource,
        detail_source: DetailSource,
        config: RefreshConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        stats_source: StatsSource | None = None,
        ledger: TimelineLedger | None = None,
        message_seconds: float = 2.0,
    ) -> None:
        self.snapshot_source = snapshot_source
        self.detail_source = detail_source
        self.stats_source = stats_source
        self.config = config or RefreshConfig()
        self.ledger = ledger if ledger is not None else TimelineLedger()
        self.view = ViewState()
        self.state = CoordinatorState.IDLE
        self.generation = 0
        self.system_stats: SystemStats | None = None
        self.message_seconds = message_seconds

        self._clock = clock
        self._sleep = sleep
        self._forest: list[ProcessNode] = []
        self._nodes: dict[int, ProcessNode] = {}
        self._rows: list[VisibleRow] = []
        self._last_refresh: float | None = None
        self._updates: queue.Queue[DetailUpdate] = queue.Queue()
        self._enrich_thread: threading.Thread | None = None

    # ─────────────────────────────────────────────────────────────────────
    # Refresh cycle
    # ─────────────────────────────────────────────────────────────────────

    @property
    def forest(self) -> list[ProcessNode]:
        return self._forest

    def visible_rows(self) -> list[VisibleRow]:
        """Current rows. Replaced wholesale on change, never mutated."""
        return self._rows

    def due(self, now: float | None = None) -> bool:
        """Whether the periodic refresh should run now."""
        if self.view.frozen:
            return False
        if self._last_refresh is None:
            return True
        now = self._clock() if now is None else now
        return now - self._last_refresh >= self.config.interval

    def refresh(self) -> bool:
        """Run one snapshot-and-rebuild cycle.

        Returns:
            True if a new forest was published. False if the snapshot came
            back empty, in which case the previous rows stay on screen.
        """
        self.state = CoordinatorState.REFRESHING
        try:
            expanded = collect_expanded(self._forest)
            records = self.snapshot_source.collect()
            now = self._clock()
            self._last_refresh = now
            if self.stats_source is not None:
                self.system_stats = self.stats_source.collect()

            if not records:
                log.warning("snapshot_empty", retained_rows=len(self._rows))
                return False

            forest = build_forest(records)
            restored = restore_expanded(forest, expanded)
            self.ledger.record_snapshot(records, now)
            rows = flatten(forest, self.view.sort_key, self.view.query or None)

            self.generation += 1
            self._forest = forest
            self._nodes = {node.pid: node for node in walk(forest)}
            self._rows = rows
            self._clamp_cursor()

            log.debug(
                "refresh_complete",
                generation=self.generation,
                processes=len(records),
                roots=len(forest),
                rows=len(rows),
                restored=restored,
            )
            self._maybe_enrich(now)
            return True
        finally:
            self.state = CoordinatorState.IDLE

    def rebuild_view(self) -> None:
        """Re-flatten the current forest with the current sort and query."""
        self._rows = flatten(self._forest, self.view.sort_key, self.view.query or None)
        self._clamp_cursor()

    # ─────────────────────────────────────────────────────────────────────
    # Enrichment
    # ─────────────────────────────────────────────────────────────────────

    @property
    def is_enriching(self) -> bool:
        return self._enrich_thread is not None and self._enrich_thread.is_alive()

    def _maybe_enrich(self, now: float) -> bool:
        """Start an enrichment pass over the top visible rows if allowed."""
        if self.is_enriching:
            return False
        last = self.view.last_enriched
        if last is not None and now - last < self.config.enrich_cooldown:
            return False

        start = self.view.scroll_offset
        window = self._rows[start : start + self.view.viewport_height]
        pids = [row.node.pid for row in window[: self.config.enrich_batch_size]]
        if not pids:
            return False

        self.view.last_enriched = now
        self._enrich_thread = threading.Thread(
            target=self._enrich,
            args=(self.generation, pids),
            name="ram-observer-enrich",
            daemon=True,
        )
        self._enrich_thread.start()
        log.debug("enrichment_started", generation=self.generation, pids=pids)
        return True

    def _enrich(self, generation: int, pids: list[int]) -> None:
        """Worker thread body. Posts results, never touches nodes."""
        for index, pid in enumerate(pids):
            if index:
                self._sleep(self.config.enrich_pace)
            try:
                metrics = self.detail_source.collect_for(pid)
            except Exception:
                log.warning("detail_fetch_failed", pid=pid, exc_info=True)
                metrics = ZERO_DETAILS
            self._updates.put(DetailUpdate(generation=generation, pid=pid, metrics=metrics))

    def drain_updates(self) -> int:
        """Apply queued enrichment results to the current forest.

        Updates scheduled against an older forest are dropped.

        Returns:
            Number of updates applied.
        """
        applied = 0
        while True:
            try:
                update = self._updates.get_nowait()
            except queue.Empty:
                break
            if update.generation != self.generation:
                log.debug(
                    "stale_detail_update",
                    pid=update.pid,
                    generation=update.generation,
                    current=self.generation,
                )
                continue
            node = self._nodes.get(update.pid)
            if node is None:
                continue
            node.apply_details(update.metrics)
            applied += 1

        if applied and self.view.sort_key in _DETAIL_KEYS:
            self.rebuild_view()
        return applied

    def join_enrichment(self, timeout: float | None = None) -> bool:
        """Wait for the in-flight enrichment thread. Returns True once idle."""
        thread = self._enrich_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ─────────────────────────────────────────────────────────────────────
    # Cursor and scrolling
    # ─────────────────────────────────────────────────────────────────────

    def selected(self) -> ProcessNode | None:
        if not self._rows:
            return None
        return self._rows[self.view.cursor].node

    def set_viewport(self, height: int) -> None:
        self.view.viewport_height = max(1, height)
        self._follow_cursor()

    def move_cursor(self, delta: int) -> None:
        if not self._rows:
            return
        self.view.cursor = max(0, min(self.view.cursor + delta, len(self._rows) - 1))
        self._follow_cursor()

    def page(self, delta: int) -> None:
        """Move the cursor by whole viewports."""
        self.move_cursor(delta * self.view.viewport_height)

    def _clamp_cursor(self) -> None:
        count = len(self._rows)
        self.view.cursor = max(0, min(self.view.cursor, count - 1)) if count else 0
        self._follow_cursor()

    def _follow_cursor(self) -> None:
        """Adjust the scroll offset so the cursor row is on screen."""
        view = self.view
        height = max(1, view.viewport_height)
        if view.cursor < view.scroll_offset:
            view.scroll_offset = view.cursor
        elif view.cursor >= view.scroll_offset + height:
            view.scroll_offset = view.cursor - height + 1
        max_offset = max(0, len(self._rows) - height)
        view.scroll_offset = max(0, min(view.scroll_offset, max_offset))

    # ─────────────────────────────────────────────────────────────────────
    # Tree and view operations
    # ─────────────────────────────────────────────────────────────────────

    def expand_current(self) -> bool:
        node = self.selected()
        if node is None or node.is_leaf or node.expanded:
            return False
        node.expanded = True
        self.rebuild_view()
        return True

    def collapse_current(self) -> bool:
        """Collapse the selected node, or its parent when it has nothing open.

        Collapsing the parent moves the cursor onto the parent row.
        """
        node = self.selected()
        if node is None:
            return False
        if node.expanded and not node.is_leaf:
            node.expanded = False
            self.rebuild_view()
            return True

        parent = node.parent
        if parent is None:
            return False
        parent.expanded = False
        self.rebuild_view()
        for index, row in enumerate(self._rows):
            if row.node is parent:
                self.view.cursor = index
                self._follow_cursor()
                break
        return True

    def cycle_sort(self) -> MetricKey:
        self.view.sort_key = self.view.sort_key.next()
        self.rebuild_view()
        self.flash(f"Sorted by {self.view.sort_key.label}")
        return self.view.sort_key

    def set_query(self, text: str) -> None:
        self.view.query = text
        self.rebuild_view()

    def begin_search(self) -> None:
        self.view.search_mode = True
        self.set_query("")

    def cancel_search(self) -> None:
        """Leave search mode and drop the filter."""
        self.view.search_mode = False
        self.set_query("")

    def commit_search(self) -> None:
        """Leave search mode, keeping the filter applied."""
        self.view.search_mode = False

    def toggle_frozen(self) -> bool:
        self.view.frozen = not self.view.frozen
        self.flash("View frozen" if self.view.frozen else "Live updates resumed")
        log.info("view_frozen" if self.view.frozen else "view_resumed")
        return self.view.frozen

    # ─────────────────────────────────────────────────────────────────────
    # Status messages
    # ─────────────────────────────────────────────────────────────────────

    def flash(self, message: str, seconds: float | None = None) -> None:
        """Show a transient status message."""
        if seconds is None:
            seconds = self.message_seconds
        self.view.status_message = message
        self.view.status_until = self._clock() + seconds

    def current_message(self, now: float | None = None) -> str | None:
        """The status message if it has not expired yet."""
        if self.view.status_message is None:
            return None
        now = self._clock() if now is None else now
        if now < self.view.status_until:
            return self.view.status_message
        self.view.status_message = None
        return None
