"""Process records and tree nodes.

A `ProcessRecord` is one raw row of a snapshot, exactly as the snapshot
source produced it. A `ProcessNode` is the per-refresh tree node built from
a record: it owns its children and points back at its parent through a weak
reference, so discarding last cycle's forest never leaves ownership cycles.
"""

from __future__ import annotations

import os
import re
import weakref
from collections.abc import Iterator
from dataclasses import dataclass, field

from ram_observer.formatting import format_age

_APP_BUNDLE = re.compile(r"/([^/]+)\.app/")
_HELPER_SUFFIX = re.compile(r"\s+Helper.*")
_PROCESS_TYPE = re.compile(r"--type=(\S+)")
_UTILITY_SUB_TYPE = re.compile(r"--utility-sub-type=(\S+)")


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable row of a process snapshot."""

    pid: int
    ppid: int
    rss_kb: int
    vsz_kb: int
    command: str
    elapsed: str  # ps etime token: [[dd-]hh:]mm:ss
    started: str  # ps lstart, e.g. "Wed Jan 28 17:21:44 2026"


@dataclass(slots=True, frozen=True)
class DetailMetrics:
    """Expensive per-process memory metrics fetched by enrichment."""

    compressed_bytes: int = 0
    swap_bytes: int = 0


ZERO_DETAILS = DetailMetrics()


def parse_elapsed(token: str) -> int:
    """Convert a ps etime token to seconds. Unknown formats give 0."""
    parts = token.strip().replace("-", ":").split(":")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return 0
    if len(numbers) == 2:
        minutes, seconds = numbers
        return minutes * 60 + seconds
    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        return hours * 3600 + minutes * 60 + seconds
    if len(numbers) == 4:
        days, hours, minutes, seconds = numbers
        return days * 86400 + hours * 3600 + minutes * 60 + seconds
    return 0


def display_name(command: str) -> str:
    """Derive a short display name from a full command line.

    Chromium and Electron helpers all share one binary name, so they are
    labelled by owning app and helper type instead ("Slack: renderer").
    """
    command = command.strip()
    if not command:
        return "[unknown]"
    if "--type=" in command:
        return _chromium_helper_name(command)
    basename = os.path.basename(command.split()[0])
    return basename or command


def _chromium_helper_name(command: str) -> str:
    bundle = _APP_BUNDLE.search(command)
    app_name = _HELPER_SUFFIX.sub("", bundle.group(1)) if bundle else "Chromium"

    match = _PROCESS_TYPE.search(command)
    process_type = match.group(1) if match else "unknown"

    if process_type == "renderer":
        label = "extension" if "--extension-process" in command else "renderer"
    elif process_type == "gpu-process":
        label = "gpu"
    elif process_type == "utility":
        sub = _UTILITY_SUB_TYPE.search(command)
        parts = sub.group(1).split(".") if sub else []
        short = next((p for p in parts if p != "mojom" and re.search(r"[A-Z]", p)), None)
        label = re.sub(r"Service$", "", short).lower() if short else "utility"
    else:
        label = process_type

    return f"{app_name}: {label}"


@dataclass(eq=False)
class ProcessNode:
    """One process in one refresh cycle's forest.

    Nodes compare by identity. `expanded` is the only field carried from one
    cycle to the next (by pid, see RefreshCoordinator); detail metrics start
    at zero on every rebuild until enrichment fills them in again.

    `depth` is written by flatten() and is only meaningful for nodes it
    visited. Nodes inside collapsed subtrees keep their last value (0 on a
    fresh forest).
    """

    pid: int
    ppid: int
    rss_kb: int
    vsz_kb: int
    command: str
    elapsed: str
    started: str
    name: str = ""
    compressed_bytes: int = 0
    swap_bytes: int = 0
    expanded: bool = False
    depth: int = 0
    children: list[ProcessNode] = field(default_factory=list)
    _parent_ref: weakref.ReferenceType[ProcessNode] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = display_name(self.command)

    @classmethod
    def from_record(cls, record: ProcessRecord) -> ProcessNode:
        """Create a fresh, unlinked node from a snapshot record."""
        return cls(
            pid=record.pid,
            ppid=record.ppid,
            rss_kb=record.rss_kb,
            vsz_kb=record.vsz_kb,
            command=record.command,
            elapsed=record.elapsed,
            started=record.started,
        )

    @property
    def parent(self) -> ProcessNode | None:
        """Parent node, or None for roots (or once the parent is gone)."""
        return self._parent_ref() if self._parent_ref is not None else None

    @parent.setter
    def parent(self, node: ProcessNode | None) -> None:
        self._parent_ref = weakref.ref(node) if node is not None else None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def total_rss_kb(self) -> int:
        """Own RSS plus the RSS of every descendant."""
        total = 0
        stack = [self]
        while stack:
            node = stack.pop()
            total += node.rss_kb
            stack.extend(node.children)
        return total

    @property
    def age_seconds(self) -> int:
        return parse_elapsed(self.elapsed)

    @property
    def age_human(self) -> str:
        return format_age(self.age_seconds)

    def apply_details(self, metrics: DetailMetrics) -> None:
        """Store enrichment results on this node."""
        self.compressed_bytes = metrics.compressed_bytes
        self.swap_bytes = metrics.swap_bytes

    def ancestors(self) -> Iterator[ProcessNode]:
        """Yield parent, grandparent, ... up to the root."""
        seen = {self.pid}
        current = self.parent
        while current is not None and current.pid not in seen:
            seen.add(current.pid)
            yield current
            current = current.parent

    def breadcrumb(self) -> str:
        """Ancestor names from the root down, e.g. "launchd > Slack"."""
        return " > ".join(reversed([node.name for node in self.ancestors()]))
