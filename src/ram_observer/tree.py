"""Process hierarchy: building a forest from a snapshot and flattening it for display.

`build_forest` never fails. Orphans, self-parented processes and parent links
that would close a cycle all become roots, so the worst possible snapshot
yields a flat list of isolated roots.

`flatten` only walks into expanded nodes, so its cost follows the number of
visible rows rather than the size of the process table.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from ram_observer.process import ProcessNode, ProcessRecord

BRANCH = "│  "
BLANK = "   "


class MetricKey(Enum):
    """Sortable columns of the process view."""

    RSS = "RSS"
    VIRT = "VIRT"
    COMP = "COMP"
    SWAP = "SWAP"
    AGE = "AGE"

    @property
    def label(self) -> str:
        """Column header text."""
        return self.value

    @property
    def attribute(self) -> str:
        """ProcessNode attribute this metric reads."""
        return _ATTRIBUTES[self]

    @property
    def hint(self) -> str:
        """One-line explanation shown in the status bar."""
        return _HINTS[self]

    def value_of(self, node: ProcessNode) -> int:
        return getattr(node, self.attribute) or 0

    def next(self) -> MetricKey:
        """Next key in column order, wrapping around."""
        keys = list(MetricKey)
        return keys[(keys.index(self) + 1) % len(keys)]


_ATTRIBUTES = {
    MetricKey.RSS: "rss_kb",
    MetricKey.VIRT: "vsz_kb",
    MetricKey.COMP: "compressed_bytes",
    MetricKey.SWAP: "swap_bytes",
    MetricKey.AGE: "age_seconds",
}

_HINTS = {
    MetricKey.RSS: "RSS: Physical memory actively used by this process (Resident Set Size)",
    MetricKey.VIRT: "VIRT: Total virtual address space including shared libs and mapped files",
    MetricKey.COMP: "COMP: Memory compressed in RAM by the OS to save space without swapping",
    MetricKey.SWAP: "SWAP: Memory paged out to disk when RAM is full",
    MetricKey.AGE: "AGE: Time since the process was launched",
}


@dataclass(frozen=True)
class VisibleRow:
    """One rendering-ready line of the flattened tree."""

    node: ProcessNode
    depth: int
    prefix: str  # Guides for ancestor branches, without this row's connector
    is_last: bool  # Last sibling at this depth

    @property
    def connector(self) -> str:
        """Box-drawing connector joining this row to its parent."""
        if self.depth == 0:
            return ""
        return "└─ " if self.is_last else "├─ "

    @property
    def indicator(self) -> str:
        """Expand/collapse marker."""
        if self.node.is_leaf:
            return "  "
        return "▼ " if self.node.expanded else "▶ "


def build_forest(records: Iterable[ProcessRecord]) -> list[ProcessNode]:
    """Link a flat snapshot into a forest of ProcessNodes.

    A record becomes a root when its parent pid is absent, equals its own pid,
    or when attaching it would make it its own ancestor. Roots are sorted by
    descending total RSS, ties by ascending pid.

    Args:
        records: Snapshot rows. A repeated pid replaces the earlier row.

    Returns:
        Root nodes with children linked and parent back-references set.
    """
    by_pid: dict[int, ProcessNode] = {}
    for record in records:
        by_pid[record.pid] = ProcessNode.from_record(record)

    roots: list[ProcessNode] = []
    for node in by_pid.values():
        parent = by_pid.get(node.ppid)
        if parent is None or parent is node or _closes_cycle(node, parent):
            roots.append(node)
            continue
        node.parent = parent
        parent.children.append(node)

    roots.sort(key=lambda n: (-n.total_rss_kb, n.pid))
    return roots


def _closes_cycle(node: ProcessNode, candidate: ProcessNode) -> bool:
    """Whether making `candidate` the parent of `node` would create a cycle.

    Follows links established so far upward from the candidate. Any revisit
    is treated as a cycle too, so a corrupt chain can never loop forever.
    """
    seen: set[int] = set()
    current: ProcessNode | None = candidate
    while current is not None:
        if current is node or id(current) in seen:
            return True
        seen.add(id(current))
        current = current.parent
    return False


def flatten(
    forest: list[ProcessNode],
    sort_key: MetricKey = MetricKey.RSS,
    query: str | None = None,
) -> list[VisibleRow]:
    """Flatten the expanded part of a forest into display order.

    Depth-first pre-order. Roots keep forest order; each node's children are
    sorted on every call by `sort_key` descending (ties by pid), so switching
    the sort key never needs a rebuild. Collapsed subtrees are skipped
    entirely. The depth of every visited node is written back onto it.

    Args:
        forest: Root nodes from build_forest().
        sort_key: Metric used to order siblings.
        query: Optional case-insensitive substring matched against the
            display name and the full command line. Applied after flattening;
            ancestors of a matching row are not forced into view.

    Returns:
        Visible rows in display order.
    """
    rows: list[VisibleRow] = []
    stack: list[tuple[ProcessNode, int, str, bool]] = []
    for index in range(len(forest) - 1, -1, -1):
        stack.append((forest[index], 0, "", index == len(forest) - 1))

    while stack:
        node, depth, prefix, is_last = stack.pop()
        node.depth = depth
        rows.append(VisibleRow(node=node, depth=depth, prefix=prefix, is_last=is_last))

        if not node.expanded or not node.children:
            continue

        children = sorted(node.children, key=lambda c: (-sort_key.value_of(c), c.pid))
        # Roots draw no connector, so their children need no guide column.
        child_prefix = "" if depth == 0 else prefix + (BLANK if is_last else BRANCH)
        last = len(children) - 1
        for index in range(last, -1, -1):
            stack.append((children[index], depth + 1, child_prefix, index == last))

    if query:
        needle = query.lower()
        rows = [
            row
            for row in rows
            if needle in row.node.name.lower() or needle in row.node.command.lower()
        ]
    return rows


def walk(forest: list[ProcessNode]) -> Iterator[ProcessNode]:
    """Yield every node of the forest in pre-order."""
    stack = list(reversed(forest))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def collect_expanded(forest: list[ProcessNode]) -> set[int]:
    """Pids of every expanded node, expanded or not above it."""
    return {node.pid for node in walk(forest) if node.expanded}


def restore_expanded(forest: list[ProcessNode], pids: set[int]) -> int:
    """Mark nodes whose pid is in `pids` as expanded.

    Returns:
        Number of nodes restored. Pids missing from the forest are ignored.
    """
    restored = 0
    for node in walk(forest):
        if node.pid in pids:
            node.expanded = True
            restored += 1
    return restored
