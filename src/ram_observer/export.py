"""Point-in-time JSON export of the visible rows."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

import structlog

from ram_observer.collector import SystemStats
from ram_observer.tree import VisibleRow

log = structlog.get_logger()

FILENAME_FORMAT = "ram-snapshot-%Y-%m-%d-%H%M%S.json"


def build_export(
    rows: Sequence[VisibleRow],
    stats: SystemStats | None,
    now: datetime | None = None,
) -> dict:
    """Build the export document for a row list."""
    now = now or datetime.now().astimezone()
    return {
        "timestamp": now.isoformat(timespec="seconds"),
        "system": stats.to_dict() if stats is not None else None,
        "processes": [
            {
                "pid": row.node.pid,
                "ppid": row.node.ppid,
                "name": row.node.name,
                "command": row.node.command,
                "rss_kb": row.node.rss_kb,
                "vsz_kb": row.node.vsz_kb,
                "compressed_bytes": row.node.compressed_bytes,
                "swap_bytes": row.node.swap_bytes,
                "age": row.node.age_human,
                "started": row.node.started,
                "depth": row.depth,
            }
            for row in rows
        ],
    }


def export_snapshot(
    rows: Sequence[VisibleRow],
    stats: SystemStats | None,
    directory: Path,
    now: datetime | None = None,
) -> Path:
    """Write rows to `ram-snapshot-YYYY-MM-DD-HHMMSS.json` in `directory`.

    Raises:
        OSError: If the directory cannot be created or the file written.
    """
    now = now or datetime.now().astimezone()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / now.strftime(FILENAME_FORMAT)
    path.write_text(json.dumps(build_export(rows, stats, now), indent=2) + "\n")
    log.info("snapshot_exported", path=str(path), processes=len(rows))
    return path
