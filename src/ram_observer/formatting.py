"""Formatting utilities for consistent output across CLI and TUI."""

import math

_UNITS = ["B", "KB", "MB", "GB", "TB"]


def bytes_human(value: int | float) -> str:
    """Format a byte count for table cells.

    Args:
        value: Size in bytes

    Returns:
        Formatted string:
        - Zero: "0B"
        - Below 100 units: one decimal ("1.5KB", "12.3MB")
        - 100 units or more: no decimal ("123MB")
    """
    if value == 0:
        return "0B"
    exp = int(math.log(abs(value)) / math.log(1024)) if abs(value) >= 1 else 0
    exp = max(0, min(exp, len(_UNITS) - 1))
    scaled = value / (1024**exp)
    if scaled >= 100:
        return f"{scaled:.0f}{_UNITS[exp]}"
    return f"{scaled:.1f}{_UNITS[exp]}"


def kb_human(kb: int) -> str:
    """Format a size reported by ps in kilobytes."""
    return bytes_human(kb * 1024)


def pressure_bar(percent: float, width: int = 10) -> str:
    """Render a memory pressure percentage as a block bar."""
    filled = round(percent / 100.0 * width)
    filled = max(0, min(filled, width))
    return "█" * filled + "░" * (width - filled)


def format_age(seconds: int) -> str:
    """Format process age compactly.

    Returns:
        "30s" under a minute, "5m" under an hour, "2h 30m" under a day,
        otherwise "3d 4h".
    """
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h {minutes % 60}m"
    days = hours // 24
    return f"{days}d {hours % 24}h"
