"""Textual dashboard for ram-observer."""

from ram_observer.tui.app import RamObserverApp, run_tui

__all__ = ["RamObserverApp", "run_tui"]
