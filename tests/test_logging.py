"""Tests for console helpers and structlog file logging."""

import json
import logging
from pathlib import Path

import pytest
import structlog

from ram_observer import logging as observer_logging
from ram_observer.config import Config, SystemConfig


@pytest.fixture
def restore_logging():
    """Undo global logging changes made by configure()."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def _read_events(config: Config) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in config.log_path.read_text().splitlines()]


class TestConfigure:
    """Tests for configure()."""

    def test_writes_json_lines(self, isolated_home, restore_logging):
        config = Config()
        observer_logging.configure(config, source="cli")

        structlog.get_logger().info("snapshot_exported", processes=3)

        events = _read_events(config)
        assert len(events) == 1
        event = events[0]
        assert event["event"] == "snapshot_exported"
        assert event["processes"] == 3
        assert event["level"] == "info"
        assert event["source"] == "cli"
        assert "ts" in event

    def test_respects_log_level(self, isolated_home, restore_logging):
        config = Config(system=SystemConfig(log_level="warning"))
        observer_logging.configure(config)

        log = structlog.get_logger()
        log.info("ignored")
        log.warning("command_failed", command="ps")

        events = _read_events(config)
        assert [e["event"] for e in events] == ["command_failed"]
        assert events[0]["source"] == "observer"

    def test_stdlib_records_are_rendered(self, isolated_home, restore_logging):
        config = Config()
        observer_logging.configure(config, source="tui")

        logging.getLogger("textual").warning("plain stdlib message")

        events = _read_events(config)
        assert events[0]["event"] == "plain stdlib message"
        assert events[0]["source"] == "tui"

    def test_creates_state_dir(self, isolated_home, restore_logging):
        config = Config()
        assert not config.state_dir.exists()
        observer_logging.configure(config)
        assert config.state_dir.is_dir()


class TestConsoleHelpers:
    """Tests for Rich console output."""

    def test_info_goes_to_stdout(self, capsys):
        observer_logging.info("hello")
        captured = capsys.readouterr()
        assert "[info]" in captured.out
        assert "hello" in captured.out

    def test_error_goes_to_stderr(self, capsys):
        observer_logging.error("broken")
        captured = capsys.readouterr()
        assert "broken" in captured.err
        assert "broken" not in captured.out

    def test_export_written(self, capsys):
        observer_logging.export_written(Path("snap.json"), 12)
        out = capsys.readouterr().out
        assert "12" in out
        assert "snap.json" in out

    def test_snapshot_empty(self, capsys):
        observer_logging.snapshot_empty()
        assert "empty" in capsys.readouterr().out
