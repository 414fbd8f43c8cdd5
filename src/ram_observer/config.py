"""Configuration system for ram-observer."""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

VALID_LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class RefreshConfig:
    """Refresh cycle and enrichment pacing."""

    interval: float = 2.0  # Seconds between snapshots
    frame_interval: float = 0.1  # Seconds between TUI frames
    enrich_cooldown: float = 10.0  # Min seconds between enrichment starts
    enrich_batch_size: int = 5  # Visible rows enriched per pass
    enrich_pace: float = 0.5  # Delay between detail fetches
    command_timeout: float = 10.0  # Timeout for ps/footprint/memory_pressure


@dataclass
class TimelineConfig:
    """Per-process trend history."""

    capacity: int = 60  # Samples kept per pid
    sparkline_width: int = 12  # Glyphs in the TREND column


@dataclass
class SystemConfig:
    """Logging configuration."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep
    log_level: str = "info"


@dataclass
class ExportConfig:
    """Snapshot export configuration."""

    directory: str = "."  # Where ram-snapshot-*.json files are written


# =============================================================================
# TUI Color Configuration
# =============================================================================


@dataclass
class RowColors:
    """Colors for process rows by RSS level.

    Colors can be:
    - Named colors: "red", "green", "yellow", "dim"
    - Hex colors: "#FFA500" (orange)
    - Rich styles: "bold red", "dim green"
    - Empty string "" for default text color

    Default palette: Dracula theme.
    """

    normal: str = ""  # Default text color
    warn: str = "#f1fa8c"  # Dracula yellow - above warn_rss_kb
    critical: str = "#ff5555"  # Dracula red - above critical_rss_kb
    selected: str = "reverse"
    tree: str = "#6272a4"  # Dracula comment - guides and connectors
    pid: str = "#6272a4"
    trend: str = "#8be9fd"  # Dracula cyan


@dataclass
class PressureColors:
    """Colors for the header border and pressure bar by pressure level."""

    normal: str = "#50fa7b"  # Dracula green - system healthy
    warn: str = "#f1fa8c"  # Dracula yellow - attention
    critical: str = "#ff5555"  # Dracula red - urgent


@dataclass
class TUIColorsConfig:
    """All TUI color configurations grouped together."""

    rows: RowColors = field(default_factory=RowColors)
    pressure: PressureColors = field(default_factory=PressureColors)


@dataclass
class TUIConfig:
    """TUI-specific configuration."""

    colors: TUIColorsConfig = field(default_factory=TUIColorsConfig)
    message_seconds: float = 2.0  # How long status messages stay visible
    warn_rss_kb: int = 524_288  # 512 MiB
    critical_rss_kb: int = 1_048_576  # 1 GiB


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    timeline: TimelineConfig = field(default_factory=TimelineConfig)
    system: SystemConfig = field(default_factory=SystemConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "ram-observer"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "ram-observer"

    @property
    def log_path(self) -> Path:
        """Log file path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "observer.log"

    @property
    def export_dir(self) -> Path:
        """Resolved export directory."""
        return Path(self.export.directory).expanduser()

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["refresh", "timeline", "system", "export", "tui"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() of an empty file are identical.

        Raises:
            ValueError: If the file cannot be parsed, or a value has the wrong
                type or is out of range.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        export_data = _section(data, "export")

        return cls(
            refresh=_load_refresh_config(_section(data, "refresh")),
            timeline=_load_timeline_config(_section(data, "timeline")),
            system=_load_system_config(_section(data, "system")),
            export=ExportConfig(
                directory=_string(export_data, "export", "directory", defaults.export.directory),
            ),
            tui=_load_tui_config(_section(data, "tui")),
        )


# TOML values arrive as tomlkit items (subclasses of int, float, str, dict).
# These readers check the type and hand back plain Python values.


def _section(data: Mapping, name: str, parent: str = "") -> Mapping:
    """Return a sub-table, or {} when it is missing."""
    value = data.get(name, {})
    if not isinstance(value, Mapping):
        raise ValueError(f"[{parent}{name}] must be a table, got {value!r}")
    return value


def _integer(data: dict, section: str, key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    return int(value)


def _number(data: dict, section: str, key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{section}.{key} must be a number, got {value!r}")
    return float(value)


def _string(data: dict, section: str, key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"{section}.{key} must be a string, got {value!r}")
    return str(value)


def _load_refresh_config(data: dict) -> RefreshConfig:
    """Load refresh config from TOML data, using dataclass defaults for missing fields."""
    d = RefreshConfig()
    config = RefreshConfig(
        interval=_number(data, "refresh", "interval", d.interval),
        frame_interval=_number(data, "refresh", "frame_interval", d.frame_interval),
        enrich_cooldown=_number(data, "refresh", "enrich_cooldown", d.enrich_cooldown),
        enrich_batch_size=_integer(data, "refresh", "enrich_batch_size", d.enrich_batch_size),
        enrich_pace=_number(data, "refresh", "enrich_pace", d.enrich_pace),
        command_timeout=_number(data, "refresh", "command_timeout", d.command_timeout),
    )

    if config.interval <= 0:
        raise ValueError(f"refresh.interval must be > 0, got {config.interval}")
    if config.frame_interval <= 0:
        raise ValueError(f"refresh.frame_interval must be > 0, got {config.frame_interval}")
    if config.enrich_cooldown < 0:
        raise ValueError(f"refresh.enrich_cooldown must be >= 0, got {config.enrich_cooldown}")
    if config.enrich_batch_size < 1:
        raise ValueError(
            f"refresh.enrich_batch_size must be >= 1, got {config.enrich_batch_size}"
        )
    if config.enrich_pace < 0:
        raise ValueError(f"refresh.enrich_pace must be >= 0, got {config.enrich_pace}")
    if config.command_timeout <= 0:
        raise ValueError(f"refresh.command_timeout must be > 0, got {config.command_timeout}")
    return config


def _load_timeline_config(data: dict) -> TimelineConfig:
    """Load timeline config from TOML data."""
    d = TimelineConfig()
    capacity = _integer(data, "timeline", "capacity", d.capacity)
    sparkline_width = _integer(data, "timeline", "sparkline_width", d.sparkline_width)

    if capacity < 1:
        raise ValueError(f"timeline.capacity must be >= 1, got {capacity}")
    if sparkline_width < 2:
        raise ValueError(f"timeline.sparkline_width must be >= 2, got {sparkline_width}")

    return TimelineConfig(capacity=capacity, sparkline_width=sparkline_width)


def _load_system_config(data: dict) -> SystemConfig:
    """Load system (logging) config from TOML data."""
    d = SystemConfig()
    log_level = _string(data, "system", "log_level", d.log_level).lower()
    if log_level not in VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid system.log_level: {log_level!r}. Must be one of {VALID_LOG_LEVELS}"
        )

    log_max_bytes = _integer(data, "system", "log_max_bytes", d.log_max_bytes)
    log_backup_count = _integer(data, "system", "log_backup_count", d.log_backup_count)
    if log_max_bytes < 0:
        raise ValueError(f"system.log_max_bytes must be >= 0, got {log_max_bytes}")
    if log_backup_count < 0:
        raise ValueError(f"system.log_backup_count must be >= 0, got {log_backup_count}")

    return SystemConfig(
        log_max_bytes=log_max_bytes,
        log_backup_count=log_backup_count,
        log_level=log_level,
    )


def _load_tui_config(data: dict) -> TUIConfig:
    """Load TUI config from TOML data.

    Handles nested [tui.colors.*] sections with defaults.
    """
    tui_defaults = TUIConfig()
    colors_data = _section(data, "colors", "tui.")
    rows_data = _section(colors_data, "rows", "tui.colors.")
    pressure_data = _section(colors_data, "pressure", "tui.colors.")

    r = RowColors()
    p = PressureColors()

    def row_color(key: str) -> str:
        return _string(rows_data, "tui.colors.rows", key, getattr(r, key))

    def pressure_color(key: str) -> str:
        return _string(pressure_data, "tui.colors.pressure", key, getattr(p, key))

    warn_rss_kb = _integer(data, "tui", "warn_rss_kb", tui_defaults.warn_rss_kb)
    critical_rss_kb = _integer(data, "tui", "critical_rss_kb", tui_defaults.critical_rss_kb)
    if warn_rss_kb > critical_rss_kb:
        raise ValueError(
            f"tui.warn_rss_kb ({warn_rss_kb}) must not exceed "
            f"tui.critical_rss_kb ({critical_rss_kb})"
        )
    message_seconds = _number(data, "tui", "message_seconds", tui_defaults.message_seconds)
    if message_seconds < 0:
        raise ValueError(f"tui.message_seconds must be >= 0, got {message_seconds}")

    return TUIConfig(
        colors=TUIColorsConfig(
            rows=RowColors(
                normal=row_color("normal"),
                warn=row_color("warn"),
                critical=row_color("critical"),
                selected=row_color("selected"),
                tree=row_color("tree"),
                pid=row_color("pid"),
                trend=row_color("trend"),
            ),
            pressure=PressureColors(
                normal=pressure_color("normal"),
                warn=pressure_color("warn"),
                critical=pressure_color("critical"),
            ),
        ),
        message_seconds=message_seconds,
        warn_rss_kb=warn_rss_kb,
        critical_rss_kb=critical_rss_kb,
    )
