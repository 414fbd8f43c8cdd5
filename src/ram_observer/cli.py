"""CLI commands for ram-observer."""

import click

SORT_CHOICES = ["rss", "virt", "comp", "swap", "age"]


def _load_config():
    """Load config, turning validation errors into a click error."""
    from ram_observer.config import Config

    try:
        return Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e


def _take_snapshot(config, expand_all: bool = True):
    """Collect one snapshot and return (forest, rows, stats) for one-shot commands."""
    from ram_observer.collector import ProcessCollector, SystemStatsCollector
    from ram_observer.tree import build_forest, flatten, walk

    timeout = config.refresh.command_timeout
    records = ProcessCollector(timeout=timeout).collect()
    stats = SystemStatsCollector(timeout=timeout).collect()
    forest = build_forest(records)
    if expand_all:
        for node in walk(forest):
            node.expanded = True
    return forest, flatten(forest), stats


@click.group(invoke_without_command=True)
@click.version_option(package_name="ram-observer")
@click.pass_context
def main(ctx) -> None:
    """Watch process memory as a live tree."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(tui)


@main.command()
def tui() -> None:
    """Launch interactive dashboard."""
    from ram_observer.logging import configure
    from ram_observer.tui import run_tui

    config = _load_config()
    configure(config, source="tui")
    run_tui(config)


@main.command()
@click.option(
    "--sort",
    "sort_name",
    type=click.Choice(SORT_CHOICES, case_sensitive=False),
    default="rss",
    help="Metric used to order siblings",
)
@click.option("--filter", "query", default=None, help="Only rows whose name or command match")
@click.option(
    "--expand-all/--collapsed",
    default=True,
    help="Show every process, or only the roots",
)
@click.option("--limit", "-n", default=0, type=int, help="Max rows to print (0 = all)")
def tree(sort_name: str, query: str | None, expand_all: bool, limit: int) -> None:
    """Print the process tree once."""
    from ram_observer import logging as rlog
    from ram_observer.tree import MetricKey, flatten
    from ram_observer.tui.app import column_header, format_row

    config = _load_config()
    forest, _, _ = _take_snapshot(config, expand_all=expand_all)
    if not forest:
        rlog.snapshot_empty()
        raise SystemExit(1)

    sort_key = MetricKey[sort_name.upper()]
    rows = flatten(forest, sort_key, query)
    if limit > 0:
        rows = rows[:limit]

    width = 32
    click.echo(column_header(sort_key, width))
    for row in rows:
        click.echo(format_row(row, width=width))


@main.command()
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for the snapshot file (default from config)",
)
def export(output_dir: str | None) -> None:
    """Write a one-shot JSON snapshot of every process."""
    from pathlib import Path

    from ram_observer import logging as rlog
    from ram_observer.export import export_snapshot

    config = _load_config()
    _, rows, stats = _take_snapshot(config)
    if not rows:
        rlog.snapshot_empty()
        raise SystemExit(1)

    directory = Path(output_dir).expanduser() if output_dir else config.export_dir
    try:
        path = export_snapshot(rows, stats, directory)
    except OSError as e:
        raise click.ClickException(f"Export failed: {e}") from e
    rlog.export_written(path, len(rows))


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    cfg = _load_config()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo(f"Log file: {cfg.log_path}")
    click.echo()
    click.echo("[refresh]")
    click.echo(f"  interval = {cfg.refresh.interval}")
    click.echo(f"  enrich_cooldown = {cfg.refresh.enrich_cooldown}")
    click.echo(f"  enrich_batch_size = {cfg.refresh.enrich_batch_size}")
    click.echo(f"  enrich_pace = {cfg.refresh.enrich_pace}")
    click.echo(f"  command_timeout = {cfg.refresh.command_timeout}")
    click.echo()
    click.echo("[timeline]")
    click.echo(f"  capacity = {cfg.timeline.capacity}")
    click.echo(f"  sparkline_width = {cfg.timeline.sparkline_width}")
    click.echo()
    click.echo("[export]")
    click.echo(f"  directory = {cfg.export.directory}")
    click.echo()
    click.echo("[tui]")
    click.echo(f"  warn_rss_kb = {cfg.tui.warn_rss_kb}")
    click.echo(f"  critical_rss_kb = {cfg.tui.critical_rss_kb}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from ram_observer import logging as rlog

    cfg = _load_config()

    if not cfg.config_path.exists():
        cfg.save()
        rlog.config_created(cfg.config_path)

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from ram_observer import logging as rlog
    from ram_observer.config import Config

    cfg = Config()
    cfg.save()
    rlog.config_reset(cfg.config_path)
