"""Command-line interface for screenwatch."""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from screenwatch.config import Config, find_config_file, load_config, merge_cli_options
from screenwatch.exceptions import ClassifierUnavailableError, ConfigError
from screenwatch.models import EndReason, LockReason, SessionSnapshot
from screenwatch.storage import SessionStore

console = Console()

LOCK_COLORS = {
    LockReason.SCREEN_TIME_EXCEEDED: "yellow",
    LockReason.BEDTIME: "magenta",
}

STATUS_STYLES = {
    "good": "green",
    "warning": "yellow",
    "exceeded": "red",
}


def _format_ts(value: object, fmt: str = "%Y-%m-%d %H:%M") -> str:
    if isinstance(value, datetime):
        return value.strftime(fmt)
    return str(value)[:16] if value is not None else ""


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to config file (default: searches standard locations)",
)
@click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to the DuckDB history file",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None, db: Path | None) -> None:
    """screenwatch - camera-based screen-time and bedtime enforcement."""
    ctx.ensure_object(dict)

    try:
        cfg = load_config(config)
    except ConfigError as e:
        console.print(f"[red]Config error: {e}[/red]")
        sys.exit(1)

    # CLI --db overrides config file
    merge_cli_options(cfg, db=db)
    cfg.db_path.parent.mkdir(parents=True, exist_ok=True)

    ctx.obj["config"] = cfg
    ctx.obj["db_path"] = cfg.db_path

    config_path = config or find_config_file()
    if config_path:
        ctx.obj["config_path"] = config_path


@main.command()
@click.pass_context
def policies(ctx: click.Context) -> None:
    """Show the effective age-group policy table."""
    cfg: Config = ctx.obj["config"]

    table = Table(title="Age-Group Policies")
    table.add_column("Group")
    table.add_column("Description")
    table.add_column("Limit", justify="right")
    table.add_column("Bedtime", justify="right")
    table.add_column("Monitored")

    for policy in cfg.policies.values():
        monitored = policy.is_child
        table.add_row(
            policy.age_group.value,
            policy.description,
            f"{policy.limit_minutes} min" if policy.limit_minutes > 0 else "-",
            policy.bedtime.strftime("%H:%M") if monitored else "-",
            "[green]yes[/green]" if monitored else "[dim]no[/dim]",
        )

    console.print(table)
    console.print(
        f"[dim]Confidence threshold {cfg.confidence_threshold:.0f}%, "
        f"silence timeout {cfg.silence_timeout_ms // 1000}s, "
        f"capture every {cfg.detection_interval_ms // 1000}s[/dim]"
    )


@main.command()
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@click.option("--threshold", type=float, default=None, help="Confidence threshold in percent")
@click.option("--timeout", type=int, default=None, help="Silence timeout in milliseconds")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def replay(
    ctx: click.Context,
    file: Path,
    threshold: float | None,
    timeout: int | None,
    verbose: bool,
) -> None:
    """Replay recorded predictions through the engine on simulated time.

    FILE is a JSON-lines file of {"at", "label", "confidence"} records.

    Example:
        screenwatch replay saturday.jsonl --threshold 80
    """
    from screenwatch.replay import load_predictions, replay as run_replay

    cfg: Config = ctx.obj["config"]
    merge_cli_options(cfg, threshold=threshold, timeout=timeout)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        records = load_predictions(file)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if not records:
        console.print("[yellow]No predictions in file[/yellow]")
        return

    result = asyncio.run(run_replay(
        records,
        policies=cfg.policies,
        confidence_threshold=cfg.confidence_threshold,
        silence_timeout=cfg.silence_timeout,
    ))

    table = Table(title=f"Replay of {file.name} ({len(records)} predictions)")
    table.add_column("Time", style="dim")
    table.add_column("Event")
    table.add_column("Group")
    table.add_column("Detail")

    for entry in result.timeline:
        style = {"session_started": "green", "session_ended": "cyan", "lock": "red bold"}.get(
            entry.kind, "white"
        )
        table.add_row(
            entry.at.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{style}]{entry.kind}[/{style}]",
            entry.age_group.value if entry.age_group else "",
            entry.detail,
        )

    console.print(table)
    console.print(
        f"[cyan]{len(result.sessions)} sessions, {len(result.locks)} locks, "
        f"{result.stats.get('samples_accepted', 0)} accepted / "
        f"{result.stats.get('samples_rejected', 0)} rejected samples[/cyan]"
    )


@main.command()
@click.option("--limit", type=int, default=20, help="Number of sessions to show")
@click.pass_context
def sessions(ctx: click.Context, limit: int) -> None:
    """Show recent sessions."""
    db_path: Path = ctx.obj["db_path"]

    if not db_path.exists():
        console.print("[yellow]No sessions recorded yet[/yellow]")
        return

    with SessionStore(db_path, read_only=True) as store:
        rows = store.get_recent_sessions(limit)

    if not rows:
        console.print("[yellow]No sessions recorded yet[/yellow]")
        return

    table = Table(title="Recent Sessions")
    table.add_column("Started", style="dim")
    table.add_column("Ended", style="dim")
    table.add_column("Group")
    table.add_column("Minutes", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("End reason")
    table.add_column("Lock")

    for row in rows:
        table.add_row(
            _format_ts(row["started_at"]),
            _format_ts(row["ended_at"], "%H:%M"),
            row["age_group"],
            str(row["elapsed_minutes"]),
            str(row["limit_minutes"]) if row["limit_minutes"] else "-",
            row["end_reason"],
            f"[red]{row['lock_reason']}[/red]" if row["lock_reason"] else "",
        )

    console.print(table)


@main.command()
@click.option("--days", type=int, default=7, help="Days to look back")
@click.pass_context
def activity(ctx: click.Context, days: int) -> None:
    """Show daily screen-time usage per age group."""
    db_path: Path = ctx.obj["db_path"]

    if not db_path.exists():
        console.print("[yellow]No data for the specified time period[/yellow]")
        return

    with SessionStore(db_path, read_only=True) as store:
        rows = store.get_daily_activity(days)

    if not rows:
        console.print("[yellow]No data for the specified time period[/yellow]")
        return

    table = Table(title=f"Daily Activity (last {days}d)")
    table.add_column("Day")
    table.add_column("Group")
    table.add_column("Sessions", justify="right")
    table.add_column("Minutes", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Overage", justify="right")
    table.add_column("Bedtime locks", justify="right")
    table.add_column("Status")

    for row in rows:
        style = STATUS_STYLES.get(row["status"], "white")
        table.add_row(
            str(row["day"]),
            row["age_group"],
            str(row["sessions"]),
            str(row["minutes"]),
            str(row["limit_minutes"]) if row["limit_minutes"] else "-",
            str(row["overage_minutes"]),
            str(row["bedtime_violations"]),
            f"[{style}]{row['status']}[/{style}]",
        )

    console.print(table)


@main.command()
@click.option("--days", type=int, default=None, help="Delete history older than N days (default: 90)")
@click.option("--vacuum", is_flag=True, help="Run VACUUM after cleanup to reclaim disk space")
@click.pass_context
def cleanup(ctx: click.Context, days: int | None, vacuum: bool) -> None:
    """Delete old sessions and lock events."""
    cfg: Config = ctx.obj["config"]
    db_path: Path = ctx.obj["db_path"]
    retention = days if days is not None else cfg.retention_days

    with SessionStore(db_path) as store:
        stats = store.get_table_stats()
        console.print("[cyan]Current data:[/cyan]")
        console.print(f"  Sessions: {stats['sessions']['count']:,} rows")
        console.print(f"  Lock events: {stats['lock_events']['count']:,} rows")

        result = store.cleanup_old_data(retention)
        console.print(f"[green]Deleted {result['sessions_deleted']:,} sessions[/green]")
        console.print(f"[green]Deleted {result['locks_deleted']:,} lock events[/green]")

        if vacuum:
            store.vacuum()
            console.print("[green]VACUUM complete[/green]")


@main.command()
@click.option("--frames-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Directory the camera writes snapshots into")
@click.option("--classifier-url", type=str, default=None, help="Inference endpoint URL")
@click.option("--interval", type=int, default=None, help="Capture interval in milliseconds (default: 30000)")
@click.option("--threshold", type=float, default=None, help="Confidence threshold in percent (default: 75)")
@click.option("--timeout", type=int, default=None, help="Silence timeout in milliseconds (default: 300000)")
@click.option("--lock-command", type=str, default=None, help="Command run when a lock is required")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def monitor(
    ctx: click.Context,
    frames_dir: Path | None,
    classifier_url: str | None,
    interval: int | None,
    threshold: float | None,
    timeout: int | None,
    lock_command: str | None,
    verbose: bool,
) -> None:
    """Monitor the camera and enforce screen-time policies.

    Example:
        screenwatch monitor --frames-dir /run/cam --classifier-url http://localhost:8500/classify \\
            --lock-command "loginctl lock-session"
    """
    from screenwatch.classifier import ClassifierGateway, HttpClassificationSource, HttpClassifierConfig
    from screenwatch.engine import MonitoringEngine
    from screenwatch.notifiers import CommandLocker, WebhookConfig, WebhookNotifier
    from screenwatch.scheduler import SamplingScheduler, SchedulerConfig
    from screenwatch.sensors import DirectoryConfig, DirectoryFrameSource
    from screenwatch.session import SessionManager

    cfg: Config = ctx.obj["config"]
    db_path: Path = ctx.obj["db_path"]

    merge_cli_options(
        cfg,
        frames_dir=frames_dir,
        classifier_url=classifier_url,
        interval=interval,
        threshold=threshold,
        timeout=timeout,
        lock_command=lock_command,
    )

    if cfg.frames_dir is None or not cfg.classifier_url:
        console.print("[red]Error: need both a frames directory and a classifier URL[/red]")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if "config_path" in ctx.obj:
        console.print(f"[dim]Config: {ctx.obj['config_path']}[/dim]")

    store = SessionStore(db_path)
    store.connect()

    source = HttpClassificationSource(HttpClassifierConfig(
        url=cfg.classifier_url,
        health_url=cfg.classifier_health_url,
        timeout_seconds=cfg.classifier_timeout,
    ))
    sensor = DirectoryFrameSource(DirectoryConfig(
        frames_dir=cfg.frames_dir,
        max_age_seconds=cfg.frame_max_age,
    ))
    gateway = ClassifierGateway(source, cfg.policies, cfg.confidence_threshold)
    session_manager = SessionManager(cfg.policies, cfg.silence_timeout)
    engine = MonitoringEngine(gateway, session_manager, store=store)
    scheduler = SamplingScheduler(
        engine,
        sensor,
        config=SchedulerConfig(detection_interval_ms=cfg.detection_interval_ms),
    )

    locker = CommandLocker(cfg.lock_command) if cfg.lock_command else None
    webhook = None
    if cfg.webhook_enabled and cfg.webhook_url:
        webhook = WebhookNotifier(WebhookConfig(url=cfg.webhook_url))

    def handle_update(snapshot: Optional[SessionSnapshot]) -> None:
        if snapshot is None:
            return
        if verbose:
            remaining = snapshot.remaining_minutes
            console.print(
                f"[dim]{snapshot.last_observed_at.strftime('%H:%M:%S')}[/dim] "
                f"[cyan]{snapshot.age_group.value}[/cyan] "
                f"{snapshot.elapsed_minutes} min used"
                + (f", {remaining} left" if remaining is not None else "")
            )

    def handle_end(snapshot: SessionSnapshot, reason: EndReason, ended_at: datetime) -> None:
        console.print(
            f"[cyan]Session ended[/cyan] {snapshot.age_group.value} "
            f"after {snapshot.elapsed_minutes} min ({reason.value})"
        )
        if webhook:
            webhook.dispatch_session_end(snapshot, reason, ended_at)

    def handle_lock(reason: LockReason) -> None:
        color = LOCK_COLORS.get(reason, "red")
        snapshot = engine.current_session
        console.print(f"[{color}][LOCK][/{color}] {reason.value}")
        if locker:
            # Lock commands may block; keep them off the event loop
            asyncio.get_running_loop().run_in_executor(None, locker.lock, reason)
        if webhook:
            webhook.dispatch_lock(reason, snapshot, datetime.now())

    engine.subscribe(handle_update)
    session_manager.subscribe_ended(handle_end)
    engine.on_lock_required(handle_lock)

    def print_stats() -> None:
        stats = {**engine.stats, **scheduler.stats}
        console.print()
        console.print("[green]Monitoring stopped[/green]")
        console.print(f"  Frames processed: {stats['frames']:,}")
        console.print(f"  Accepted detections: {stats['samples_accepted']:,}")
        console.print(f"  Rejected detections: {stats['samples_rejected']:,}")
        console.print(f"  Failed samples: {stats['samples_failed'] + stats['capture_failures']:,}")
        console.print(f"  Locks signaled: {stats['locks']:,}")

    async def run() -> None:
        if not await source.load():
            raise ClassifierUnavailableError(f"Classifier at {cfg.classifier_url} is not ready")

        await scheduler.start()
        console.print(f"[green]Monitoring {cfg.frames_dir} every {cfg.detection_interval_ms // 1000}s[/green]")
        if locker:
            console.print(f"[cyan]Lock command: {cfg.lock_command}[/cyan]")
        if webhook:
            console.print("[cyan]Webhook notifications enabled[/cyan]")
        console.print("[dim]Press Ctrl+C to stop[/dim]")
        console.print()

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            pass
        finally:
            await scheduler.stop()
            await source.close()
            if webhook:
                # Waits for the session-end queued by scheduler.stop()
                await webhook.close()

    try:
        asyncio.run(run())
    except ClassifierUnavailableError as e:
        console.print(f"[red]Error: {e}[/red]")
        store.close()
        sys.exit(1)
    except KeyboardInterrupt:
        pass

    store.close()
    print_stats()


if __name__ == "__main__":
    main()
