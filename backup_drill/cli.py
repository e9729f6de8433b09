"""CLI for the backup and restore-drill services (Typer + Rich)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from backup_drill.artifacts import parse_artifact_key
from backup_drill.backup import BackupCycle, CycleReport
from backup_drill.config import DrillConfig, Mode, load_config
from backup_drill.database import PostgresTools
from backup_drill.errors import ConfigError, StorageError, UnsafeTargetError
from backup_drill.health import record_cycle, reset_state, set_status, start_health_server
from backup_drill.logging_config import init_logging
from backup_drill.notify import Notifier
from backup_drill.pipeline import format_bytes
from backup_drill.retention import RetentionPruner
from backup_drill.safety import enforce
from backup_drill.scheduler import CancellationToken, Scheduler, install_signal_handlers
from backup_drill.scrub import register_secrets, scrub
from backup_drill.storage import create_store
from backup_drill.storage.transport import StorageTransport
from backup_drill.verify import RestoreCycle, VerificationRun

app = typer.Typer(
    name="backup-drill",
    help="PostgreSQL backups with scheduled restore drills.",
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger("backup_drill.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_UNSAFE = 3

BACKUP_SERVICE = "postgres-backup"
VERIFY_SERVICE = "postgres-restore-verify"


def _load_config(mode: Mode) -> DrillConfig:
    """Load and validate config, then run the safety guard. Exits on fatal errors."""
    load_dotenv()
    init_logging()
    try:
        config = load_config(mode)
    except UnsafeTargetError as e:
        logger.critical(f"CRITICAL SAFETY CHECK FAILED: {e}. Refusing to start.")
        _refuse_unsafe()
    except ConfigError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise typer.Exit(EXIT_CONFIG)

    register_secrets(*config.secrets)

    try:
        enforce(config.production, config.verification)
    except UnsafeTargetError:
        _refuse_unsafe()
    return config


def _refuse_unsafe() -> None:
    console.print(
        Panel(
            "[red]VERIFY_DATABASE_URL points at the production database.[/]\n\n"
            "Restore drills create and drop databases and stream full dumps into the\n"
            "verification server. Set VERIFY_DATABASE_URL to a separate PostgreSQL\n"
            "instance (or at least a different database).\n\n"
            "Refusing to start. This is a safety feature.",
            title="[red]CRITICAL SAFETY CHECK FAILED[/]",
        )
    )
    raise typer.Exit(EXIT_UNSAFE)


def _safe(e: Exception) -> str:
    """Error text for the console: secrets masked, markup escaped."""
    return escape(scrub(str(e)))


def _transport(config: DrillConfig) -> StorageTransport:
    return StorageTransport(
        create_store(config.storage),
        prefix=config.storage.prefix,
        attempts=config.retry_attempts,
        base_delay=config.retry_delay,
    )


def _format_age(dt: datetime) -> str:
    """Human-readable age from a datetime."""
    delta = datetime.now(UTC) - dt
    hours = delta.total_seconds() / 3600
    if hours < 1:
        return f"{int(delta.total_seconds() / 60)}m ago"
    elif hours < 24:
        return f"{hours:.1f}h ago"
    else:
        return f"{delta.days}d ago"


def _run_scheduled(name: str, cycle, interval: int, health_port: int) -> None:
    token = CancellationToken()
    install_signal_handlers(token)

    reset_state(name)
    if health_port:
        start_health_server(health_port)
    set_status("ready")

    def on_result(result: CycleReport | VerificationRun) -> None:
        record_cycle(result.status.value, result.message)

    def on_error(exc: Exception) -> None:
        record_cycle("error", scrub(f"{type(exc).__name__}: {exc}"))

    def run_cycle():
        set_status("running")
        return cycle.run()

    Scheduler(name, run_cycle, interval, token, on_result=on_result, on_error=on_error).run()


# ── backup ──────────────────────────────────────────────────────────────


@app.command()
def backup(
    once: Annotated[bool, typer.Option("--once", help="Run a single backup and exit")] = False,
) -> None:
    """Run the backup service (continuous unless --once)."""
    config = _load_config("backup")
    target = config.production

    logger.info("PostgreSQL backup service starting")
    logger.info(f"Database: {target.masked()}")
    logger.info(f"Storage: {config.storage.location}")
    logger.info(f"Retention: {config.retention_days} days, compression level {config.compression_level}")
    logger.info(f"Encryption: {'enabled' if config.encryption_enabled else 'disabled'}")

    db = PostgresTools()
    transport = _transport(config)
    notifier = Notifier(config.webhook, service=BACKUP_SERVICE, host=target.address)
    cycle = BackupCycle(config, db, transport, notifier)

    if once:
        report = cycle.run()
        raise typer.Exit(EXIT_OK if report.ok else EXIT_FAILURE)

    # Initial checks only warn; each iteration re-checks
    if not db.probe(target):
        logger.warning("Database connectivity check failed (will retry during backup)")
    if not transport.probe():
        logger.warning("Storage connectivity check failed (will retry during backup)")

    _run_scheduled("backup", cycle, config.backup_interval, config.health_port)


# ── verify ──────────────────────────────────────────────────────────────


@app.command()
def verify(
    once: Annotated[bool, typer.Option("--once", help="Run a single restore drill and exit")] = False,
) -> None:
    """Run the restore-verification service (continuous unless --once)."""
    config = _load_config("verify")
    server = config.verification

    logger.info("PostgreSQL restore verification service starting")
    logger.info(f"Verify server: {server.masked()}")
    logger.info(f"Storage: {config.storage.location}")
    logger.info(f"Verify interval: {config.verify_interval}s")
    if config.verify_backup_file:
        logger.info(f"Specific backup: {config.verify_backup_file}")
    if config.verify_sql:
        logger.info("Custom VERIFY_SQL: enabled")
    if config.verify_queries_file:
        logger.info(f"Verification queries file: {config.verify_queries_file}")

    db = PostgresTools()
    transport = _transport(config)
    notifier = Notifier(config.verify_webhook, service=VERIFY_SERVICE, host=server.address)
    cycle = RestoreCycle(config, db, transport, notifier)

    if not once:
        if not db.probe(server):
            logger.warning("Cannot reach verify database server (will retry on each drill)")
        try:
            count = sum(1 for obj in transport.list() if parse_artifact_key(obj.key))
        except StorageError as e:
            logger.warning(f"Cannot list backups yet: {e}")
        else:
            if count:
                logger.info(f"Found {count} backup(s) in storage")
            else:
                logger.warning("No backups found; the verify service will wait for backups to become available")

    if once:
        run = cycle.run()
        raise typer.Exit(EXIT_OK if run.ok else EXIT_FAILURE)

    _run_scheduled("verify", cycle, config.verify_interval, config.health_port)


# ── healthcheck ─────────────────────────────────────────────────────────


@app.command()
def healthcheck() -> None:
    """Check database and storage connectivity; non-zero exit on failure."""
    config = _load_config("any")
    db = PostgresTools()
    errors = 0

    missing = db.available()
    if missing:
        logger.error(f"Missing PostgreSQL client tools: {', '.join(missing)}")
        errors += 1

    for label, target in (("Database", config.production), ("Verify database", config.verification)):
        if target is None:
            continue
        if db.probe(target):
            logger.info(f"{label} {target.address}/{target.database}: OK")
        else:
            logger.error(f"{label} health check failed: {target.address}/{target.database}")
            errors += 1

    transport = _transport(config)
    if transport.probe():
        logger.info(f"Storage {transport.location}: OK")
    else:
        errors += 1

    if errors:
        logger.error(f"Health check failed: {errors} error(s)")
        raise typer.Exit(EXIT_FAILURE)
    logger.info("Health check passed")


# ── list ────────────────────────────────────────────────────────────────


@app.command("list")
def list_backups() -> None:
    """List stored backup artifacts, newest first."""
    config = _load_config("any")
    try:
        objects = _transport(config).list()
    except StorageError as e:
        console.print(f"[red]Error:[/] {_safe(e)}")
        raise typer.Exit(EXIT_FAILURE)

    rows = [(obj, parse_artifact_key(obj.key)) for obj in objects]
    rows.sort(key=lambda r: (r[1] is not None, r[1].created_at if r[1] else r[0].modified), reverse=True)

    if not rows:
        console.print("[yellow]No backups found.[/]")
        return

    table = Table(title=f"Backups in {config.storage.location}")
    table.add_column("#", style="dim", width=4)
    table.add_column("Filename")
    table.add_column("Size", justify="right")
    table.add_column("Created (UTC)")
    table.add_column("Age", style="dim")
    table.add_column("Encrypted")

    for i, (obj, name) in enumerate(rows, 1):
        if name is None:
            table.add_row(
                str(i), f"[yellow]{escape(obj.filename)}[/]", format_bytes(obj.size), "[dim]unrecognized[/]", "", ""
            )
            continue
        table.add_row(
            str(i),
            escape(obj.filename),
            format_bytes(obj.size),
            name.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            _format_age(name.created_at),
            "yes" if name.encrypted else "no",
        )

    console.print(table)


# ── prune ───────────────────────────────────────────────────────────────


@app.command()
def prune() -> None:
    """Apply the retention policy once."""
    config = _load_config("any")
    pruner = RetentionPruner(_transport(config), config.retention_days)
    try:
        result = pruner.prune()
    except StorageError as e:
        console.print(f"[red]Error:[/] {_safe(e)}")
        raise typer.Exit(EXIT_FAILURE)

    console.print(
        f"Deleted {result.deleted_count}, retained {result.retained_count} "
        f"({len(result.unparsable)} unrecognized, {len(result.failed)} failed)"
    )
    if result.failed:
        raise typer.Exit(EXIT_FAILURE)


# ── status ──────────────────────────────────────────────────────────────


@app.command()
def status() -> None:
    """Show configuration (secrets masked) and the newest backup."""
    config = _load_config("any")

    lines = []
    lines.append(f"[bold]Storage:[/]         {config.storage.location}")
    lines.append(f"[bold]Database:[/]        {config.production.masked() if config.production else '[dim](none)[/]'}")
    lines.append(
        f"[bold]Verify server:[/]   {config.verification.masked() if config.verification else '[dim](none)[/]'}"
    )
    lines.append("")
    lines.append(f"[bold]Backup interval:[/] {config.backup_interval}s")
    lines.append(f"[bold]Verify interval:[/] {config.verify_interval}s")
    lines.append(f"[bold]Retention:[/]       {config.retention_days} days")
    lines.append(f"[bold]Compression:[/]     level {config.compression_level}")
    lines.append(f"[bold]Encryption:[/]      {'enabled' if config.encryption_enabled else 'disabled'}")
    lines.append(f"[bold]Webhook:[/]         {'enabled' if config.webhook.enabled else 'disabled'}")

    try:
        objects = _transport(config).list()
    except StorageError as e:
        lines.append(f"[bold]Backups:[/]         [red]unavailable ({_safe(e)})[/]")
    else:
        names = [n for n in (parse_artifact_key(o.key) for o in objects) if n is not None]
        lines.append(f"[bold]Backups:[/]         {len(names)}")
        if names:
            newest = max(names, key=lambda n: n.created_at)
            lines.append(f"[bold]Latest:[/]          {escape(newest.filename)} ({_format_age(newest.created_at)})")

    console.print(Panel("\n".join(lines), title="Backup Drill Status"))


def main() -> None:
    app()
