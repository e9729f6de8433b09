"""Restore drills: prove a stored backup can be restored and queried.

One iteration walks a fixed sequence of states::

    SELECT_ARTIFACT -> DOWNLOAD -> PROVISION -> RESTORE -> VERIFY -> TEARDOWN -> REPORT

Teardown runs no matter which earlier state failed: the downloaded file is
removed and, once provisioning has been attempted, the ephemeral database is
dropped. A drill must never leave a ``verify_*`` database or a local artifact
behind.
"""

from __future__ import annotations

import logging
import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from backup_drill.artifacts import ephemeral_database_name, format_timestamp, is_encrypted, latest_artifact
from backup_drill.config import DrillConfig
from backup_drill.connection import ConnectionTarget
from backup_drill.database import DatabaseTools
from backup_drill.errors import DatabaseError, DrillError, StorageError, UnsafeTargetError
from backup_drill.notify import NotificationEvent, Notifier, Status
from backup_drill.pipeline import format_bytes, remove_files, unpack
from backup_drill.safety import check_targets
from backup_drill.storage.transport import StorageTransport

logger = logging.getLogger(__name__)

LIVENESS_SQL = "SELECT version();"
TABLE_COUNT_SQL = "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = 'public';"
ROW_STATS_SQL = (
    "SELECT schemaname, relname, n_live_tup FROM pg_stat_user_tables "
    "WHERE schemaname = 'public' ORDER BY relname LIMIT 10;"
)


class RestoreState(str, Enum):
    SELECT_ARTIFACT = "select_artifact"
    DOWNLOAD = "download"
    PROVISION = "provision"
    RESTORE = "restore"
    VERIFY = "verify"
    TEARDOWN = "teardown"
    REPORT = "report"


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str = ""
    required: bool = True


@dataclass
class VerificationRun:
    """State of a single restore drill."""

    started_at: datetime
    database: str
    local_path: Path
    state: RestoreState = RestoreState.SELECT_ARTIFACT
    artifact_key: str = ""
    status: Status | None = None
    message: str = ""
    provisioned: bool = False
    restore_failed: bool = False
    restore_errors: list[str] = field(default_factory=list)
    checks: list[CheckResult] = field(default_factory=list)
    teardown_errors: list[str] = field(default_factory=list)
    duration_seconds: int = 0

    @property
    def failures(self) -> int:
        return sum(1 for c in self.checks if c.required and not c.passed)

    @property
    def ok(self) -> bool:
        return self.status is Status.SUCCESS


class _SetupError(Exception):
    """Select, download or provisioning failed: the drill reports ``error``."""


class RestoreCycle:
    """Runs restore drills against the verification server."""

    def __init__(
        self,
        config: DrillConfig,
        db: DatabaseTools,
        transport: StorageTransport,
        notifier: Notifier,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        if config.verification is None:
            raise ValueError("RestoreCycle requires a verification target")
        safety = check_targets(config.production, config.verification)
        if safety.blocked:
            raise UnsafeTargetError(safety.reason)
        self.config = config
        self.server: ConnectionTarget = config.verification
        self.db = db
        self.transport = transport
        self.notifier = notifier
        self.clock = clock

    def run(self) -> VerificationRun:
        started = time.monotonic()
        now = self.clock()
        run = VerificationRun(
            started_at=now,
            database=ephemeral_database_name(now),
            local_path=self.config.work_dir / f"verify_{format_timestamp(now)}.download",
        )
        logger.info(f"Starting restore verification at {now.isoformat(timespec='seconds')}")

        try:
            run.artifact_key = self._select()
            self._download(run)
            self._provision(run)
            self._restore(run)
            if not run.restore_failed:
                self._verify(run)
        except _SetupError as e:
            run.status = Status.ERROR
            run.message = str(e)
        finally:
            self._teardown(run)

        run.duration_seconds = int(time.monotonic() - started)
        self._report(run)
        return run

    # ── states ──────────────────────────────────────────────────────────

    def _select(self) -> str:
        prefix = self.config.storage.prefix
        if self.config.verify_backup_file:
            key = f"{prefix}/{self.config.verify_backup_file.lstrip('/')}"
            logger.info(f"Verifying specific backup: {self.config.verify_backup_file}")
            return key

        if not self.config.verify_latest:
            raise _SetupError("No backup specified for verification")

        logger.info("Finding latest backup...")
        try:
            objects = self.transport.list()
        except StorageError as e:
            raise _SetupError(f"Failed to list backups: {e}") from e

        latest = latest_artifact([obj.key for obj in objects])
        if latest is None:
            raise _SetupError("No backups found in storage")
        logger.info(f"Verifying latest backup: {latest.filename}")
        return latest.key

    def _download(self, run: VerificationRun) -> None:
        run.state = RestoreState.DOWNLOAD
        logger.info(f"Downloading backup: {run.artifact_key}")
        try:
            run.local_path.parent.mkdir(parents=True, exist_ok=True)
            self.transport.get(run.artifact_key, run.local_path)
        except (StorageError, OSError) as e:
            raise _SetupError(f"Failed to download backup: {e}") from e

        size = run.local_path.stat().st_size if run.local_path.exists() else 0
        if size == 0:
            raise _SetupError("Downloaded backup file is empty")
        logger.info(f"Downloaded: {format_bytes(size)}")

    def _provision(self, run: VerificationRun) -> None:
        run.state = RestoreState.PROVISION
        run.provisioned = True
        logger.info(f"Creating temporary database: {run.database}")
        try:
            self.db.create_database(self.server, run.database)
        except DatabaseError as e:
            raise _SetupError(f"Failed to create temporary database: {e}") from e

    def _restore(self, run: VerificationRun) -> None:
        run.state = RestoreState.RESTORE
        logger.info(f"Restoring backup to {run.database}...")
        target = self.server.with_database(run.database)
        try:
            with unpack(run.local_path, is_encrypted(run.artifact_key), self.config.encryption_key) as sql:
                run.restore_errors = self.db.restore(target, sql, strict=self.config.restore_strict)
        except (DrillError, OSError, EOFError, zlib.error) as e:
            run.restore_failed = True
            run.message = f"Restore step failed: {e}"
            logger.error(run.message)
            return

        if run.restore_errors:
            logger.warning(f"Restore completed with {len(run.restore_errors)} statement error(s)")
            for line in run.restore_errors[:5]:
                logger.warning(f"  {line}")
        else:
            logger.info("Restore completed")

    def _verify(self, run: VerificationRun) -> None:
        run.state = RestoreState.VERIFY
        target = self.server.with_database(run.database)
        logger.info("Running verification queries...")

        if run.restore_errors:
            run.checks.append(
                CheckResult(
                    "restore",
                    False,
                    f"{len(run.restore_errors)} statement error(s), first: {run.restore_errors[0]}",
                )
            )

        run.checks.append(self._check(target, "liveness", LIVENESS_SQL))

        try:
            count = int(self.db.query(target, TABLE_COUNT_SQL).splitlines()[0])
        except (DatabaseError, ValueError, IndexError) as e:
            run.checks.append(CheckResult("table_count", False, f"table count query failed: {e}"))
        else:
            floor = self.config.min_table_count
            passed = count >= floor
            run.checks.append(CheckResult("table_count", passed, f"found {count} tables (minimum: {floor})"))

        stats = self._check(target, "row_stats", ROW_STATS_SQL)
        stats.required = False
        run.checks.append(stats)

        if self.config.verify_sql:
            run.checks.append(self._check(target, "custom_sql", self.config.verify_sql))

        if self.config.verify_queries_file is not None:
            try:
                self.db.execute_file(target, self.config.verify_queries_file)
            except DatabaseError as e:
                run.checks.append(CheckResult("queries_file", False, str(e)))
            else:
                run.checks.append(CheckResult("queries_file", True, str(self.config.verify_queries_file)))

        for check in run.checks:
            if check.passed:
                logger.info(f"  [ok] {check.name}: {check.detail}")
            elif check.required:
                logger.error(f"  [FAIL] {check.name}: {check.detail}")
            else:
                logger.warning(f"  [warn] {check.name}: {check.detail}")

    def _check(self, target: ConnectionTarget, name: str, sql: str) -> CheckResult:
        try:
            output = self.db.query(target, sql)
        except DatabaseError as e:
            return CheckResult(name, False, str(e))
        first = output.splitlines()[0] if output else ""
        return CheckResult(name, True, first[:120] or "ok")

    def _teardown(self, run: VerificationRun) -> None:
        failed_in = run.state
        run.state = RestoreState.TEARDOWN
        logger.info("Cleaning up...")

        try:
            remove_files(run.local_path)
        except OSError as e:
            run.teardown_errors.append(f"could not remove {run.local_path}: {e}")

        if run.provisioned:
            try:
                self.db.drop_database(self.server, run.database)
            except DatabaseError as e:
                run.teardown_errors.append(f"could not drop {run.database}: {e}")

        for err in run.teardown_errors:
            logger.error(f"Teardown after {failed_in.value}: {err}")

    def _report(self, run: VerificationRun) -> None:
        run.state = RestoreState.REPORT

        if run.status is None:
            if run.restore_failed:
                run.status = Status.FAILURE
            elif run.failures:
                run.status = Status.FAILURE
                run.message = f"{run.failures} verification check(s) failed"
                if run.restore_errors:
                    run.message += f"; restore reported {len(run.restore_errors)} statement error(s)"
            else:
                run.status = Status.SUCCESS
                run.message = "Restore verification completed successfully"

        if run.teardown_errors:
            # A leaked database needs an operator even if the restore was fine
            if run.status is Status.SUCCESS:
                run.status = Status.FAILURE
            run.message += f" (teardown: {'; '.join(run.teardown_errors)})"

        if run.ok:
            logger.info(f"SUCCESS: {run.message} in {run.duration_seconds}s")
        else:
            logger.error(f"{run.status.value.upper()}: {run.message}")

        self.notifier.notify(
            NotificationEvent(
                status=run.status,
                message=run.message,
                backup_file=run.artifact_key,
                duration_seconds=run.duration_seconds,
            )
        )
