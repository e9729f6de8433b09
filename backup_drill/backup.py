"""One backup iteration: probe -> dump -> upload -> cleanup -> prune -> notify."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from backup_drill.config import DrillConfig
from backup_drill.database import DatabaseTools
from backup_drill.errors import DumpError, EmptyArtifactError, EncryptionError, StorageError
from backup_drill.notify import NotificationEvent, Notifier, Status
from backup_drill.pipeline import Artifact, ArtifactPipeline, format_bytes
from backup_drill.retention import PruneResult, RetentionPruner
from backup_drill.storage.transport import StorageTransport

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Outcome of one backup iteration."""

    status: Status
    message: str
    artifact_key: str = ""
    size: int = 0
    duration_seconds: int = 0
    pruned: PruneResult | None = None

    @property
    def ok(self) -> bool:
        return self.status is Status.SUCCESS


class _Abort(Exception):
    """Ends the current iteration early with a failure report."""


class BackupCycle:
    """Produces, uploads and prunes one backup.

    ``run()`` never raises for operational problems; every early exit becomes
    a ``failure`` report and a notification.
    """

    def __init__(
        self,
        config: DrillConfig,
        db: DatabaseTools,
        transport: StorageTransport,
        notifier: Notifier,
        pipeline: ArtifactPipeline | None = None,
        pruner: RetentionPruner | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        if config.production is None:
            raise ValueError("BackupCycle requires a production target")
        self.config = config
        self.target = config.production
        self.db = db
        self.transport = transport
        self.notifier = notifier
        self.pipeline = pipeline or ArtifactPipeline(
            db,
            compression_level=config.compression_level,
            encryption_key=config.encryption_key,
            work_dir=config.work_dir,
        )
        self.pruner = pruner or RetentionPruner(transport, config.retention_days, clock=clock)
        self.clock = clock

    def run(self) -> CycleReport:
        started = time.monotonic()
        created_at = self.clock()
        artifact: Artifact | None = None
        pruned: PruneResult | None = None

        try:
            self._check_connectivity()
            artifact = self._produce(created_at)
            self._upload(artifact)
        except _Abort as e:
            report = CycleReport(Status.FAILURE, str(e), duration_seconds=self._elapsed(started))
            logger.error(f"Backup failed: {report.message}")
            self._notify(report)
            return report
        finally:
            if artifact is not None:
                artifact.cleanup()

        try:
            pruned = self.pruner.prune()
        except (StorageError, OSError) as e:
            logger.warning(f"Retention pruning failed (non-fatal): {e}")

        report = CycleReport(
            Status.SUCCESS,
            f"Backup {artifact.key} completed ({format_bytes(artifact.size)})",
            artifact_key=artifact.key,
            size=artifact.size,
            duration_seconds=self._elapsed(started),
            pruned=pruned,
        )
        logger.info(f"Backup completed successfully in {report.duration_seconds}s")
        logger.info(f"Backup location: {self.transport.store.location}/{artifact.key}")
        self._notify(report)
        return report

    def _elapsed(self, started: float) -> int:
        return int(time.monotonic() - started)

    def _check_connectivity(self) -> None:
        logger.info("Checking connectivity...")
        unreachable = []
        if not self.db.probe(self.target):
            logger.error(f"Cannot connect to database: {self.target.address}/{self.target.database}")
            unreachable.append(f"database {self.target.address}/{self.target.database}")
        if not self.transport.probe():
            unreachable.append(f"storage {self.transport.location}")
        if unreachable:
            raise _Abort(f"Connectivity check failed: cannot reach {', '.join(unreachable)}")
        logger.info("Connectivity check passed")

    def _produce(self, created_at: datetime) -> Artifact:
        logger.info("Creating database dump...")
        try:
            return self.pipeline.produce(self.target, created_at, self.config.storage.prefix)
        except EmptyArtifactError as e:
            raise _Abort(f"Dump file is empty: {e}") from e
        except EncryptionError as e:
            raise _Abort(f"Encryption failed: {e}") from e
        except DumpError as e:
            raise _Abort(f"Dump failed: {e}") from e
        except OSError as e:
            raise _Abort(f"Could not write dump file: {e}") from e

    def _upload(self, artifact: Artifact) -> None:
        logger.info(f"Uploading {artifact.key} ({format_bytes(artifact.size)})...")
        metadata = {
            "timestamp": artifact.created_at.isoformat(timespec="seconds"),
            "host": self.target.host,
            "database": self.target.database,
            "size": str(artifact.size),
        }
        started = time.monotonic()
        try:
            self.transport.put(artifact.path, artifact.key, metadata)
        except StorageError as e:
            raise _Abort(f"Upload failed: {e}") from e
        logger.info(f"Upload completed in {self._elapsed(started)}s")

    def _notify(self, report: CycleReport) -> None:
        self.notifier.notify(
            NotificationEvent(
                status=report.status,
                message=report.message,
                backup_file=report.artifact_key,
                duration_seconds=report.duration_seconds,
            )
        )
