"""Retention pruning by the timestamp encoded in each artifact key."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from backup_drill.artifacts import parse_artifact_key
from backup_drill.errors import StorageError
from backup_drill.storage.transport import StorageTransport

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    cutoff: datetime
    deleted: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    unparsable: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def retained_count(self) -> int:
        """Everything still in the store: in-window, unparsable and failed deletes."""
        return len(self.kept) + len(self.unparsable) + len(self.failed)


class RetentionPruner:
    """Deletes artifacts whose encoded creation time is older than the window.

    Keys that do not parse as artifacts are kept: an unknown object is never
    deleted on a guess.
    """

    def __init__(
        self,
        transport: StorageTransport,
        retention_days: int,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        if retention_days < 1:
            raise ValueError(f"retention_days must be >= 1, got {retention_days}")
        self.transport = transport
        self.retention_days = retention_days
        self.clock = clock

    def prune(self) -> PruneResult:
        """Run one sweep. Raises StorageError only if listing fails."""
        cutoff = self.clock() - timedelta(days=self.retention_days)
        result = PruneResult(cutoff=cutoff)

        logger.info(f"Checking for backups older than {self.retention_days} day(s) (cutoff {cutoff:%Y-%m-%d %H:%M:%S} UTC)")
        objects = self.transport.list()
        if not objects:
            logger.info("No existing backups found")
            return result

        for obj in objects:
            name = parse_artifact_key(obj.key)
            if name is None:
                logger.warning(f"Skipping unrecognized key (retained): {obj.key}")
                result.unparsable.append(obj.key)
                continue

            if name.created_at >= cutoff:
                result.kept.append(obj.key)
                continue

            logger.info(f"Deleting old backup: {obj.key} (created {name.created_at:%Y-%m-%d %H:%M:%S})")
            try:
                self.transport.delete(obj.key)
            except StorageError as e:
                logger.warning(f"Failed to delete {obj.key}: {e}")
                result.failed.append(obj.key)
            else:
                result.deleted.append(obj.key)

        logger.info(
            f"Retention pruning completed: {result.deleted_count} deleted, {result.retained_count} retained"
        )
        return result
