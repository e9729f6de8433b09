"""Retrying wrapper around an ObjectStore."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from backup_drill.errors import StorageError
from backup_drill.retry import RetryExhausted, retry_with_backoff
from backup_drill.storage import ObjectStore, StoredObject

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageTransport:
    """Runs every object-store operation through retry-with-backoff.

    Exhausted retries surface as StorageError; the caller decides whether that
    aborts a cycle (upload, download) or is only a warning (pruning).
    """

    def __init__(
        self,
        store: ObjectStore,
        prefix: str,
        attempts: int = 3,
        base_delay: float = 5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.prefix = prefix.strip("/")
        self.attempts = attempts
        self.base_delay = base_delay
        self._sleep = sleep

    @property
    def location(self) -> str:
        return f"{self.store.location}/{self.prefix}"

    def _retry(self, operation: Callable[[], T], description: str) -> T:
        try:
            return retry_with_backoff(
                operation,
                attempts=self.attempts,
                base_delay=self.base_delay,
                description=description,
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            raise StorageError(str(e)) from e.last_error

    def put(self, path: Path, key: str, metadata: dict[str, str]) -> None:
        self._retry(lambda: self.store.put_file(path, key, metadata), f"Upload {key}")

    def get(self, key: str, path: Path) -> None:
        self._retry(lambda: self.store.get_file(key, path), f"Download {key}")

    def list(self) -> list[StoredObject]:
        return self._retry(lambda: self.store.list_objects(self.prefix), f"List {self.prefix}/")

    def delete(self, key: str) -> None:
        self._retry(lambda: self.store.delete(key), f"Delete {key}")

    def probe(self) -> bool:
        """Connectivity check. Returns False instead of raising."""
        try:
            self._retry(lambda: self.store.probe(self.prefix), "Storage connectivity check")
        except StorageError as e:
            logger.error(f"Cannot reach storage {self.location}: {e}")
            return False
        return True
