"""Object storage backends for backup artifacts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from backup_drill.config import StorageConfig


@dataclass
class StoredObject:
    """Listing entry for a single stored object."""

    key: str  # Full key including prefix
    size: int  # Bytes
    modified: datetime
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return self.key.rsplit("/", 1)[-1]


class ObjectStore(Protocol):
    """Protocol for artifact storage backends."""

    def put_file(self, path: Path, key: str, metadata: dict[str, str]) -> None: ...

    def get_file(self, key: str, path: Path) -> None: ...

    def list_objects(self, prefix: str) -> list[StoredObject]: ...

    def delete(self, key: str) -> None: ...

    def probe(self, prefix: str) -> None: ...

    @property
    def location(self) -> str: ...


def create_store(config: StorageConfig) -> ObjectStore:
    """Create a storage backend based on configuration."""
    if config.storage_type == "s3":
        from backup_drill.storage.s3 import S3ObjectStore

        return S3ObjectStore(config)

    from backup_drill.storage.local import LocalObjectStore

    return LocalObjectStore(config.local_dir)
