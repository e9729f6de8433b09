"""Local filesystem storage backend."""

from __future__ import annotations

import json
import logging
import shutil
from datetime import UTC, datetime
from pathlib import Path

from backup_drill.storage import StoredObject

logger = logging.getLogger(__name__)

META_DIR = ".meta"


class LocalObjectStore:
    """Store artifacts on the local filesystem, keys mapped to relative paths."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    @property
    def location(self) -> str:
        return str(self.base_dir.resolve())

    def _path(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if not path.is_relative_to(self.base_dir.resolve()):
            raise ValueError(f"Key escapes storage directory: {key}")
        return path

    def _meta_path(self, key: str) -> Path:
        return self.base_dir / META_DIR / f"{key}.json"

    def probe(self, prefix: str) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if not self.base_dir.is_dir():
            raise NotADirectoryError(str(self.base_dir))

    def put_file(self, path: Path, key: str, metadata: dict[str, str]) -> None:
        dest = self._path(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(path, dest)

        meta = self._meta_path(key)
        meta.parent.mkdir(parents=True, exist_ok=True)
        meta.write_text(json.dumps(metadata))
        logger.info(f"Saved to {dest}")

    def get_file(self, key: str, path: Path) -> None:
        src = self._path(key)
        if not src.is_file():
            raise FileNotFoundError(f"Artifact not found: {key}")
        shutil.copyfile(src, path)

    def list_objects(self, prefix: str) -> list[StoredObject]:
        root = self.base_dir / prefix
        if not root.is_dir():
            return []

        entries: list[StoredObject] = []
        for f in sorted(root.rglob("*")):
            if not f.is_file():
                continue
            key = f.relative_to(self.base_dir).as_posix()
            meta_path = self._meta_path(key)
            metadata = json.loads(meta_path.read_text()) if meta_path.is_file() else {}
            stat = f.stat()
            entries.append(
                StoredObject(
                    key=key,
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                    metadata=metadata,
                )
            )
        return entries

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)
        logger.info(f"Deleted {key}")
