"""Artifact production: dump -> gzip -> optional encryption, and the reverse."""

from __future__ import annotations

import gzip
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from backup_drill.artifacts import artifact_filename, artifact_key
from backup_drill.connection import ConnectionTarget
from backup_drill.crypto import decrypt_file, encrypt_file
from backup_drill.database import Dumper
from backup_drill.errors import EmptyArtifactError, EncryptionError

logger = logging.getLogger(__name__)


def format_bytes(size: int) -> str:
    """Human-readable file size."""
    if size < 1024:
        return f"{size} B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    elif size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.2f} MB"
    return f"{size / (1024 * 1024 * 1024):.2f} GB"


def remove_files(*paths: Path) -> None:
    for path in paths:
        if path.exists():
            logger.debug(f"Removing local file: {path}")
            path.unlink(missing_ok=True)


class _CountingWriter:
    """File-like wrapper counting bytes written through it."""

    def __init__(self, inner: BinaryIO) -> None:
        self.inner = inner
        self.count = 0

    def write(self, data: bytes) -> int:
        self.count += len(data)
        return self.inner.write(data)

    def flush(self) -> None:
        self.inner.flush()


@dataclass
class Artifact:
    """A finished artifact on local disk, ready for upload."""

    path: Path
    key: str
    size: int
    raw_size: int
    encrypted: bool
    created_at: datetime
    temp_files: list[Path] = field(default_factory=list)

    def cleanup(self) -> None:
        remove_files(self.path, *self.temp_files)


class ArtifactPipeline:
    """Produces compressed, optionally encrypted, dump files."""

    def __init__(
        self,
        dumper: Dumper,
        compression_level: int = 6,
        encryption_key: str | None = None,
        work_dir: Path | None = None,
    ) -> None:
        self.dumper = dumper
        self.compression_level = compression_level
        self.encryption_key = encryption_key
        self.work_dir = Path(work_dir) if work_dir else Path(".")

    def produce(self, target: ConnectionTarget, created_at: datetime, prefix: str) -> Artifact:
        """Dump ``target`` into a local artifact file.

        Raises DumpError (EmptyArtifactError for zero bytes) or EncryptionError.
        Local files are removed before any exception propagates.
        """
        encrypted = self.encryption_key is not None
        plain_path = self.work_dir / artifact_filename(created_at)
        enc_path = self.work_dir / artifact_filename(created_at, encrypted=True)
        self.work_dir.mkdir(parents=True, exist_ok=True)

        try:
            with gzip.open(plain_path, "wb", compresslevel=self.compression_level) as gz:
                counter = _CountingWriter(gz)
                self.dumper.dump(target, counter)
            raw_size = counter.count

            if raw_size == 0 or plain_path.stat().st_size == 0:
                raise EmptyArtifactError("Dump produced zero bytes")

            compressed_size = plain_path.stat().st_size
            ratio = (1 - compressed_size / raw_size) * 100
            logger.info(
                f"Dump complete: {format_bytes(raw_size)} -> {format_bytes(compressed_size)} "
                f"({ratio:.1f}% compression)"
            )

            path = plain_path
            if encrypted:
                logger.info("Encrypting backup...")
                encrypt_file(plain_path, enc_path, self.encryption_key)
                remove_files(plain_path)
                path = enc_path
                logger.info(f"Encryption completed, size: {format_bytes(path.stat().st_size)}")

            return Artifact(
                path=path,
                key=artifact_key(prefix, created_at, encrypted),
                size=path.stat().st_size,
                raw_size=raw_size,
                encrypted=encrypted,
                created_at=created_at,
                temp_files=[plain_path, enc_path],
            )
        except BaseException:
            remove_files(plain_path, enc_path)
            raise


@contextmanager
def unpack(path: Path, encrypted: bool, encryption_key: str | None) -> Iterator[BinaryIO]:
    """Yield a stream of decompressed (and decrypted) SQL from an artifact file.

    The intermediate decrypted file, if any, is removed on exit.
    """
    decrypted: Path | None = None
    source = path
    try:
        if encrypted:
            if not encryption_key:
                raise EncryptionError(f"{path.name} is encrypted but BACKUP_ENCRYPTION_KEY is not set")
            decrypted = path.with_name(path.name.removesuffix(".enc") + ".dec")
            decrypt_file(path, decrypted, encryption_key)
            source = decrypted

        with gzip.open(source, "rb") as stream:
            yield stream
    finally:
        if decrypted is not None:
            remove_files(decrypted)
