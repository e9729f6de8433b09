"""Artifact key naming and timestamp parsing.

Keys look like ``{prefix}/backup_20240115_030000.sql.gz`` with an extra
``.enc`` suffix for encrypted artifacts. The creation time is parsed from the
key itself, never from store metadata, so retention does not depend on when
an object was last touched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import PurePosixPath

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
DUMP_SUFFIX = ".sql.gz"
ENCRYPTED_SUFFIX = ".enc"

_KEY_PATTERN = re.compile(r"^backup_(\d{8}_\d{6})\.sql\.gz(\.enc)?$")


@dataclass(frozen=True)
class ArtifactName:
    key: str
    created_at: datetime
    encrypted: bool

    @property
    def filename(self) -> str:
        return PurePosixPath(self.key).name


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def artifact_filename(created_at: datetime, encrypted: bool = False) -> str:
    name = f"backup_{format_timestamp(created_at)}{DUMP_SUFFIX}"
    return name + ENCRYPTED_SUFFIX if encrypted else name


def artifact_key(prefix: str, created_at: datetime, encrypted: bool = False) -> str:
    return f"{prefix.strip('/')}/{artifact_filename(created_at, encrypted)}"


def parse_artifact_key(key: str) -> ArtifactName | None:
    """Return the parsed name, or None if the key is not a backup artifact.

    Keys that match the shape but encode an impossible date (e.g. month 13)
    are also rejected.
    """
    match = _KEY_PATTERN.match(PurePosixPath(key).name)
    if not match:
        return None
    try:
        created = datetime.strptime(match.group(1), TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None
    return ArtifactName(key=key, created_at=created, encrypted=match.group(2) is not None)


def is_encrypted(key: str) -> bool:
    return key.endswith(ENCRYPTED_SUFFIX)


def ephemeral_database_name(moment: datetime) -> str:
    """Name of the throwaway database for a restore drill started at ``moment``."""
    return f"verify_{format_timestamp(moment)}"


def latest_artifact(keys: list[str]) -> ArtifactName | None:
    """Newest artifact by encoded timestamp; unparsable keys are ignored."""
    parsed = [name for name in map(parse_artifact_key, keys) if name is not None]
    if not parsed:
        return None
    return max(parsed, key=lambda name: (name.created_at, name.key))
