"""Secret scrubbing for log lines and notification payloads."""

from __future__ import annotations

import re
from collections.abc import Iterable

MASK = "***"

# (pattern, replacement) pairs applied after literal secret replacement
_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(postgres(?:ql)?://[^:/@\s]+:)[^@\s]+@"), rf"\1{MASK}@"),
    (re.compile(r"((?:AWS|S3)_SECRET_ACCESS_KEY=)\S*"), rf"\1{MASK}"),
    (re.compile(r"(BACKUP_ENCRYPTION_KEY=)\S*"), rf"\1{MASK}"),
    (re.compile(r"(PGPASSWORD=)\S*"), rf"\1{MASK}"),
    (re.compile(r"((?:password|passwd)=)\S*", re.IGNORECASE), rf"\1{MASK}"),
    (re.compile(r"(pass:)\S+"), rf"\1{MASK}"),
]


class Scrubber:
    """Replaces known secret values and common credential patterns with ``***``."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        self._secrets: set[str] = set()
        self.add(secrets)

    def add(self, secrets: Iterable[str]) -> None:
        # Very short values would mangle unrelated text
        self._secrets.update(s for s in secrets if s and len(s) >= 3)

    def __call__(self, text: str) -> str:
        if not text:
            return text
        # Longest first so a secret containing another is fully masked
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, MASK)
        for pattern, replacement in _PATTERNS:
            text = pattern.sub(replacement, text)
        return text


_default = Scrubber()


def get_scrubber() -> Scrubber:
    """Return the process-wide scrubber shared by logging and notifications."""
    return _default


def register_secrets(*secrets: str | None) -> None:
    """Add secret values to the process-wide scrubber."""
    _default.add(s for s in secrets if s)


def scrub(text: str) -> str:
    return _default(text)
