"""Validated, immutable configuration for one process lifetime."""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import ValidationError

from backup_drill.connection import ConnectionTarget, parse_connection_string
from backup_drill.errors import ConfigError, UnsafeTargetError
from backup_drill.safety import check_targets
from backup_drill.settings import DrillSettings

logger = logging.getLogger(__name__)

Mode = Literal["backup", "verify", "any"]


@dataclass(frozen=True)
class StorageConfig:
    """Where artifacts live."""

    storage_type: str = "s3"  # "s3" or "local"
    local_dir: Path = Path("./backups")
    endpoint: str = ""
    bucket: str = ""
    access_key: str = ""
    secret_key: str = ""
    region: str = "us-east-1"
    prefix: str = "postgres-backups"

    @property
    def location(self) -> str:
        if self.storage_type == "s3":
            return f"s3://{self.bucket}/{self.prefix}"
        return str(self.local_dir / self.prefix)


@dataclass(frozen=True)
class WebhookConfig:
    url: str = ""
    on_success: bool = False
    on_failure: bool = True

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass(frozen=True)
class DrillConfig:
    """Configuration shared by every component, read-only after load."""

    storage: StorageConfig
    production: ConnectionTarget | None = None
    verification: ConnectionTarget | None = None

    backup_interval: int = 3600
    verify_interval: int = 86400
    retention_days: int = 7
    compression_level: int = 6
    encryption_key: str | None = None

    webhook: WebhookConfig = WebhookConfig()
    verify_webhook: WebhookConfig = WebhookConfig()

    retry_attempts: int = 3
    retry_delay: float = 5

    min_table_count: int = 0
    verify_sql: str | None = None
    verify_queries_file: Path | None = None
    verify_backup_file: str | None = None
    verify_latest: bool = True
    restore_strict: bool = False

    health_port: int = 0
    work_dir: Path = Path(tempfile.gettempdir())

    @property
    def encryption_enabled(self) -> bool:
        return self.encryption_key is not None

    @property
    def secrets(self) -> list[str]:
        """Every secret value that must never reach a log line or payload."""
        values = [self.storage.access_key, self.storage.secret_key, self.encryption_key or ""]
        for target in (self.production, self.verification):
            if target is not None:
                values.append(target.password)
        return [v for v in values if v]


def _format_validation_error(exc: ValidationError) -> str:
    # Field names and messages only; input values may be secrets
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]).upper()
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def _production_target(s: DrillSettings) -> ConnectionTarget | None:
    if s.database_url:
        return parse_connection_string(s.database_url)
    if s.pghost:
        return ConnectionTarget.from_parts(
            host=s.pghost,
            port=s.pgport,
            user=s.pguser,
            password=s.pgpassword,
            database=s.pgdatabase,
        )
    return None


def _storage_config(s: DrillSettings) -> StorageConfig:
    storage_type = s.storage_type.strip().lower()
    if storage_type not in ("s3", "local"):
        raise ConfigError(f"STORAGE_TYPE must be 's3' or 'local', got {s.storage_type!r}")

    if storage_type == "s3":
        required = {
            "S3_ENDPOINT": s.s3_endpoint,
            "S3_BUCKET": s.s3_bucket,
            "S3_ACCESS_KEY_ID": s.s3_access_key_id,
            "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigError(f"Required variable(s) not set: {', '.join(missing)}")

    prefix = s.backup_prefix.strip("/")
    if not prefix:
        raise ConfigError("BACKUP_PREFIX must not be empty")

    return StorageConfig(
        storage_type=storage_type,
        local_dir=Path(s.backup_local_dir),
        endpoint=s.s3_endpoint,
        bucket=s.s3_bucket,
        access_key=s.s3_access_key_id,
        secret_key=s.s3_secret_access_key,
        region=s.s3_region,
        prefix=prefix,
    )


def build_config(s: DrillSettings, mode: Mode) -> DrillConfig:
    """Convert raw settings into a DrillConfig, enforcing mode-specific requirements."""
    production = _production_target(s)
    verification = parse_connection_string(s.verify_database_url) if s.verify_database_url else None

    if mode == "backup" and production is None:
        raise ConfigError("Either DATABASE_URL or PGHOST must be set")
    if mode == "verify" and verification is None:
        raise ConfigError("VERIFY_DATABASE_URL must be set for restore verification")

    safety = check_targets(production, verification)
    if safety.blocked:
        raise UnsafeTargetError(safety.reason)

    if s.backup_encryption and not s.backup_encryption_key:
        raise ConfigError("BACKUP_ENCRYPTION_KEY must be set when BACKUP_ENCRYPTION=true")

    queries_file = Path(s.verify_queries_file) if s.verify_queries_file else None
    if mode == "verify" and queries_file is not None and not queries_file.is_file():
        raise ConfigError(f"VERIFY_QUERIES_FILE not found: {queries_file}")

    for name, url in (("WEBHOOK_URL", s.webhook_url), ("VERIFY_WEBHOOK_URL", s.verify_webhook_url)):
        if url and not url.startswith(("http://", "https://")):
            logger.warning(f"{name} should start with http:// or https://")

    webhook = WebhookConfig(url=s.webhook_url, on_success=s.webhook_on_success, on_failure=s.webhook_on_failure)

    return DrillConfig(
        storage=_storage_config(s),
        production=production,
        verification=verification,
        backup_interval=s.backup_interval,
        verify_interval=s.verify_interval,
        retention_days=s.backup_retention_days,
        compression_level=s.compression_level,
        encryption_key=s.backup_encryption_key if s.backup_encryption else None,
        webhook=webhook,
        verify_webhook=WebhookConfig(
            url=s.verify_webhook_url or s.webhook_url,
            on_success=s.webhook_on_success,
            on_failure=s.webhook_on_failure,
        ),
        retry_attempts=s.retry_attempts,
        retry_delay=s.retry_delay,
        min_table_count=s.min_table_count,
        verify_sql=s.verify_sql or None,
        verify_queries_file=queries_file,
        verify_backup_file=s.verify_backup_file or None,
        verify_latest=s.verify_latest,
        restore_strict=s.restore_strict,
        health_port=s.health_port,
        work_dir=Path(s.backup_work_dir) if s.backup_work_dir else Path(tempfile.gettempdir()),
    )


def load_config(mode: Mode, **overrides) -> DrillConfig:
    """Load settings from the environment/YAML and validate them.

    Raises ConfigError (never a pydantic ValidationError) on any problem, and
    UnsafeTargetError when the verification target is the production database.
    """
    try:
        settings = DrillSettings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {_format_validation_error(e)}") from None
    return build_config(settings, mode)
