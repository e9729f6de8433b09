"""Raw settings: environment variables plus an optional YAML file.

Usage:
    from backup_drill.settings import DrillSettings

    s = DrillSettings()
    s.database_url        # "postgresql://..."
    s.backup_interval     # 3600
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

CONFIG_ENV_VAR = "BACKUP_DRILL_CONFIG"


def find_config_file() -> Path | None:
    """Find backup-drill.yaml using search order:
    1. BACKUP_DRILL_CONFIG env var (explicit path)
    2. ./backup-drill.yaml (CWD)
    3. ./backup-drill.yml (CWD alt)
    """
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        p = Path(explicit)
        if p.is_file():
            return p
        return None

    for candidate in (Path.cwd() / "backup-drill.yaml", Path.cwd() / "backup-drill.yml"):
        if candidate.is_file():
            return candidate
    return None


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Load settings from a YAML file. Keys are matched case-insensitively."""

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._yaml_data: dict[str, Any] = {}
        config_path = find_config_file()
        if config_path is not None:
            with open(config_path) as f:
                data = yaml.safe_load(f)
                if isinstance(data, dict):
                    self._yaml_data = {str(k).lower(): v for k, v in data.items()}

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        val = self._yaml_data.get(field_name)
        return val, field_name, val is not None

    def __call__(self) -> dict[str, Any]:
        return {k: v for k, v in self._yaml_data.items() if k in self.settings_cls.model_fields}


class DrillSettings(BaseSettings):
    model_config = {"case_sensitive": False, "extra": "ignore"}

    # Production database
    database_url: str = ""
    pghost: str = ""
    pgport: int = 5432
    pguser: str = ""
    pgpassword: str = ""
    pgdatabase: str = ""

    # Verification database server
    verify_database_url: str = ""

    # Storage
    storage_type: str = "s3"
    backup_local_dir: str = "./backups"
    s3_endpoint: str = ""
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_region: str = "us-east-1"
    backup_prefix: str = "postgres-backups"

    # Schedule and retention
    backup_interval: int = Field(default=3600, ge=60)
    verify_interval: int = Field(default=86400, ge=60)
    backup_retention_days: int = Field(default=7, ge=1)
    compression_level: int = Field(default=6, ge=1, le=9)

    # Encryption
    backup_encryption: bool = False
    backup_encryption_key: str = ""

    # Notifications
    webhook_url: str = ""
    webhook_on_success: bool = False
    webhook_on_failure: bool = True
    verify_webhook_url: str = ""

    # Retry
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=5, ge=0)

    # Verification
    min_table_count: int = Field(default=0, ge=0)
    verify_sql: str = ""
    verify_queries_file: str = ""
    verify_backup_file: str = ""
    verify_latest: bool = True
    restore_strict: bool = False

    # Runtime
    health_port: int = Field(default=0, ge=0, le=65535)
    backup_work_dir: str = ""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            YamlSettingsSource(settings_cls),
        )
