"""S3-compatible storage backend (AWS, Wasabi, MinIO)."""

from __future__ import annotations

import logging
from datetime import UTC
from pathlib import Path
from typing import TYPE_CHECKING

import boto3
from botocore.config import Config

from backup_drill.storage import StoredObject

if TYPE_CHECKING:
    from backup_drill.config import StorageConfig

logger = logging.getLogger(__name__)


class S3ObjectStore:
    """Store artifacts in S3-compatible object storage.

    Errors from botocore propagate unchanged; retrying is the transport's job.
    """

    def __init__(self, config: StorageConfig, client=None) -> None:
        self.bucket = config.bucket
        self.endpoint = config.endpoint
        self.client = client or boto3.client(
            "s3",
            endpoint_url=config.endpoint,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
            # Transport does its own retrying
            config=Config(retries={"max_attempts": 1, "mode": "standard"}),
        )

    @property
    def location(self) -> str:
        return f"s3://{self.bucket}"

    def probe(self, prefix: str) -> None:
        """List at most one object under ``prefix``. Raises on failure."""
        self.client.list_objects_v2(Bucket=self.bucket, Prefix=f"{prefix}/", MaxKeys=1)

    def put_file(self, path: Path, key: str, metadata: dict[str, str]) -> None:
        self.client.upload_file(
            str(path),
            self.bucket,
            key,
            ExtraArgs={
                "ContentType": "application/octet-stream" if key.endswith(".enc") else "application/gzip",
                "Metadata": metadata,
            },
        )
        logger.info(f"Uploaded to s3://{self.bucket}/{key}")

    def get_file(self, key: str, path: Path) -> None:
        self.client.download_file(self.bucket, key, str(path))

    def list_objects(self, prefix: str) -> list[StoredObject]:
        entries: list[StoredObject] = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{prefix}/"):
            for obj in page.get("Contents", []):
                entries.append(
                    StoredObject(
                        key=obj["Key"],
                        size=obj["Size"],
                        modified=obj["LastModified"].replace(tzinfo=UTC),
                    )
                )
        return entries

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)
        logger.info(f"Deleted s3://{self.bucket}/{key}")
