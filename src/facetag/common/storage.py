"""Object storage for reference faces and tag thumbnails.

Images live in an S3 bucket under ``faces/<uuid>.jpg``. Rows created by the
first generation of the portal stored a site-relative path instead
(``/uploads/faces/...``); those are read from the local media directory and are
recognised by their leading ``/``.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Any

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger


# Presigned URLs are SigV4 (relative X-Amz-Expires)
S3_CLIENT_CONFIG = Config(signature_version="s3v4")


class StorageError(Exception):
    """Raised when an object cannot be stored or read."""


def is_legacy_key(key: str) -> bool:
    return key.startswith("/")


class StorageService:
    """Thin façade over an S3 client plus the legacy local media directory."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        local_media_dir: Path | None = None,
        presign_expires: int = 3600,
    ):
        self.client = client
        self.bucket = bucket
        self.local_media_dir = local_media_dir
        self.presign_expires = presign_expires

    def upload(self, data: bytes, prefix: str = "faces", content_type: str = "image/jpeg") -> str:
        """Store bytes under a fresh key and return the key."""
        key = f"{prefix}/{uuid.uuid4()}.jpg"
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {key}: {e}") from e
        logger.debug(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{key}")
        return key

    def download(self, key: str) -> bytes:
        if is_legacy_key(key):
            return self._read_legacy(key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to download {key}: {e}") from e

    def delete(self, key: str) -> bool:
        """Delete an object. Best effort: returns False on failure."""
        if is_legacy_key(key):
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to delete s3://{self.bucket}/{key}: {e}")
            return False

    def presigned_url(self, key: str) -> str:
        """Time-limited read URL. Legacy keys are already public paths."""
        if is_legacy_key(key):
            return key
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.presign_expires,
        )

    def _read_legacy(self, key: str) -> bytes:
        if self.local_media_dir is None:
            raise StorageError(f"No local media directory configured for {key}")
        path = (self.local_media_dir / key.lstrip("/")).resolve()
        if not path.is_relative_to(self.local_media_dir.resolve()):
            raise StorageError(f"Legacy path escapes media directory: {key}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read legacy file {key}: {e}") from e

    # Async wrappers; boto3 is blocking

    async def upload_async(self, data: bytes, prefix: str = "faces") -> str:
        return await asyncio.to_thread(self.upload, data, prefix)

    async def download_async(self, key: str) -> bytes:
        return await asyncio.to_thread(self.download, key)

    async def delete_async(self, key: str) -> bool:
        return await asyncio.to_thread(self.delete, key)

    async def presigned_url_async(self, key: str) -> str:
        return await asyncio.to_thread(self.presigned_url, key)
