"""
Artifact storage for rendered tickets

Uploads are addressed by a caller-chosen key; writing the same key again
replaces the previous object.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import asyncio
import logging
import os
import tempfile

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from turnstile.config import Settings
from turnstile.core.exceptions import ArtifactStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    key: str
    url: str


class ArtifactStore(ABC):

    @abstractmethod
    async def upload(self, data: bytes, key: str, content_type: str = "image/png") -> UploadResult:
        """Store ``data`` under ``key``, overwriting any previous object."""
        ...


class LocalArtifactStore(ArtifactStore):
    """
    Writes artifacts below a directory, served from ``base_url``
    """

    def __init__(self, base_dir: str, base_url: str):
        self.base_dir = Path(base_dir).resolve()
        self.base_url = base_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir not in path.parents:
            raise ArtifactStoreError(key, "Artifact key escapes the storage directory")
        return path

    def _write(self, data: bytes, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never see a partial image
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.replace(tmp_name, path)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

    async def upload(self, data: bytes, key: str, content_type: str = "image/png") -> UploadResult:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._write, data, path)
        except OSError as e:
            raise ArtifactStoreError(key, f"Failed to write artifact: {e}") from e
        logger.debug(f"Artifact stored at {path}")
        return UploadResult(key=key, url=f"{self.base_url}/{key}")


class S3ArtifactStore(ArtifactStore):
    """
    Puts artifacts in an S3 bucket. boto3 is blocking, so calls run in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        region: str,
        public_base_url: Optional[str] = None,
        client=None
    ):
        if not bucket:
            raise ValueError("S3 bucket name is required")
        self.bucket = bucket
        self.region = region
        self.public_base_url = (
            public_base_url.rstrip("/") if public_base_url
            else f"https://{bucket}.s3.{region}.amazonaws.com"
        )
        self.client = client or boto3.client("s3", region_name=region)

    async def upload(self, data: bytes, key: str, content_type: str = "image/png") -> UploadResult:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise ArtifactStoreError(key, f"S3 upload failed: {e}") from e
        return UploadResult(key=key, url=f"{self.public_base_url}/{key}")


def build_artifact_store(settings: Settings) -> ArtifactStore:
    if settings.ARTIFACT_BACKEND == "s3":
        return S3ArtifactStore(
            bucket=settings.S3_BUCKET,
            region=settings.S3_REGION,
            public_base_url=settings.S3_PUBLIC_BASE_URL,
        )
    return LocalArtifactStore(settings.ARTIFACT_LOCAL_DIR, settings.ARTIFACT_BASE_URL)
