"""
Object storage for ingested video and source images.

Contract used by the ingester:
    upload(path, data, content_type) -> None   (raises StorageError)
    public_url(path) -> str                     (pure, never fails)
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from videostudio.config import config


class StorageError(Exception):
    """Raised when an upload to object storage fails."""

    def __init__(self, path: str, message: str, original_error: Optional[Exception] = None):
        self.path = path
        self.original_error = original_error
        super().__init__(f"Upload failed for {path}: {message}")


class ObjectStorage:
    """S3 bucket wrapper. The boto3 client is created on first use."""

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket or config.AWS_BUCKET_MEDIA
        self.region = region or config.AWS_REGION
        self.public_base_url = (public_base_url or config.MEDIA_PUBLIC_BASE_URL).rstrip("/")
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=config.AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY or None,
            )
        return self._client

    def is_configured(self):
        if not self.bucket:
            return False, "AWS_BUCKET_MEDIA is not set"
        return True, None

    def upload(self, path: str, data: bytes, content_type: str = "video/mp4") -> None:
        if not self.bucket:
            raise StorageError(path, "AWS_BUCKET_MEDIA is not set")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=31536000",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(path, str(e), original_error=e) from e
        print(f"[S3] Uploaded {len(data)} bytes -> {path} ({content_type})")

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{path}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"
