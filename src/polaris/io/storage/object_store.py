"""
S3 / MinIO object storage used for uploaded entity files.

Uploads are stored under their file name in the default bucket; downloads
stream the object body back to the caller.
"""

import os
from typing import Any, BinaryIO, Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from polaris.config.settings import Settings, get_settings
from polaris.utils.logging import get_logger

logger = get_logger(__name__)

MISSING_BUCKET_CODES = ("404", "NoSuchBucket", "NotFound")

FileLike = Union[str, "os.PathLike[str]", BinaryIO]


class ObjectStorageError(Exception):
    """Raised when the object store rejects or fails a request."""

    retryable = True

    def __init__(self, message: str, bucket: Optional[str] = None, key: Optional[str] = None):
        self.bucket = bucket
        self.key = key
        super().__init__(message)


class ObjectStorageClient:
    """
    Thin wrapper over a boto3 S3 client pointed at MinIO.

    Args:
        client: Pre-built boto3 client (tests inject a stub)
        settings: Application settings supplying endpoint and credentials
    """

    def __init__(self, client: Any = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.default_bucket = self.settings.minio_default_bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=self.settings.minio_endpoint_url,
            aws_access_key_id=self.settings.minio_access_key or None,
            aws_secret_access_key=self.settings.minio_secret_key or None,
        )

    @property
    def client(self) -> Any:
        return self._client

    def create_bucket_if_needed(self, bucket: Optional[str] = None) -> bool:
        """Create ``bucket`` when missing; returns True when it was created."""
        bucket = bucket or self.default_bucket
        try:
            self._client.head_bucket(Bucket=bucket)
            return False
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in MISSING_BUCKET_CODES:
                raise ObjectStorageError(f"Cannot inspect bucket: {exc}", bucket=bucket) from exc
        except BotoCoreError as exc:
            raise ObjectStorageError(f"Object store unreachable: {exc}", bucket=bucket) from exc

        try:
            self._client.create_bucket(Bucket=bucket)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStorageError(f"Cannot create bucket: {exc}", bucket=bucket) from exc
        logger.info("object_store.bucket_created", bucket=bucket)
        return True

    def put(self, bucket: Optional[str], source: FileLike, key: Optional[str] = None) -> str:
        """
        Upload a file path or binary file object and return its key.

        The key defaults to the file's base name.
        """
        bucket = bucket or self.default_bucket
        if isinstance(source, (str, os.PathLike)):
            key = key or os.path.basename(os.fspath(source))
            try:
                with open(source, "rb") as handle:
                    self._client.upload_fileobj(handle, bucket, key)
            except OSError as exc:
                raise ObjectStorageError(f"Cannot read upload: {exc}", bucket=bucket, key=key) from exc
            except (BotoCoreError, ClientError) as exc:
                raise ObjectStorageError(f"Upload failed: {exc}", bucket=bucket, key=key) from exc
        else:
            key = key or os.path.basename(getattr(source, "name", "") or "")
            if not key:
                raise ObjectStorageError("A key is required for anonymous file objects", bucket=bucket)
            try:
                self._client.upload_fileobj(source, bucket, key)
            except (BotoCoreError, ClientError) as exc:
                raise ObjectStorageError(f"Upload failed: {exc}", bucket=bucket, key=key) from exc

        logger.info("object_store.object_stored", bucket=bucket, key=key)
        return key

    def get(self, bucket: Optional[str], key: str) -> Any:
        """Return the streaming body of ``key`` (call ``.read()`` or iterate it)."""
        bucket = bucket or self.default_bucket
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStorageError(f"Download failed: {exc}", bucket=bucket, key=key) from exc
        return response["Body"]
