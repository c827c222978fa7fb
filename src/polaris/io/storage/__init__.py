"""Object storage for uploaded files."""

from .object_store import ObjectStorageClient, ObjectStorageError

__all__ = ["ObjectStorageClient", "ObjectStorageError"]
