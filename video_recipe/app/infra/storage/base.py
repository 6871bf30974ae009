# video_recipe/app/infra/storage/base.py
"""
Abstract base class for blob storage providers.
This interface allows easy swapping between storage backends (Supabase Storage, R2, ...).
The store is path-addressed and has no atomic rename.
"""
from __future__ import annotations

import posixpath
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class StoredObject:
    """One object found by a metadata-aware listing."""
    path: str
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None


class BlobStorage(ABC):
    """
    Abstract interface for object storage operations.

    Implementations:
    - SupabaseBlobStorage: Supabase Storage buckets
    - R2BlobStorage: Cloudflare R2 (S3-compatible), buckets mapped to key prefixes
    """

    @abstractmethod
    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Store bytes at a path. Never overwrites.

        Args:
            bucket: Bucket name
            path: Object path inside the bucket
            data: Object contents
            content_type: MIME type of the content

        Returns:
            The stored path

        Raises:
            UploadConflict: If an object already exists at the path
            StorageError: On any other failure
        """
        pass

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        """Public (or long-lived) URL for an object."""
        pass

    @abstractmethod
    def remove(self, bucket: str, paths: list[str]) -> None:
        """
        Delete objects. Missing objects are not an error.

        Raises:
            StorageError: If the delete request itself fails
        """
        pass

    @abstractmethod
    def list(self, bucket: str, prefix: str) -> list[str]:
        """
        List object paths starting with a prefix.

        Returns:
            Full object paths (relative to the bucket)
        """
        pass

    @abstractmethod
    def list_objects(self, bucket: str, prefix: str = "") -> list[StoredObject]:
        """
        List objects under a folder prefix, descending into sub-folders.

        Returns:
            One StoredObject per object, with its custom metadata and last-modified time

        Raises:
            StorageError: If the listing fails
        """
        pass

    @abstractmethod
    def create_signed_upload_url(self, bucket: str, path: str, expires_seconds: int = 3600) -> str:
        """Pre-signed URL accepting a single PUT of the object body."""
        pass

    def exists(self, bucket: str, path: str) -> bool:
        return path in self.list(bucket, path)

    @staticmethod
    def build_path(*parts: str) -> str:
        """
        Join path components, sanitizing each one.

        Format: {part}/{part}/.../{filename}
        """
        safe = [re.sub(r"[^a-zA-Z0-9._-]", "_", str(part).strip("/")) for part in parts if str(part)]
        return posixpath.join(*safe) if safe else ""
