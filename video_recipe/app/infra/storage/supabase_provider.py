# video_recipe/app/infra/storage/supabase_provider.py
"""
Supabase Storage provider implementation.
"""
from __future__ import annotations

import logging
import posixpath
from datetime import datetime
from typing import Any, Optional

import httpx
from storage3.exceptions import StorageApiError
from supabase import Client

from video_recipe.app.domain.errors import StorageError, UploadConflict
from video_recipe.app.infra.storage.base import BlobStorage, StoredObject

logger = logging.getLogger(__name__)

CONFLICT_MARKERS = ("duplicate", "already exists", "409")
LIST_PAGE_SIZE = 1000


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _is_conflict(error: Exception) -> bool:
    status = str(getattr(error, "status", "") or getattr(error, "code", ""))
    message = str(error).lower()
    return status == "409" or any(marker in message for marker in CONFLICT_MARKERS)


class SupabaseBlobStorage(BlobStorage):
    """Blob storage backed by Supabase Storage buckets."""

    def __init__(self, client: Client):
        self._client = client
        logger.info("SupabaseBlobStorage initialized")

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        try:
            self._client.storage.from_(bucket).upload(
                path,
                data,
                file_options={"content-type": content_type, "upsert": "false"},
            )
        except StorageApiError as error:
            if _is_conflict(error):
                raise UploadConflict(bucket, path) from error
            logger.error("Supabase upload failed: bucket=%s, path=%s, error=%s", bucket, path, error)
            raise StorageError(f"Failed to upload {bucket}/{path}: {error}") from error
        except httpx.HTTPError as error:
            logger.error("Supabase upload transport error: bucket=%s, path=%s, error=%s", bucket, path, error)
            raise StorageError(f"Failed to upload {bucket}/{path}: {error}") from error

        logger.debug("Uploaded object: bucket=%s, path=%s, size=%d", bucket, path, len(data))
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return self._client.storage.from_(bucket).get_public_url(path)

    def remove(self, bucket: str, paths: list[str]) -> None:
        if not paths:
            return
        try:
            self._client.storage.from_(bucket).remove(paths)
        except (StorageApiError, httpx.HTTPError) as error:
            logger.error("Supabase remove failed: bucket=%s, paths=%s, error=%s", bucket, paths, error)
            raise StorageError(f"Failed to remove objects from {bucket}: {error}") from error
        logger.info("Removed %d objects from %s", len(paths), bucket)

    def list(self, bucket: str, prefix: str) -> list[str]:
        folder, name_prefix = posixpath.split(prefix)
        try:
            entries = self._client.storage.from_(bucket).list(
                folder,
                {"limit": LIST_PAGE_SIZE, "search": name_prefix},
            )
        except (StorageApiError, httpx.HTTPError) as error:
            raise StorageError(f"Failed to list {bucket}/{prefix}: {error}") from error

        paths = []
        for entry in entries or []:
            name = entry.get("name") if isinstance(entry, dict) else None
            if name and name.startswith(name_prefix):
                paths.append(posixpath.join(folder, name) if folder else name)
        return paths

    def list_objects(self, bucket: str, prefix: str = "") -> list[StoredObject]:
        objects: list[StoredObject] = []
        folders = [prefix.strip("/")]
        while folders:
            folder = folders.pop()
            for entry in self._list_folder(bucket, folder):
                name = entry.get("name")
                if not name:
                    continue
                path = posixpath.join(folder, name) if folder else name
                # Folder placeholders come back without an id
                if entry.get("id") is None:
                    folders.append(path)
                    continue
                metadata = dict(entry.get("metadata") or {})
                metadata.update(entry.get("user_metadata") or {})
                objects.append(
                    StoredObject(
                        path=path,
                        metadata=metadata,
                        updated_at=_parse_timestamp(entry.get("updated_at") or entry.get("created_at")),
                    )
                )
        return objects

    def _list_folder(self, bucket: str, folder: str) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        offset = 0
        while True:
            try:
                page = self._client.storage.from_(bucket).list(
                    folder,
                    {"limit": LIST_PAGE_SIZE, "offset": offset},
                )
            except (StorageApiError, httpx.HTTPError) as error:
                raise StorageError(f"Failed to list {bucket}/{folder}: {error}") from error
            page = [entry for entry in page or [] if isinstance(entry, dict)]
            entries.extend(page)
            if len(page) < LIST_PAGE_SIZE:
                return entries
            offset += LIST_PAGE_SIZE

    def create_signed_upload_url(self, bucket: str, path: str, expires_seconds: int = 3600) -> str:
        try:
            result = self._client.storage.from_(bucket).create_signed_upload_url(path)
        except StorageApiError as error:
            if _is_conflict(error):
                raise UploadConflict(bucket, path) from error
            raise StorageError(f"Failed to create signed upload URL: {error}") from error
        except httpx.HTTPError as error:
            raise StorageError(f"Failed to create signed upload URL: {error}") from error

        url = result.get("signed_url") or result.get("signedUrl") if isinstance(result, dict) else None
        if not url:
            raise StorageError(f"Signed upload URL missing from response for {bucket}/{path}")
        return url
