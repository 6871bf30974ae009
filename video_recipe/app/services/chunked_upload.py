# video_recipe/app/services/chunked_upload.py
"""
Large object uploads on top of BlobStorage.

Small payloads go up in one request. Larger ones use either:
- parts: `<path>.part<N>` objects, then the full object; parts are always removed
  afterwards, and on failure every part written so far is removed before re-raising
- signed_url: one streamed PUT to a pre-signed URL with byte-level progress
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator, Literal, Optional, Union

import httpx

from video_recipe.app.domain.errors import StorageError, UploadConflict
from video_recipe.app.infra.storage.base import BlobStorage
from video_recipe.app.services.upload_progress import ProgressCallback, SimulatedProgress

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
DEFAULT_CLEANUP_ATTEMPTS = 3

UploadMode = Literal["parts", "signed_url"]
UploadSource = Union[bytes, str, Path]


def part_path(path: str, index: int) -> str:
    return f"{path}.part{index}"


def _source_size(source: UploadSource) -> int:
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    return os.path.getsize(source)


def iter_chunks(source: UploadSource, chunk_size: int) -> Iterator[bytes]:
    if isinstance(source, (bytes, bytearray)):
        for start in range(0, len(source), chunk_size):
            yield bytes(source[start:start + chunk_size])
        return
    with open(source, "rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


def _read_all(source: UploadSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    return Path(source).read_bytes()


class ChunkedUploader:
    def __init__(
        self,
        storage: BlobStorage,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        mode: UploadMode = "parts",
        threshold: Optional[int] = None,
        http_client: Optional[httpx.Client] = None,
        cleanup_attempts: int = DEFAULT_CLEANUP_ATTEMPTS,
        simulate_small_uploads: bool = True,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self._storage = storage
        self.chunk_size = chunk_size
        self.mode = mode
        self.threshold = threshold if threshold is not None else chunk_size
        self._http_client = http_client
        self.cleanup_attempts = max(1, cleanup_attempts)
        self.simulate_small_uploads = simulate_small_uploads

    def upload(
        self,
        source: UploadSource,
        path: str,
        bucket: str,
        on_progress: Optional[ProgressCallback] = None,
        content_type: str = "video/mp4",
    ) -> None:
        """
        Upload a file or byte payload to bucket/path.

        Raises:
            UploadConflict: If an object already exists at the destination
            StorageError: On any storage failure (parts already cleaned up)
        """
        if self._storage.exists(bucket, path):
            raise UploadConflict(bucket, path)

        total = _source_size(source)
        logger.info("Uploading %s/%s (%d bytes, mode=%s)", bucket, path, total, self.mode)

        if total <= self.threshold:
            self._upload_single(source, path, bucket, total, on_progress, content_type)
        elif self.mode == "signed_url":
            self._upload_signed_url(source, path, bucket, total, on_progress, content_type)
        else:
            self._upload_parts(source, path, bucket, total, on_progress, content_type)

        logger.info("Upload finished: %s/%s", bucket, path)

    def _upload_single(
        self,
        source: UploadSource,
        path: str,
        bucket: str,
        total: int,
        on_progress: Optional[ProgressCallback],
        content_type: str,
    ) -> None:
        data = _read_all(source)
        if on_progress is None:
            self._storage.upload(bucket, path, data, content_type)
            return
        if self.simulate_small_uploads:
            with SimulatedProgress(on_progress, total):
                self._storage.upload(bucket, path, data, content_type)
            return
        self._storage.upload(bucket, path, data, content_type)
        on_progress(total, total)

    def _upload_parts(
        self,
        source: UploadSource,
        path: str,
        bucket: str,
        total: int,
        on_progress: Optional[ProgressCallback],
        content_type: str,
    ) -> None:
        written: list[str] = []
        uploaded = 0
        try:
            for index, chunk in enumerate(iter_chunks(source, self.chunk_size)):
                name = part_path(path, index)
                self._storage.upload(bucket, name, chunk, "application/octet-stream")
                written.append(name)
                uploaded += len(chunk)
                if on_progress is not None:
                    on_progress(uploaded, total)
                logger.debug("Uploaded part %d (%d/%d bytes)", index, uploaded, total)

            self._storage.upload(bucket, path, _read_all(source), content_type)
        except Exception:
            logger.error("Chunked upload of %s/%s failed, removing %d parts", bucket, path, len(written))
            self._remove_parts(bucket, written)
            raise

        self._remove_parts(bucket, written)

    def _remove_parts(self, bucket: str, parts: list[str]) -> None:
        if not parts:
            return
        for attempt in range(1, self.cleanup_attempts + 1):
            try:
                self._storage.remove(bucket, parts)
                return
            except StorageError as e:
                logger.warning(
                    "Part cleanup attempt %d/%d failed for %s: %s",
                    attempt,
                    self.cleanup_attempts,
                    bucket,
                    e,
                )
        logger.error("Orphaned upload parts left in %s: %s", bucket, parts)

    def _upload_signed_url(
        self,
        source: UploadSource,
        path: str,
        bucket: str,
        total: int,
        on_progress: Optional[ProgressCallback],
        content_type: str,
    ) -> None:
        url = self._storage.create_signed_upload_url(bucket, path)

        def body() -> Iterator[bytes]:
            sent = 0
            for chunk in iter_chunks(source, self.chunk_size):
                yield chunk
                sent += len(chunk)
                if on_progress is not None:
                    on_progress(sent, total)

        client = self._http_client or httpx.Client(timeout=None)
        try:
            response = client.put(
                url,
                content=body(),
                headers={"Content-Type": content_type, "Content-Length": str(total)},
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Signed URL upload of {bucket}/{path} failed: {e}") from e
        finally:
            if self._http_client is None:
                client.close()

        if response.status_code == 409:
            raise UploadConflict(bucket, path)
        if response.status_code >= 400:
            raise StorageError(
                f"Signed URL upload of {bucket}/{path} failed: HTTP {response.status_code} {response.text[:200]}"
            )
