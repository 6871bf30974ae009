# video_recipe/app/services/retention.py
"""
Removal of expired source videos.

A video is expired when its `deleteAt` metadata is in the past, or, when a
maximum age is configured, when it has no `deleteAt` and was last modified
longer ago than that. The matching `.jpg` thumbnail goes with it.
"""
from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from video_recipe.app.domain.errors import StorageError
from video_recipe.app.infra.storage.base import BlobStorage, StoredObject

logger = logging.getLogger(__name__)

DELETE_AT_KEYS = ("deleteat", "delete_at", "delete-at")


@dataclass
class CleanupReport:
    deleted_videos: list[str] = field(default_factory=list)
    deleted_thumbnails: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Cleanup completed. Deleted {len(self.deleted_videos)} expired files."


def thumbnail_path_for(video_path: str) -> str:
    root, _ = posixpath.splitext(video_path)
    return f"{root}.jpg"


def parse_delete_at(metadata: dict[str, Any]) -> Optional[datetime]:
    """
    Read the deletion time from object metadata.

    Metadata keys are matched case-insensitively; S3-style stores lowercase them.
    Naive timestamps are taken as UTC.
    """
    value = next(
        (metadata[key] for key in metadata if str(key).lower() in DELETE_AT_KEYS),
        None,
    )
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Unreadable deleteAt value: {value!r}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_expired(obj: StoredObject, now: datetime, max_age: Optional[timedelta] = None) -> bool:
    delete_at = parse_delete_at(obj.metadata)
    if delete_at is not None:
        return delete_at <= now
    if max_age is not None and obj.updated_at is not None:
        updated_at = obj.updated_at if obj.updated_at.tzinfo else obj.updated_at.replace(tzinfo=timezone.utc)
        return updated_at <= now - max_age
    return False


def cleanup_expired_videos(
    storage: BlobStorage,
    videos_bucket: str = "videos",
    thumbnails_bucket: str = "thumbnails",
    now: Optional[datetime] = None,
    max_age: Optional[timedelta] = None,
) -> CleanupReport:
    """
    Delete every expired video and its thumbnail.

    Args:
        storage: Blob storage holding both buckets
        videos_bucket: Bucket with the source videos
        thumbnails_bucket: Bucket with `<video stem>.jpg` thumbnails
        now: Reference time (defaults to the current UTC time)
        max_age: Age after which videos without `deleteAt` expire; None keeps them

    Returns:
        What was deleted. Objects with an unreadable `deleteAt` are listed in `skipped`.

    Raises:
        StorageError: If listing the videos or deleting them fails
    """
    now = now or datetime.now(timezone.utc)
    report = CleanupReport()

    for obj in storage.list_objects(videos_bucket):
        try:
            expired = is_expired(obj, now, max_age)
        except ValueError as e:
            logger.warning("Skipping %s/%s: %s", videos_bucket, obj.path, e)
            report.skipped.append(obj.path)
            continue
        if expired:
            report.deleted_videos.append(obj.path)

    if not report.deleted_videos:
        logger.info("No expired videos in %s", videos_bucket)
        return report

    storage.remove(videos_bucket, report.deleted_videos)

    thumbnails = [thumbnail_path_for(path) for path in report.deleted_videos]
    try:
        storage.remove(thumbnails_bucket, thumbnails)
        report.deleted_thumbnails = thumbnails
    except StorageError as e:
        # Thumbnail removal is best effort once the videos are gone
        logger.warning("Could not remove thumbnails for expired videos: %s", e)

    logger.info(report.message)
    return report
