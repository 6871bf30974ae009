# video_recipe/app/infra/db/supabase_recipes_repo.py
"""
Supabase row store: recipes, processing_queue, video_frames and upload_progress.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from video_recipe.app.domain.errors import RepositoryError
from video_recipe.app.domain.models import (
    Attribution,
    Frame,
    ProcessingQueueEntry,
    QueueStatus,
    Recipe,
    RecipeStatus,
    UploadProgress,
    UploadStatus,
)
from video_recipe.app.infra.db.base import (
    FrameRepository,
    RecipeJobRepository,
    UploadProgressRepository,
)

logger = logging.getLogger(__name__)

ROW_STORE_ERRORS = (APIError, httpx.HTTPError, ConnectionError, TimeoutError)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None

    try:
        normalized = value.replace("Z", "+00:00") if value.endswith("Z") else value
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def _safe_str(value: object) -> str | None:
    return str(value) if value else None


def _parse_embedding(value: object) -> list[float] | None:
    # pgvector columns come back as "[0.1,0.2,...]" strings
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip().strip("[]")
        if not stripped:
            return []
        return [float(item) for item in stripped.split(",")]
    if isinstance(value, list):
        return [float(item) for item in value]
    return None


def row_to_attribution(value: object) -> Attribution:
    if not isinstance(value, dict):
        return Attribution()
    handles = value.get("handles")
    return Attribution(
        handle=_safe_str(value.get("handle") or value.get("socialHandle")),
        original_url=_safe_str(value.get("original_url") or value.get("sourceUrl")),
        platform=_safe_str(value.get("platform")),
        handles=[str(item) for item in handles if item] if isinstance(handles, list) else [],
    )


def row_to_recipe(row: dict[str, Any]) -> Recipe:
    return Recipe(
        id=str(row["id"]),
        owner_id=str(row["user_id"]),
        status=RecipeStatus(str(row.get("status") or RecipeStatus.DRAFT.value)),
        title=str(row.get("title") or ""),
        description=str(row.get("description") or ""),
        ingredients=list(row.get("ingredients") or []),
        instructions=str(row.get("instructions") or ""),
        attribution=row_to_attribution(row.get("attribution")),
        thumbnail_url=_safe_str(row.get("thumbnail_url")),
        video_url=_safe_str(row.get("video_url")),
        ai_generated=bool(row.get("ai_generated")),
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


def row_to_queue_entry(row: dict[str, Any]) -> ProcessingQueueEntry:
    return ProcessingQueueEntry(
        recipe_id=str(row["recipe_id"]),
        status=QueueStatus(str(row.get("status") or QueueStatus.PENDING.value)),
        started_at=_parse_datetime(row.get("started_at")),
        error=_safe_str(row.get("error")),
        created_at=_parse_datetime(row.get("created_at")),
    )


def row_to_frame(row: dict[str, Any]) -> Frame:
    return Frame(
        id=_safe_str(row.get("id")),
        recipe_id=str(row["recipe_id"]),
        timestamp=float(row.get("timestamp") or 0),
        image_url=str(row.get("image_url") or ""),
        description=row.get("description"),
        embedding=_parse_embedding(row.get("embedding")),
        created_at=_parse_datetime(row.get("created_at")),
    )


def row_to_upload_progress(row: dict[str, Any]) -> UploadProgress:
    return UploadProgress(
        recipe_id=str(row["recipe_id"]),
        bytes_uploaded=int(row.get("bytes_uploaded") or 0),
        total_bytes=int(row.get("total_bytes") or 0),
        speed=float(row.get("speed") or 0),
        status=UploadStatus(str(row.get("status") or UploadStatus.UPLOADING.value)),
        error=_safe_str(row.get("error")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


def create_supabase_client() -> Client:
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
    return create_client(url, key)


class SupabaseRecipeJobRepository(RecipeJobRepository):
    RECIPES_TABLE = "recipes"
    QUEUE_TABLE = "processing_queue"

    def __init__(self, client: Client | None = None):
        self._client = client or create_supabase_client()
        logger.info("SupabaseRecipeJobRepository initialized")

    def create_recipe_with_queue_entry(
        self,
        owner_id: str,
        title: str,
        description: str,
        thumbnail_url: Optional[str] = None,
    ) -> tuple[Recipe, ProcessingQueueEntry]:
        recipe_id = str(uuid4())
        recipe_data = {
            "id": recipe_id,
            "user_id": owner_id,
            "status": RecipeStatus.DRAFT.value,
            "title": title,
            "description": description,
            "thumbnail_url": thumbnail_url,
        }

        try:
            recipe_result = self._client.table(self.RECIPES_TABLE).insert(recipe_data).execute()
        except ROW_STORE_ERRORS as error:
            logger.error("Recipe insert failed: owner=%s, error=%s", owner_id, error)
            raise RepositoryError("create recipe", str(error)) from error

        if not recipe_result.data:
            raise RepositoryError("create recipe", "insert returned no row")

        try:
            queue_result = (
                self._client.table(self.QUEUE_TABLE)
                .insert({"recipe_id": recipe_id, "status": QueueStatus.PENDING.value})
                .execute()
            )
            if not queue_result.data:
                raise RepositoryError("create queue entry", "insert returned no row")
        except (RepositoryError, *ROW_STORE_ERRORS) as error:
            logger.error("Queue insert failed, rolling back recipe %s: %s", recipe_id, error)
            self._delete_recipe(recipe_id)
            if isinstance(error, RepositoryError):
                raise
            raise RepositoryError("create queue entry", str(error)) from error

        recipe = row_to_recipe(recipe_result.data[0])
        entry = row_to_queue_entry(queue_result.data[0])
        logger.info("Created recipe job: id=%s, owner=%s", recipe_id, owner_id)
        return recipe, entry

    def _delete_recipe(self, recipe_id: str) -> None:
        try:
            self._client.table(self.RECIPES_TABLE).delete().eq("id", recipe_id).execute()
        except ROW_STORE_ERRORS as error:
            logger.error("Failed to roll back recipe %s: %s", recipe_id, error)

    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        try:
            result = (
                self._client.table(self.RECIPES_TABLE)
                .select("*")
                .eq("id", recipe_id)
                .limit(1)
                .execute()
            )
        except ROW_STORE_ERRORS as error:
            raise RepositoryError("get recipe", str(error)) from error
        return row_to_recipe(result.data[0]) if result.data else None

    def get_queue_entry(self, recipe_id: str) -> Optional[ProcessingQueueEntry]:
        try:
            result = (
                self._client.table(self.QUEUE_TABLE)
                .select("recipe_id, status, error, started_at, created_at")
                .eq("recipe_id", recipe_id)
                .limit(1)
                .execute()
            )
        except ROW_STORE_ERRORS as error:
            raise RepositoryError("get queue entry", str(error)) from error
        return row_to_queue_entry(result.data[0]) if result.data else None

    def update_job_status(
        self,
        recipe_id: str,
        queue_status: QueueStatus,
        recipe_status: RecipeStatus,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        now = _now_utc().isoformat()
        queue_data: dict[str, Any] = {
            "status": queue_status.value,
            "error": error,
        }
        if started_at is not None:
            queue_data["started_at"] = started_at.isoformat()
        if queue_status.is_terminal:
            queue_data["completed_at"] = now

        # The queue row is written last and only after the recipe row agrees.
        self._update(
            self.RECIPES_TABLE,
            "id",
            recipe_id,
            {"status": recipe_status.value, "updated_at": now},
            "update recipe status",
        )
        self._update(self.QUEUE_TABLE, "recipe_id", recipe_id, queue_data, "update queue status")
        logger.info("Job status: id=%s, status=%s", recipe_id, queue_status.value)

    def set_video_url(self, recipe_id: str, video_url: str) -> None:
        self._update(self.RECIPES_TABLE, "id", recipe_id, {"video_url": video_url}, "set video url")

    def set_thumbnail_url(self, recipe_id: str, thumbnail_url: str) -> None:
        self._update(self.RECIPES_TABLE, "id", recipe_id, {"thumbnail_url": thumbnail_url}, "set thumbnail")

    def save_summary(
        self,
        recipe_id: str,
        title: str,
        description: str,
        ingredients: list[str],
        instructions: str,
    ) -> None:
        self._update(
            self.RECIPES_TABLE,
            "id",
            recipe_id,
            {
                "title": title,
                "description": description,
                "ingredients": ingredients,
                "instructions": instructions,
                "ai_generated": True,
                "updated_at": _now_utc().isoformat(),
            },
            "save summary",
        )

    def save_attribution(self, recipe_id: str, attribution: Attribution) -> None:
        self._update(
            self.RECIPES_TABLE,
            "id",
            recipe_id,
            {
                "attribution": {
                    "handle": attribution.handle,
                    "platform": attribution.platform,
                    "original_url": attribution.original_url,
                    "handles": list(attribution.handles),
                },
            },
            "save attribution",
        )

    def _update(self, table: str, column: str, value: str, data: dict[str, Any], operation: str) -> None:
        try:
            result = self._client.table(table).update(data).eq(column, value).execute()
        except ROW_STORE_ERRORS as error:
            logger.error("Row store %s failed: id=%s, error=%s", operation, value, error)
            raise RepositoryError(operation, str(error)) from error
        if not result.data:
            raise RepositoryError(operation, f"no row matched {column}={value}")


class SupabaseFrameRepository(FrameRepository):
    TABLE_NAME = "video_frames"

    def __init__(self, client: Client | None = None):
        self._client = client or create_supabase_client()

    def insert_frames(self, frames: list[Frame]) -> list[Frame]:
        if not frames:
            return []
        rows = [
            {
                "recipe_id": frame.recipe_id,
                "timestamp": frame.timestamp,
                "description": frame.description,
                "image_url": frame.image_url,
                "embedding": frame.embedding,
            }
            for frame in frames
        ]
        try:
            result = self._client.table(self.TABLE_NAME).insert(rows).execute()
        except ROW_STORE_ERRORS as error:
            logger.error("Frame insert failed: recipe=%s, error=%s", frames[0].recipe_id, error)
            raise RepositoryError("insert frames", str(error)) from error
        return [row_to_frame(row) for row in result.data or []]

    def list_frames(
        self,
        recipe_id: str,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Frame]:
        try:
            query = (
                self._client.table(self.TABLE_NAME)
                .select("*")
                .eq("recipe_id", recipe_id)
                .order("timestamp", desc=descending)
            )
            if limit is not None:
                query = query.limit(limit)
            result = query.execute()
        except ROW_STORE_ERRORS as error:
            raise RepositoryError("list frames", str(error)) from error
        return [row_to_frame(row) for row in result.data or []]

    def correct_frame(
        self,
        frame_id: str,
        description: str,
        embedding: Optional[list[float]],
    ) -> Frame:
        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .update({"description": description, "embedding": embedding})
                .eq("id", frame_id)
                .execute()
            )
        except ROW_STORE_ERRORS as error:
            raise RepositoryError("correct frame", str(error)) from error
        if not result.data:
            raise RepositoryError("correct frame", f"frame {frame_id} not found")
        logger.info("Frame corrected: id=%s", frame_id)
        return row_to_frame(result.data[0])

    def search_frames(
        self,
        query_embedding: list[float],
        similarity_threshold: float = 0.5,
        match_count: int = 5,
    ) -> list[dict[str, Any]]:
        try:
            result = self._client.rpc(
                "search_frames",
                {
                    "query_embedding": query_embedding,
                    "similarity_threshold": similarity_threshold,
                    "match_count": match_count,
                },
            ).execute()
        except ROW_STORE_ERRORS as error:
            raise RepositoryError("search frames", str(error)) from error
        return list(result.data or [])


class SupabaseUploadProgressRepository(UploadProgressRepository):
    TABLE_NAME = "upload_progress"

    def __init__(self, client: Client | None = None):
        self._client = client or create_supabase_client()

    def upsert_progress(self, progress: UploadProgress) -> None:
        data = {
            "recipe_id": progress.recipe_id,
            "progress": progress.progress,
            "bytes_uploaded": progress.bytes_uploaded,
            "total_bytes": progress.total_bytes,
            "speed": progress.speed,
            "status": progress.status.value,
            "error": progress.error,
            "updated_at": _now_utc().isoformat(),
        }
        try:
            self._client.table(self.TABLE_NAME).upsert(data).execute()
        except ROW_STORE_ERRORS as error:
            raise RepositoryError("upsert upload progress", str(error)) from error

    def mark_failed(self, recipe_id: str, error: str) -> None:
        try:
            (
                self._client.table(self.TABLE_NAME)
                .update({"status": UploadStatus.FAILED.value, "error": error})
                .eq("recipe_id", recipe_id)
                .execute()
            )
        except ROW_STORE_ERRORS as store_error:
            raise RepositoryError("mark upload failed", str(store_error)) from store_error

    def delete_progress(self, recipe_id: str) -> None:
        try:
            self._client.table(self.TABLE_NAME).delete().eq("recipe_id", recipe_id).execute()
        except ROW_STORE_ERRORS as error:
            raise RepositoryError("delete upload progress", str(error)) from error

    def get_progress(self, recipe_id: str) -> Optional[UploadProgress]:
        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .select("*")
                .eq("recipe_id", recipe_id)
                .limit(1)
                .execute()
            )
        except ROW_STORE_ERRORS as error:
            raise RepositoryError("get upload progress", str(error)) from error
        return row_to_upload_progress(result.data[0]) if result.data else None
