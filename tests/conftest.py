from __future__ import annotations

import posixpath
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

import pytest

from video_recipe.app.domain.errors import (
    BackendUnavailable,
    RepositoryError,
    StorageError,
    UploadConflict,
)
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
from video_recipe.app.infra.ai.base import AIProvider
from video_recipe.app.infra.db.base import (
    FrameRepository,
    RecipeJobRepository,
    UploadProgressRepository,
)
from video_recipe.app.infra.realtime.base import ChangeCallback, ChangeFeed, Subscription
from video_recipe.app.infra.storage.base import BlobStorage, StoredObject
from video_recipe.app.services.prompts import SOCIAL_MEDIA_DETECTION


class InMemoryRecipeJobRepository(RecipeJobRepository):
    def __init__(self) -> None:
        self.recipes: dict[str, Recipe] = {}
        self.entries: dict[str, ProcessingQueueEntry] = {}
        self.status_history: list[tuple[str, QueueStatus]] = []
        self.fail_queue_insert = False
        self.fail_status_updates = False
        self.fail_once_on: set[QueueStatus] = set()
        self._counter = 0

    def create_recipe_with_queue_entry(
        self,
        owner_id: str,
        title: str,
        description: str,
        thumbnail_url: Optional[str] = None,
    ) -> tuple[Recipe, ProcessingQueueEntry]:
        if self.fail_queue_insert:
            raise RepositoryError("create queue entry", "insert failed")
        self._counter += 1
        recipe_id = f"recipe-{self._counter}"
        recipe = Recipe(
            id=recipe_id,
            owner_id=owner_id,
            title=title,
            description=description,
            thumbnail_url=thumbnail_url,
        )
        entry = ProcessingQueueEntry(recipe_id=recipe_id)
        self.recipes[recipe_id] = recipe
        self.entries[recipe_id] = entry
        return recipe, replace(entry)

    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        return self.recipes.get(recipe_id)

    def get_queue_entry(self, recipe_id: str) -> Optional[ProcessingQueueEntry]:
        entry = self.entries.get(recipe_id)
        return replace(entry) if entry else None

    def update_job_status(
        self,
        recipe_id: str,
        queue_status: QueueStatus,
        recipe_status: RecipeStatus,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        if self.fail_status_updates:
            raise RepositoryError("update queue status", "row store down")
        if queue_status in self.fail_once_on:
            self.fail_once_on.discard(queue_status)
            raise RepositoryError("update recipe status", "timeout")
        entry = self.entries[recipe_id]
        entry.status = queue_status
        entry.error = error
        if started_at is not None:
            entry.started_at = started_at
        self.recipes[recipe_id].status = recipe_status
        self.status_history.append((recipe_id, queue_status))

    def set_video_url(self, recipe_id: str, video_url: str) -> None:
        self.recipes[recipe_id].video_url = video_url

    def set_thumbnail_url(self, recipe_id: str, thumbnail_url: str) -> None:
        self.recipes[recipe_id].thumbnail_url = thumbnail_url

    def save_summary(
        self,
        recipe_id: str,
        title: str,
        description: str,
        ingredients: list[str],
        instructions: str,
    ) -> None:
        recipe = self.recipes[recipe_id]
        recipe.title = title
        recipe.description = description
        recipe.ingredients = list(ingredients)
        recipe.instructions = instructions
        recipe.ai_generated = True

    def save_attribution(self, recipe_id: str, attribution: Attribution) -> None:
        self.recipes[recipe_id].attribution = attribution


class InMemoryFrameRepository(FrameRepository):
    def __init__(self) -> None:
        self.frames: list[Frame] = []
        self.search_results: list[dict[str, Any]] = []
        self.search_calls: list[tuple[list[float], float, int]] = []
        self.list_calls: list[tuple[str, bool, Optional[int]]] = []

    def insert_frames(self, frames: list[Frame]) -> list[Frame]:
        stored = []
        for frame in frames:
            saved = replace(frame, id=f"frame-{len(self.frames) + 1}")
            self.frames.append(saved)
            stored.append(saved)
        return stored

    def list_frames(
        self,
        recipe_id: str,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Frame]:
        self.list_calls.append((recipe_id, descending, limit))
        frames = sorted(
            (f for f in self.frames if f.recipe_id == recipe_id),
            key=lambda f: f.timestamp,
            reverse=descending,
        )
        return frames[:limit] if limit is not None else frames

    def correct_frame(
        self,
        frame_id: str,
        description: str,
        embedding: Optional[list[float]],
    ) -> Frame:
        for index, frame in enumerate(self.frames):
            if frame.id == frame_id:
                self.frames[index] = replace(frame, description=description, embedding=embedding)
                return self.frames[index]
        raise RepositoryError("correct frame", f"frame {frame_id} not found")

    def search_frames(
        self,
        query_embedding: list[float],
        similarity_threshold: float = 0.5,
        match_count: int = 5,
    ) -> list[dict[str, Any]]:
        self.search_calls.append((query_embedding, similarity_threshold, match_count))
        return self.search_results[:match_count]


class InMemoryUploadProgressRepository(UploadProgressRepository):
    def __init__(self) -> None:
        self.rows: dict[str, UploadProgress] = {}
        self.history: list[UploadProgress] = []
        self.deleted: list[str] = []
        self.fail_writes = False

    def upsert_progress(self, progress: UploadProgress) -> None:
        if self.fail_writes:
            raise RepositoryError("upsert upload progress", "row store down")
        self.rows[progress.recipe_id] = progress
        self.history.append(progress)

    def mark_failed(self, recipe_id: str, error: str) -> None:
        if self.fail_writes:
            raise RepositoryError("mark upload failed", "row store down")
        row = self.rows.get(recipe_id) or UploadProgress(recipe_id, 0, 0)
        self.rows[recipe_id] = replace(row, status=UploadStatus.FAILED, error=error)

    def delete_progress(self, recipe_id: str) -> None:
        if self.fail_writes:
            raise RepositoryError("delete upload progress", "row store down")
        self.rows.pop(recipe_id, None)
        self.deleted.append(recipe_id)

    def get_progress(self, recipe_id: str) -> Optional[UploadProgress]:
        return self.rows.get(recipe_id)


class InMemoryBlobStorage(BlobStorage):
    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.upload_calls: list[tuple[str, str]] = []
        self.removed: list[tuple[str, list[str]]] = []
        self.fail_paths: set[str] = set()
        self.fail_removes = 0
        self.metadata: dict[tuple[str, str], dict[str, Any]] = {}

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        self.upload_calls.append((bucket, path))
        if (bucket, path) in self.objects:
            raise UploadConflict(bucket, path)
        if path in self.fail_paths:
            raise StorageError(f"upload of {bucket}/{path} failed")
        self.objects[(bucket, path)] = bytes(data)
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"https://storage.test/{bucket}/{path}"

    def remove(self, bucket: str, paths: list[str]) -> None:
        if self.fail_removes > 0:
            self.fail_removes -= 1
            raise StorageError("remove failed")
        self.removed.append((bucket, list(paths)))
        for path in paths:
            self.objects.pop((bucket, path), None)

    def list(self, bucket: str, prefix: str) -> list[str]:
        return sorted(path for (b, path) in self.objects if b == bucket and path.startswith(prefix))

    def list_objects(self, bucket: str, prefix: str = "") -> list[StoredObject]:
        return [
            StoredObject(path=path, metadata=dict(self.metadata.get((bucket, path), {})))
            for path in self.list(bucket, prefix)
        ]

    def create_signed_upload_url(self, bucket: str, path: str, expires_seconds: int = 3600) -> str:
        return f"https://storage.test/upload/{posixpath.join(bucket, path)}?token=signed"

    def paths(self, bucket: str) -> list[str]:
        return self.list(bucket, "")


class FakeAIProvider(AIProvider):
    name = "fake"

    def __init__(self) -> None:
        self.descriptions: dict[str, str] = {}
        self.failing_urls: set[str] = set()
        self.social_responses: dict[str, str] = {}
        self.completion: str = '{"title": "Tomato Pasta", "description": "Simple pasta.", "ingredients": ["pasta", "tomato"], "instructions": "1. Boil pasta"}'
        self.completion_error: Optional[Exception] = None
        self.reachable = True
        self.vision_calls: list[tuple[str, str]] = []
        self.complete_calls: list[tuple[str, Optional[str], bool]] = []
        self.embed_calls: list[list[str]] = []

    @property
    def models(self) -> dict[str, str]:
        return {"vision": "fake-vision", "text": "fake-text", "embed": "fake-embed"}

    def describe_image(self, image_url: str, prompt: str) -> str:
        self.vision_calls.append((image_url, prompt))
        if prompt == SOCIAL_MEDIA_DETECTION:
            return self.social_responses.get(image_url, "SOCIAL:none")
        if image_url in self.failing_urls:
            raise BackendUnavailable(self.name, f"vision failed for {image_url}")
        return self.descriptions.get(image_url, f"Cooking step shown at {image_url}")

    def complete(self, prompt: str, system: Optional[str] = None, json_mode: bool = False) -> str:
        self.complete_calls.append((prompt, system, json_mode))
        if self.completion_error is not None:
            raise self.completion_error
        return self.completion

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.embed_calls.append(list(texts))
        return [[float(len(text)), 1.0, 0.5] for text in texts]

    def list_models(self) -> list[str]:
        if not self.reachable:
            raise BackendUnavailable(self.name, "connection refused")
        return ["fake-vision", "fake-text", "fake-embed"]


class InMemoryChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self.subscriptions: list[Subscription] = []
        self.unsubscribed: list[Subscription] = []

    async def subscribe(
        self,
        table: str,
        column: str,
        value: str,
        on_change: ChangeCallback,
    ) -> Subscription:
        subscription = Subscription(table=table, column=column, value=value, handle=on_change)
        self.subscriptions.append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        self.unsubscribed.append(subscription)

    def emit(self, table: str, record: dict[str, Any]) -> None:
        for subscription in list(self.subscriptions):
            if not subscription.active or subscription.table != table:
                continue
            if str(record.get(subscription.column)) == subscription.value:
                subscription.handle(record)


@pytest.fixture
def recipe_repo() -> InMemoryRecipeJobRepository:
    return InMemoryRecipeJobRepository()


@pytest.fixture
def frame_repo() -> InMemoryFrameRepository:
    return InMemoryFrameRepository()


@pytest.fixture
def progress_repo() -> InMemoryUploadProgressRepository:
    return InMemoryUploadProgressRepository()


@pytest.fixture
def blob_storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
def fake_ai() -> FakeAIProvider:
    return FakeAIProvider()


@pytest.fixture
def change_feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()
