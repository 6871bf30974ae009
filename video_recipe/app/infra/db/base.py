# video_recipe/app/infra/db/base.py
"""
Abstract base classes for the row store.
These interfaces allow easy swapping between different persistence backends.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from video_recipe.app.domain.models import (
    Attribution,
    Frame,
    ProcessingQueueEntry,
    QueueStatus,
    Recipe,
    RecipeStatus,
    UploadProgress,
)


class RecipeJobRepository(ABC):
    """
    Recipes and their processing queue entries.

    Implementations:
    - SupabaseRecipeJobRepository: tables `recipes` and `processing_queue`
    """

    @abstractmethod
    def create_recipe_with_queue_entry(
        self,
        owner_id: str,
        title: str,
        description: str,
        thumbnail_url: Optional[str] = None,
    ) -> tuple[Recipe, ProcessingQueueEntry]:
        """
        Create a draft recipe and its pending queue entry together.
        If either insert fails nothing is left behind.

        Raises:
            RepositoryError: If the pair could not be created
        """
        pass

    @abstractmethod
    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        pass

    @abstractmethod
    def get_queue_entry(self, recipe_id: str) -> Optional[ProcessingQueueEntry]:
        pass

    @abstractmethod
    def update_job_status(
        self,
        recipe_id: str,
        queue_status: QueueStatus,
        recipe_status: RecipeStatus,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        """
        Write the queue status and the mirrored recipe status.

        Raises:
            RepositoryError: If either row could not be updated
        """
        pass

    @abstractmethod
    def set_video_url(self, recipe_id: str, video_url: str) -> None:
        pass

    @abstractmethod
    def set_thumbnail_url(self, recipe_id: str, thumbnail_url: str) -> None:
        pass

    @abstractmethod
    def save_summary(
        self,
        recipe_id: str,
        title: str,
        description: str,
        ingredients: list[str],
        instructions: str,
    ) -> None:
        """Persist the synthesized recipe and flag it as AI generated."""
        pass

    @abstractmethod
    def save_attribution(self, recipe_id: str, attribution: Attribution) -> None:
        pass


class FrameRepository(ABC):
    """
    Described video frames (`video_frames`).
    """

    @abstractmethod
    def insert_frames(self, frames: list[Frame]) -> list[Frame]:
        """
        Insert frame rows. Embeddings must already have the stored dimension.

        Returns:
            The stored frames (with ids)
        """
        pass

    @abstractmethod
    def list_frames(
        self,
        recipe_id: str,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Frame]:
        """Frames of one recipe ordered by timestamp."""
        pass

    @abstractmethod
    def correct_frame(
        self,
        frame_id: str,
        description: str,
        embedding: Optional[list[float]],
    ) -> Frame:
        """Explicitly rewrite a sealed frame's description and embedding."""
        pass

    @abstractmethod
    def search_frames(
        self,
        query_embedding: list[float],
        similarity_threshold: float = 0.5,
        match_count: int = 5,
    ) -> list[dict[str, Any]]:
        """Vector similarity search over all stored frame embeddings."""
        pass


class UploadProgressRepository(ABC):
    """
    Ephemeral upload progress rows (`upload_progress`), one per in-flight upload.
    """

    @abstractmethod
    def upsert_progress(self, progress: UploadProgress) -> None:
        pass

    @abstractmethod
    def mark_failed(self, recipe_id: str, error: str) -> None:
        pass

    @abstractmethod
    def delete_progress(self, recipe_id: str) -> None:
        pass

    @abstractmethod
    def get_progress(self, recipe_id: str) -> Optional[UploadProgress]:
        pass
