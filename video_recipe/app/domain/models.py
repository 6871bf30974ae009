# video_recipe/app/domain/models.py
"""
Domain models for the video-to-recipe processing pipeline.
These are pure data structures with no infrastructure dependencies.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class RecipeStatus(str, Enum):
    """Lifecycle status stored on the recipe row."""
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueStatus(str, Enum):
    """Status of the processing queue entry that drives a job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


class UploadStatus(str, Enum):
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Attribution:
    """Where a recipe originally came from."""
    handle: Optional[str] = None
    original_url: Optional[str] = None
    platform: Optional[str] = None
    handles: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.handle and not self.original_url


@dataclass
class Recipe:
    """
    A recipe created from one uploaded video.
    Status transitions are owned by the processing pipeline.
    """
    id: str
    owner_id: str
    status: RecipeStatus = RecipeStatus.DRAFT
    title: str = ""
    description: str = ""
    ingredients: list[str] = field(default_factory=list)
    instructions: str = ""
    attribution: Attribution = field(default_factory=Attribution)
    thumbnail_url: Optional[str] = None
    video_url: Optional[str] = None
    ai_generated: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ProcessingQueueEntry:
    """One row per recipe tracking the processing job."""
    recipe_id: str
    status: QueueStatus = QueueStatus.PENDING
    started_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.status.is_terminal


@dataclass
class ExtractedFrame:
    """A still image sampled from the video, JPEG encoded."""
    timestamp: float  # seconds
    image: bytes


@dataclass
class Frame:
    """A described frame as stored in the row store."""
    recipe_id: str
    timestamp: float
    image_url: str
    description: Optional[str] = None
    embedding: Optional[list[float]] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.timestamp < 0:
            raise ValueError(f"Frame timestamp must be non-negative, got {self.timestamp}")

    @property
    def is_sealed(self) -> bool:
        """Frames with an embedding only change through an explicit correction."""
        return self.embedding is not None


@dataclass
class FrameDescription:
    """Result of describing one frame; failed frames carry a placeholder text."""
    timestamp: float
    image_url: str
    text: str
    succeeded: bool
    error: Optional[str] = None


@dataclass
class UploadProgress:
    recipe_id: str
    bytes_uploaded: int
    total_bytes: int
    speed: float = 0.0
    status: UploadStatus = UploadStatus.UPLOADING
    error: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def progress(self) -> float:
        if self.total_bytes <= 0:
            return 100.0 if self.status == UploadStatus.COMPLETED else 0.0
        return round(min(100.0, self.bytes_uploaded / self.total_bytes * 100), 2)


@dataclass
class SimilarityMatch:
    text: str
    similarity: float
    index: int


@dataclass
class JobOutcome:
    """Summary of a finished pipeline run."""
    recipe_id: str
    status: QueueStatus
    frames_total: int = 0
    frames_failed: int = 0
    error: Optional[str] = None
    summary_strategy: Optional[str] = None

    @property
    def frames_succeeded(self) -> int:
        return self.frames_total - self.frames_failed
