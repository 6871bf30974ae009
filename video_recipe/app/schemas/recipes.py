# video_recipe/app/schemas/recipes.py
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_TITLE = "Untitled Recipe"
DEFAULT_DESCRIPTION = "This recipe was created automatically from a cooking video."


class RecipeSummary(BaseModel):
    """Recipe synthesized from frame descriptions. Coerces loose model output."""

    title: str = DEFAULT_TITLE
    description: str = DEFAULT_DESCRIPTION
    ingredients: list[str] = Field(default_factory=list)
    instructions: str = ""

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        return value or DEFAULT_TITLE

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, value: str) -> str:
        return value or DEFAULT_DESCRIPTION

    @field_validator("ingredients", mode="before")
    @classmethod
    def _coerce_ingredients(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            parts = value.replace("\r", "").split("\n") if "\n" in value else value.split(",")
            return [part.strip(" -*\t") for part in parts if part.strip(" -*\t")]
        if isinstance(value, list):
            items = []
            for item in value:
                if isinstance(item, dict):
                    item = item.get("name") or item.get("item") or ""
                text = str(item).strip()
                if text:
                    items.append(text)
            return items
        return [str(value)]

    @field_validator("instructions", mode="before")
    @classmethod
    def _coerce_instructions(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, list):
            return "\n".join(
                f"{index}. {str(step).strip()}" for index, step in enumerate(value, start=1) if str(step).strip()
            )
        return str(value).strip()


class SocialHandle(BaseModel):
    platform: str
    handle: str

    @field_validator("platform", mode="before")
    @classmethod
    def _lower_platform(cls, value: Any) -> str:
        return str(value or "").strip().lower()

    @field_validator("handle", mode="before")
    @classmethod
    def _clean_handle(cls, value: Any) -> str:
        return str(value or "").strip().strip("'\"’‘`").strip()

    def as_key(self) -> str:
        return f"{self.platform}:{self.handle}"


# API models

class SubmitRecipeResponse(BaseModel):
    recipeId: str
    status: str
    videoUrl: Optional[str] = None


class JobStatusResponse(BaseModel):
    recipeId: str
    status: Literal["pending", "processing", "completed", "failed"]
    recipeStatus: Optional[str] = None
    error: Optional[str] = None
    startedAt: Optional[str] = None


class UploadProgressResponse(BaseModel):
    recipeId: str
    progress: float
    bytesUploaded: int
    totalBytes: int
    speed: float = 0.0
    status: Literal["uploading", "completed", "failed"]
    error: Optional[str] = None


class FrameSearchHit(BaseModel):
    recipeId: Optional[str] = None
    timestamp: Optional[float] = None
    description: Optional[str] = None
    imageUrl: Optional[str] = None
    similarity: Optional[float] = None


class FrameSearchResponse(BaseModel):
    query: str
    results: list[FrameSearchHit] = Field(default_factory=list)


class FrameAnalysisRequest(BaseModel):
    imageUrl: str = Field(..., min_length=1)
    prompt: Optional[str] = None


class FrameAnalysisResponse(BaseModel):
    backend: str
    description: str


class FrameDescriptionInput(BaseModel):
    timestamp: float = Field(default=0.0, ge=0)
    description: str


class RecipeSummaryRequest(BaseModel):
    frames: list[FrameDescriptionInput] = Field(..., min_length=1)
    prompt: Optional[str] = None


class RecipeSummaryResponse(BaseModel):
    summary: RecipeSummary
    strategy: str
    degraded: bool = False
    rawResponse: Optional[str] = None


class SocialDetectionRequest(BaseModel):
    imageUrl: str = Field(..., min_length=1)


class SocialDetectionResponse(BaseModel):
    detected: bool
    platform: Optional[str] = None
    handle: Optional[str] = None
    rawResponse: str = ""


class BackendInfoResponse(BaseModel):
    backend: str
    models: dict[str, str] = Field(default_factory=dict)
    availableModels: list[str] = Field(default_factory=list)
    reachable: bool = True
    error: Optional[str] = None
