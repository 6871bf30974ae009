from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BackendName = Literal["local", "remote"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=False,
        extra="ignore",
    )

    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    APP_ENV: str = "local"
    FRONTEND_CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
    )

    # AI backend selection (resolved once per process)
    AI_BACKEND: BackendName = "local"
    AI_BACKEND_FALLBACK: Optional[BackendName] = None

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_TEXT_MODEL: str = "llama3"
    OLLAMA_VISION_MODEL: str = "llama3.2-vision:11b"
    OLLAMA_EMBED_MODEL: str = "nomic-embed-text"
    OLLAMA_STREAM: bool = False
    OLLAMA_TIMEOUT_SECONDS: float = 120.0

    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_VISION_MODEL: str = "gpt-4o-mini"
    OPENAI_TEXT_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBED_MODEL: str = "text-embedding-3-small"

    # Pipeline tuning
    EMBEDDING_DIMENSION: int = Field(default=1536, ge=1)
    EMBEDDING_BATCH_SIZE: int = Field(default=32, ge=1)
    FRAME_INTERVAL_SECONDS: float = Field(default=5.0, gt=0)
    FRAME_JPEG_QUALITY: int = Field(default=80, ge=1, le=100)
    VISION_MAX_WORKERS: int = Field(default=1, ge=1, le=8)
    MIN_FRAME_SUCCESS_RATE: float = Field(default=0.0, ge=0.0, le=1.0)

    # Upload / storage
    UPLOAD_CHUNK_SIZE: int = Field(default=5 * 1024 * 1024, ge=1)
    UPLOAD_MODE: Literal["parts", "signed_url"] = "parts"
    STORAGE_PROVIDER: Literal["supabase", "r2"] = "supabase"
    VIDEOS_BUCKET: str = "videos"
    FRAMES_BUCKET: str = "frames"
    THUMBNAILS_BUCKET: str = "thumbnails"
    # Videos without a deleteAt marker are kept forever unless this is set
    VIDEO_RETENTION_DAYS: Optional[int] = Field(default=None, ge=1)

    R2_ACCOUNT_ID: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET_NAME: str = ""
    R2_PUBLIC_URL: str = ""


@lru_cache
def get_settings() -> Settings:
    return Settings()
