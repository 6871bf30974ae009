# workers/pipeline/config.py
"""
Configuration for the video pipeline worker.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


@dataclass
class WorkerConfig:
    """Configuration for the video pipeline worker."""

    # Worker identification
    worker_id: str = field(default_factory=lambda: _env("WORKER_ID", f"pipeline-{os.getpid()}"))

    # Owner used when --owner is not given
    default_owner_id: str = field(default_factory=lambda: _env("WORKER_OWNER_ID"))

    # Stop after the first failed video instead of continuing with the rest
    stop_on_failure: bool = field(
        default_factory=lambda: _env("WORKER_STOP_ON_FAILURE", "false").lower() == "true"
    )

    # Supabase (inherited from env)
    supabase_url: str = field(default_factory=lambda: _env("SUPABASE_URL"))
    supabase_key: str = field(default_factory=lambda: _env("SUPABASE_SERVICE_ROLE_KEY"))

    # AI backend
    ai_backend: str = field(default_factory=lambda: _env("AI_BACKEND", "local").lower())
    openai_api_key: str = field(default_factory=lambda: _env("OPENAI_API_KEY"))

    # Blob storage
    storage_provider: str = field(default_factory=lambda: _env("STORAGE_PROVIDER", "supabase").lower())
    r2_account_id: str = field(default_factory=lambda: _env("R2_ACCOUNT_ID"))
    r2_access_key_id: str = field(default_factory=lambda: _env("R2_ACCESS_KEY_ID"))
    r2_secret_access_key: str = field(default_factory=lambda: _env("R2_SECRET_ACCESS_KEY"))
    r2_bucket_name: str = field(default_factory=lambda: _env("R2_BUCKET_NAME"))

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not self.supabase_key:
            errors.append("SUPABASE_SERVICE_ROLE_KEY is required")

        if self.ai_backend not in ("local", "remote"):
            errors.append(f"AI_BACKEND must be 'local' or 'remote', got '{self.ai_backend}'")
        elif self.ai_backend == "remote" and not self.openai_api_key:
            errors.append("OPENAI_API_KEY is required when AI_BACKEND=remote")

        if self.storage_provider not in ("supabase", "r2"):
            errors.append(f"STORAGE_PROVIDER must be 'supabase' or 'r2', got '{self.storage_provider}'")
        elif self.storage_provider == "r2":
            if not self.r2_account_id:
                errors.append("R2_ACCOUNT_ID is required")
            if not self.r2_access_key_id:
                errors.append("R2_ACCESS_KEY_ID is required")
            if not self.r2_secret_access_key:
                errors.append("R2_SECRET_ACCESS_KEY is required")
            if not self.r2_bucket_name:
                errors.append("R2_BUCKET_NAME is required")

        return errors


def get_config() -> WorkerConfig:
    """Get worker configuration from environment."""
    return WorkerConfig()
