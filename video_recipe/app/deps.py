# video_recipe/app/deps.py
"""
FastAPI dependencies. Long-lived collaborators (Supabase client, AI router,
pipeline) are created once per process and shared.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from supabase import Client, create_client

from video_recipe.app.config import get_settings
from video_recipe.app.infra.db.supabase_recipes_repo import (
    SupabaseFrameRepository,
    SupabaseRecipeJobRepository,
    SupabaseUploadProgressRepository,
)
from video_recipe.app.infra.realtime.supabase_feed import SupabaseChangeFeed
from video_recipe.app.services.ai_router import AIRouter
from video_recipe.app.services.embeddings import EmbeddingGenerator
from video_recipe.app.services.job_state import JobStatusWatcher, ProcessingStateMachine
from video_recipe.app.services.recipe_synthesizer import RecipeSynthesizer
from video_recipe.app.services.video_pipeline import VideoPipeline, build_pipeline
from video_recipe.app.services.vision import VisionDescriber

logger = logging.getLogger(__name__)


@lru_cache
def get_supabase() -> Client:
    settings = get_settings()
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)


auth_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None


def user_from_token(token: str, supa: Client) -> CurrentUser:
    """Validate a Supabase access token and return the minimal user record."""
    try:
        res = supa.auth.get_user(token)
    except Exception as e:
        logger.info("Token validation failed: %s", e)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid/expired token") from e

    user = res.user if res else None
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    name = None
    meta = getattr(user, "user_metadata", None) or {}
    if isinstance(meta, dict):
        name = meta.get("name")
    return CurrentUser(id=str(user.id), email=user.email, name=name)


async def get_current_user(
    cred: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
    supa: Client = Depends(get_supabase),
) -> CurrentUser:
    """Receives `Authorization: Bearer <access_token>` issued by Supabase Auth."""
    if cred is None or cred.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return user_from_token(cred.credentials, supa)


@lru_cache
def get_ai_router() -> AIRouter:
    return AIRouter.from_settings(get_settings())


def get_recipe_repo(supa: Client = Depends(get_supabase)) -> SupabaseRecipeJobRepository:
    return SupabaseRecipeJobRepository(supa)


def get_progress_repo(supa: Client = Depends(get_supabase)) -> SupabaseUploadProgressRepository:
    return SupabaseUploadProgressRepository(supa)


def get_state_machine(
    repo: SupabaseRecipeJobRepository = Depends(get_recipe_repo),
) -> ProcessingStateMachine:
    return ProcessingStateMachine(repo)


@lru_cache
def get_pipeline() -> VideoPipeline:
    return build_pipeline(get_settings(), get_ai_router(), client=get_supabase())


def get_embedding_generator(
    supa: Client = Depends(get_supabase),
    ai: AIRouter = Depends(get_ai_router),
) -> EmbeddingGenerator:
    settings = get_settings()
    return EmbeddingGenerator(
        ai,
        dimension=settings.EMBEDDING_DIMENSION,
        batch_size=settings.EMBEDDING_BATCH_SIZE,
        frame_repo=SupabaseFrameRepository(supa),
    )


def get_vision(ai: AIRouter = Depends(get_ai_router)) -> VisionDescriber:
    return VisionDescriber(ai)


def get_synthesizer(
    supa: Client = Depends(get_supabase),
    ai: AIRouter = Depends(get_ai_router),
) -> RecipeSynthesizer:
    return RecipeSynthesizer(ai, SupabaseRecipeJobRepository(supa), SupabaseFrameRepository(supa))


@lru_cache
def get_change_feed() -> SupabaseChangeFeed:
    return SupabaseChangeFeed()


def get_status_watcher(
    repo: SupabaseRecipeJobRepository = Depends(get_recipe_repo),
    feed: SupabaseChangeFeed = Depends(get_change_feed),
) -> JobStatusWatcher:
    return JobStatusWatcher(feed, repo)
