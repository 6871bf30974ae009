# video_recipe/app/routers/v2/recipes.py
"""
Video-to-recipe job routes: submission, status (poll and push) and upload progress.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    HTTPException,
    Query,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from starlette.concurrency import run_in_threadpool
from supabase import Client

from video_recipe.app.deps import (
    CurrentUser,
    get_current_user,
    get_pipeline,
    get_progress_repo,
    get_recipe_repo,
    get_state_machine,
    get_status_watcher,
    get_supabase,
    user_from_token,
)
from video_recipe.app.domain.errors import JobNotFoundError, PipelineError, RepositoryError
from video_recipe.app.domain.models import ProcessingQueueEntry, Recipe
from video_recipe.app.infra.db.base import RecipeJobRepository, UploadProgressRepository
from video_recipe.app.schemas.recipes import (
    JobStatusResponse,
    SubmitRecipeResponse,
    UploadProgressResponse,
)
from video_recipe.app.services.job_state import JobStatusWatcher, ProcessingStateMachine
from video_recipe.app.services.video_pipeline import VideoPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v2/recipes", tags=["Recipes V2"])

ALLOWED_VIDEO_TYPES = {"video/mp4", "video/quicktime", "video/webm", "video/x-msvideo"}


# =============================================================================
# Helper Functions
# =============================================================================

def _status_to_response(entry: ProcessingQueueEntry, recipe: Optional[Recipe] = None) -> JobStatusResponse:
    return JobStatusResponse(
        recipeId=entry.recipe_id,
        status=entry.status.value,
        recipeStatus=recipe.status.value if recipe else None,
        error=entry.error,
        startedAt=entry.started_at.isoformat() if entry.started_at else None,
    )


def _get_owned_recipe(repo: RecipeJobRepository, recipe_id: str, user_id: str) -> Recipe:
    try:
        recipe = repo.get_recipe(recipe_id)
    except RepositoryError as e:
        logger.error("Failed to load recipe %s: %s", recipe_id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Row store unavailable")
    if recipe is None or recipe.owner_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipe not found")
    return recipe


def _save_upload_to_temp(upload: UploadFile, suffix: str) -> Path:
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as handle:
        shutil.copyfileobj(upload.file, handle)
        return Path(handle.name)


def _run_pipeline_job(
    pipeline: VideoPipeline,
    recipe_id: str,
    owner_id: str,
    video_path: Path,
    thumbnail: Optional[bytes],
) -> None:
    try:
        outcome = pipeline.run(recipe_id, owner_id, video_path, thumbnail=thumbnail)
        logger.info("Background job finished: recipe=%s, status=%s", recipe_id, outcome.status.value)
    finally:
        video_path.unlink(missing_ok=True)


# =============================================================================
# Routes
# =============================================================================

@router.post("", response_model=SubmitRecipeResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_recipe_video(
    background_tasks: BackgroundTasks,
    video: UploadFile = File(...),
    thumbnail: Optional[UploadFile] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    state: ProcessingStateMachine = Depends(get_state_machine),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    """
    Upload a cooking video and start processing it.

    The job is created immediately (status `pending`) and processed in the
    background. Follow it with GET /v2/recipes/{id}/status or the websocket.
    """
    if video.content_type and video.content_type not in ALLOWED_VIDEO_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported video type: {video.content_type}",
        )

    try:
        recipe, entry = await run_in_threadpool(state.create_job, current_user.id)
    except RepositoryError as e:
        logger.error("Failed to create recipe job: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create recipe job",
        )

    suffix = Path(video.filename or "video.mp4").suffix or ".mp4"
    video_path = await run_in_threadpool(_save_upload_to_temp, video, suffix)
    thumbnail_bytes = await thumbnail.read() if thumbnail is not None else None

    background_tasks.add_task(
        _run_pipeline_job,
        pipeline,
        recipe.id,
        current_user.id,
        video_path,
        thumbnail_bytes or None,
    )

    logger.info("Recipe job submitted: id=%s, user=%s", recipe.id, current_user.id)
    return SubmitRecipeResponse(recipeId=recipe.id, status=entry.status.value)


@router.get("/{recipe_id}/status", response_model=JobStatusResponse)
async def get_recipe_status(
    recipe_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    repo: RecipeJobRepository = Depends(get_recipe_repo),
    state: ProcessingStateMachine = Depends(get_state_machine),
):
    """Current processing state. Observers call this on (re)connect."""
    recipe = await run_in_threadpool(_get_owned_recipe, repo, recipe_id, current_user.id)
    try:
        entry = await run_in_threadpool(state.current, recipe_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    except RepositoryError as e:
        logger.error("Failed to load job status for %s: %s", recipe_id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Row store unavailable")
    return _status_to_response(entry, recipe)


@router.get("/{recipe_id}/upload-progress", response_model=UploadProgressResponse)
async def get_upload_progress(
    recipe_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    repo: RecipeJobRepository = Depends(get_recipe_repo),
    progress_repo: UploadProgressRepository = Depends(get_progress_repo),
):
    await run_in_threadpool(_get_owned_recipe, repo, recipe_id, current_user.id)
    try:
        progress = await run_in_threadpool(progress_repo.get_progress, recipe_id)
    except RepositoryError as e:
        logger.error("Failed to load upload progress for %s: %s", recipe_id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Row store unavailable")
    if progress is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No upload in progress")
    return UploadProgressResponse(
        recipeId=progress.recipe_id,
        progress=progress.progress,
        bytesUploaded=progress.bytes_uploaded,
        totalBytes=progress.total_bytes,
        speed=progress.speed,
        status=progress.status.value,
        error=progress.error,
    )


@router.websocket("/{recipe_id}/status/ws")
async def watch_recipe_status(
    websocket: WebSocket,
    recipe_id: str,
    token: str = Query(...),
    supa: Client = Depends(get_supabase),
    repo: RecipeJobRepository = Depends(get_recipe_repo),
    watcher: JobStatusWatcher = Depends(get_status_watcher),
):
    """Sends the current status, then every change until the job is terminal."""
    try:
        user = await run_in_threadpool(user_from_token, token, supa)
        await run_in_threadpool(_get_owned_recipe, repo, recipe_id, user.id)
    except HTTPException:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    updates: asyncio.Queue[ProcessingQueueEntry] = asyncio.Queue()

    def _on_status(entry: ProcessingQueueEntry) -> None:
        loop.call_soon_threadsafe(updates.put_nowait, entry)

    try:
        handle = await watcher.watch(recipe_id, _on_status)
    except PipelineError as e:
        logger.error("Status subscription failed for %s: %s", recipe_id, e)
        await websocket.close(code=1011)
        return

    try:
        while True:
            entry = await updates.get()
            await websocket.send_json(_status_to_response(entry).model_dump())
            if entry.status.is_terminal:
                await websocket.close()
                break
    except WebSocketDisconnect:
        logger.info("Status watcher disconnected: recipe=%s", recipe_id)
    finally:
        await watcher.stop(handle)
