# video_recipe/app/routers/admin.py
"""
Diagnostics for the AI backend: run single stages of the pipeline by hand.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from starlette.concurrency import run_in_threadpool

from video_recipe.app.deps import (
    CurrentUser,
    get_ai_router,
    get_current_user,
    get_synthesizer,
    get_vision,
)
from video_recipe.app.domain.errors import BackendUnavailable, ModelNotFound
from video_recipe.app.schemas.recipes import (
    BackendInfoResponse,
    FrameAnalysisRequest,
    FrameAnalysisResponse,
    RecipeSummaryRequest,
    RecipeSummaryResponse,
    SocialDetectionRequest,
    SocialDetectionResponse,
)
from video_recipe.app.services.ai_router import AIRouter
from video_recipe.app.services.recipe_synthesizer import RecipeSynthesizer
from video_recipe.app.services.vision import VisionDescriber

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def _backend_error(error: BackendUnavailable) -> HTTPException:
    if isinstance(error, ModelNotFound):
        return HTTPException(status_code=status.HTTP_424_FAILED_DEPENDENCY, detail=str(error))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))


@router.post("/test-frame-analysis", response_model=FrameAnalysisResponse)
async def test_frame_analysis(
    request: FrameAnalysisRequest,
    current_user: CurrentUser = Depends(get_current_user),
    ai: AIRouter = Depends(get_ai_router),
    vision: VisionDescriber = Depends(get_vision),
):
    try:
        description = await run_in_threadpool(vision.describe, request.imageUrl, request.prompt)
    except BackendUnavailable as e:
        raise _backend_error(e)
    return FrameAnalysisResponse(backend=ai.name, description=description)


@router.post("/test-recipe-summary", response_model=RecipeSummaryResponse)
async def test_recipe_summary(
    request: RecipeSummaryRequest,
    current_user: CurrentUser = Depends(get_current_user),
    synthesizer: RecipeSynthesizer = Depends(get_synthesizer),
):
    """Synthesize a recipe from hand-written frame descriptions, optionally with a custom prompt."""
    descriptions = [(frame.timestamp, frame.description) for frame in request.frames]
    result = await run_in_threadpool(
        synthesizer.synthesize_from_descriptions,
        descriptions,
        request.prompt,
    )
    if result.backend_error:
        logger.warning("Recipe summary test used fallback: %s", result.backend_error)
    return RecipeSummaryResponse(
        summary=result.summary,
        strategy=result.strategy,
        degraded=result.degraded,
        rawResponse=result.raw_response or None,
    )


@router.post("/test-social-detection", response_model=SocialDetectionResponse)
async def test_social_detection(
    request: SocialDetectionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    synthesizer: RecipeSynthesizer = Depends(get_synthesizer),
):
    try:
        detection = await run_in_threadpool(synthesizer.detect_social_handle, request.imageUrl)
    except BackendUnavailable as e:
        raise _backend_error(e)
    handle = detection.handle
    return SocialDetectionResponse(
        detected=handle is not None,
        platform=handle.platform if handle else None,
        handle=handle.handle if handle else None,
        rawResponse=detection.raw_response,
    )


@router.get("/backend", response_model=BackendInfoResponse)
async def backend_info(
    current_user: CurrentUser = Depends(get_current_user),
    ai: AIRouter = Depends(get_ai_router),
):
    info = await run_in_threadpool(ai.describe_backend)
    return BackendInfoResponse(
        backend=info["backend"],
        models=info["models"],
        availableModels=info["available_models"],
        reachable=info["reachable"],
        error=info["error"],
    )
