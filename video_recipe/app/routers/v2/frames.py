# video_recipe/app/routers/v2/frames.py
"""
Semantic search over described video frames.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from starlette.concurrency import run_in_threadpool

from video_recipe.app.deps import CurrentUser, get_current_user, get_embedding_generator
from video_recipe.app.domain.errors import BackendUnavailable, RepositoryError
from video_recipe.app.schemas.recipes import FrameSearchHit, FrameSearchResponse
from video_recipe.app.services.embeddings import EmbeddingGenerator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v2/frames", tags=["Frames V2"])


@router.get("/search", response_model=FrameSearchResponse)
async def search_frames(
    q: str = Query(..., min_length=1),
    limit: int = Query(default=5, ge=1, le=50),
    threshold: float = Query(default=0.5, ge=0.0, le=1.0),
    current_user: CurrentUser = Depends(get_current_user),
    embeddings: EmbeddingGenerator = Depends(get_embedding_generator),
):
    try:
        rows = await run_in_threadpool(embeddings.search_frames, q, limit, threshold)
    except BackendUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except RepositoryError as e:
        logger.error("Frame search failed: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Frame search failed")

    hits = [
        FrameSearchHit(
            recipeId=row.get("recipe_id"),
            timestamp=row.get("timestamp"),
            description=row.get("description"),
            imageUrl=row.get("image_url"),
            similarity=row.get("similarity"),
        )
        for row in rows
    ]
    return FrameSearchResponse(query=q, results=hits)
