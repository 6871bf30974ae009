# video_recipe/app/main.py
from __future__ import annotations

import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from video_recipe.app.config import get_settings
from video_recipe.app.routers.admin import router as admin_router
from video_recipe.app.routers.v2.frames import router as frames_v2_router
from video_recipe.app.routers.v2.recipes import router as recipes_v2_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

settings = get_settings()

app = FastAPI(title="Video Recipe API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(recipes_v2_router)
app.include_router(frames_v2_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {"ok": True}
