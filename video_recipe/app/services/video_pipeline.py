# video_recipe/app/services/video_pipeline.py
"""
End-to-end processing of one uploaded cooking video.

submit():  create job -> upload video -> record URL -> processing -> process()
process(): thumbnail -> extract frames -> upload frames -> describe -> embed
           -> store frames -> synthesize recipe -> attribution -> completed
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from supabase import Client

from video_recipe.app.config import Settings
from video_recipe.app.domain.errors import JobFailed, PipelineError
from video_recipe.app.domain.models import (
    ExtractedFrame,
    Frame,
    FrameDescription,
    JobOutcome,
    QueueStatus,
)
from video_recipe.app.infra.ai.base import AIProvider
from video_recipe.app.infra.db.base import (
    FrameRepository,
    RecipeJobRepository,
    UploadProgressRepository,
)
from video_recipe.app.infra.db.supabase_recipes_repo import (
    SupabaseFrameRepository,
    SupabaseRecipeJobRepository,
    SupabaseUploadProgressRepository,
    create_supabase_client,
)
from video_recipe.app.infra.storage.base import BlobStorage
from video_recipe.app.infra.storage.r2_provider import R2BlobStorage
from video_recipe.app.infra.storage.supabase_provider import SupabaseBlobStorage
from video_recipe.app.services.chunked_upload import ChunkedUploader
from video_recipe.app.services.embeddings import EmbeddingGenerator
from video_recipe.app.services.frame_extractor import FrameExtractor
from video_recipe.app.services.job_state import ProcessingStateMachine, frame_failure_message
from video_recipe.app.services.recipe_synthesizer import RecipeSynthesizer
from video_recipe.app.services.upload_progress import UploadProgressTracker
from video_recipe.app.services.vision import VisionDescriber

logger = logging.getLogger(__name__)

VideoPath = Union[str, Path]


@dataclass
class PipelineConfig:
    videos_bucket: str = "videos"
    frames_bucket: str = "frames"
    thumbnails_bucket: str = "thumbnails"
    frame_interval_seconds: float = 5.0
    min_frame_success_rate: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        return cls(
            videos_bucket=settings.VIDEOS_BUCKET,
            frames_bucket=settings.FRAMES_BUCKET,
            thumbnails_bucket=settings.THUMBNAILS_BUCKET,
            frame_interval_seconds=settings.FRAME_INTERVAL_SECONDS,
            min_frame_success_rate=settings.MIN_FRAME_SUCCESS_RATE,
        )


class VideoPipeline:
    def __init__(
        self,
        state: ProcessingStateMachine,
        recipes: RecipeJobRepository,
        frames: FrameRepository,
        progress: UploadProgressRepository,
        storage: BlobStorage,
        uploader: ChunkedUploader,
        extractor: FrameExtractor,
        vision: VisionDescriber,
        embeddings: EmbeddingGenerator,
        synthesizer: RecipeSynthesizer,
        config: Optional[PipelineConfig] = None,
    ):
        self.state = state
        self.recipes = recipes
        self.frames = frames
        self.progress = progress
        self.storage = storage
        self.uploader = uploader
        self.extractor = extractor
        self.vision = vision
        self.embeddings = embeddings
        self.synthesizer = synthesizer
        self.config = config or PipelineConfig()

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        owner_id: str,
        video_path: VideoPath,
        thumbnail: Optional[bytes] = None,
    ) -> JobOutcome:
        """Create a job for a local video file and run it to a terminal state."""
        recipe, _ = self.state.create_job(owner_id)
        return self.run(recipe.id, owner_id, video_path, thumbnail=thumbnail)

    def run(
        self,
        recipe_id: str,
        owner_id: str,
        video_path: VideoPath,
        thumbnail: Optional[bytes] = None,
    ) -> JobOutcome:
        """Upload and process a video for a job that is still `pending`."""
        try:
            self.upload_video(recipe_id, owner_id, video_path)
        except (PipelineError, OSError) as e:
            message = f"Upload failed: {e}"
            self._fail(recipe_id, message)
            return JobOutcome(recipe_id=recipe_id, status=QueueStatus.FAILED, error=message)
        except Exception as e:
            logger.exception("Unexpected error uploading video for recipe %s", recipe_id)
            self._fail(recipe_id, f"Upload failed: {e}")
            raise

        try:
            self.state.start_processing(recipe_id)
        except PipelineError as e:
            message = f"Could not start processing: {e}"
            self._fail(recipe_id, message)
            return JobOutcome(recipe_id=recipe_id, status=QueueStatus.FAILED, error=message)

        return self.process(recipe_id, owner_id, video_path, thumbnail=thumbnail)

    def upload_video(self, recipe_id: str, owner_id: str, video_path: VideoPath) -> str:
        """
        Upload the raw video with progress tracking and record its public URL.

        Returns:
            The public video URL
        """
        path = BlobStorage.build_path(owner_id, f"{recipe_id}.mp4")
        tracker = UploadProgressTracker(self.progress, recipe_id, Path(video_path).stat().st_size)
        tracker.start()
        try:
            self.uploader.upload(video_path, path, self.config.videos_bucket, on_progress=tracker)
        except Exception as e:
            tracker.fail(str(e))
            raise
        tracker.complete()

        video_url = self.storage.get_public_url(self.config.videos_bucket, path)
        self.recipes.set_video_url(recipe_id, video_url)
        logger.info("Video uploaded: recipe=%s, url=%s", recipe_id, video_url)
        return video_url

    # =========================================================================
    # Processing
    # =========================================================================

    def process(
        self,
        recipe_id: str,
        owner_id: str,
        video_path: VideoPath,
        thumbnail: Optional[bytes] = None,
    ) -> JobOutcome:
        """
        Run every processing stage for a job already in `processing`.
        Expected failures end the job as `failed`; unexpected ones do too and are re-raised.
        """
        outcome = JobOutcome(recipe_id=recipe_id, status=QueueStatus.PROCESSING)
        try:
            self._save_thumbnail(recipe_id, owner_id, video_path, thumbnail)

            extracted = self.extractor.extract(video_path, self.config.frame_interval_seconds)
            outcome.frames_total = len(extracted)
            if not extracted:
                raise JobFailed(recipe_id, "No frames could be extracted from the video")

            uploaded = self._upload_frames(recipe_id, owner_id, extracted)
            descriptions = self.vision.describe_frames(uploaded)
            outcome.frames_failed = sum(1 for d in descriptions if not d.succeeded)

            message = frame_failure_message(
                outcome.frames_total,
                outcome.frames_failed,
                self.config.min_frame_success_rate,
            )
            if message:
                raise JobFailed(recipe_id, message)

            stored = self.frames.insert_frames(self._build_frames(recipe_id, descriptions))

            succeeded = [(d.timestamp, d.text) for d in descriptions if d.succeeded]
            synthesis = self.synthesizer.synthesize(recipe_id, succeeded)
            outcome.summary_strategy = synthesis.strategy

            self.synthesizer.extract_attribution(recipe_id, stored or None)

            self.state.complete(recipe_id)
            outcome.status = QueueStatus.COMPLETED
            logger.info(
                "Job completed: recipe=%s, frames=%d, failed=%d, strategy=%s",
                recipe_id,
                outcome.frames_total,
                outcome.frames_failed,
                outcome.summary_strategy,
            )
        except JobFailed as e:
            self._fail(recipe_id, e.message)
            outcome.status = QueueStatus.FAILED
            outcome.error = e.message
        except PipelineError as e:
            self._fail(recipe_id, str(e))
            outcome.status = QueueStatus.FAILED
            outcome.error = str(e)
        except Exception as e:
            logger.exception("Unexpected error processing recipe %s", recipe_id)
            self._fail(recipe_id, f"Unexpected error: {e}")
            raise
        return outcome

    def _fail(self, recipe_id: str, message: str) -> None:
        try:
            self.state.fail(recipe_id, message)
        except PipelineError as e:
            logger.error("Could not mark recipe %s failed: %s", recipe_id, e)

    def _save_thumbnail(
        self,
        recipe_id: str,
        owner_id: str,
        video_path: VideoPath,
        thumbnail: Optional[bytes],
    ) -> None:
        data = thumbnail or self.extractor.extract_thumbnail(video_path)
        path = BlobStorage.build_path(owner_id, f"{recipe_id}.jpg")
        self.storage.upload(self.config.thumbnails_bucket, path, data, "image/jpeg")
        url = self.storage.get_public_url(self.config.thumbnails_bucket, path)
        self.recipes.set_thumbnail_url(recipe_id, url)

    def _upload_frames(
        self,
        recipe_id: str,
        owner_id: str,
        extracted: list[ExtractedFrame],
    ) -> list[tuple[float, str]]:
        uploaded = []
        for frame in extracted:
            path = BlobStorage.build_path(owner_id, recipe_id, f"{frame.timestamp:g}.jpg")
            self.storage.upload(self.config.frames_bucket, path, frame.image, "image/jpeg")
            uploaded.append((frame.timestamp, self.storage.get_public_url(self.config.frames_bucket, path)))
        logger.info("Uploaded %d frames for recipe %s", len(uploaded), recipe_id)
        return uploaded

    def _build_frames(self, recipe_id: str, descriptions: list[FrameDescription]) -> list[Frame]:
        succeeded = [d for d in descriptions if d.succeeded]
        vectors = self.embeddings.embed_many([d.text for d in succeeded])
        by_timestamp = {d.timestamp: vector for d, vector in zip(succeeded, vectors)}
        return [
            Frame(
                recipe_id=recipe_id,
                timestamp=d.timestamp,
                image_url=d.image_url,
                description=d.text,
                embedding=by_timestamp.get(d.timestamp),
            )
            for d in descriptions
        ]


# =============================================================================
# Composition
# =============================================================================

def build_blob_storage(settings: Settings, client: Optional[Client] = None) -> BlobStorage:
    if settings.STORAGE_PROVIDER == "r2":
        return R2BlobStorage(
            account_id=settings.R2_ACCOUNT_ID,
            access_key_id=settings.R2_ACCESS_KEY_ID,
            secret_access_key=settings.R2_SECRET_ACCESS_KEY,
            bucket_name=settings.R2_BUCKET_NAME,
            public_url=settings.R2_PUBLIC_URL,
        )
    return SupabaseBlobStorage(client or create_supabase_client())


def build_pipeline(settings: Settings, ai: AIProvider, client: Optional[Client] = None) -> VideoPipeline:
    """Wire the pipeline against Supabase (and R2 when configured)."""
    client = client or create_supabase_client()
    recipes = SupabaseRecipeJobRepository(client)
    frames = SupabaseFrameRepository(client)
    progress = SupabaseUploadProgressRepository(client)
    storage = build_blob_storage(settings, client)

    embeddings = EmbeddingGenerator(
        ai,
        dimension=settings.EMBEDDING_DIMENSION,
        batch_size=settings.EMBEDDING_BATCH_SIZE,
        frame_repo=frames,
    )
    return VideoPipeline(
        state=ProcessingStateMachine(recipes),
        recipes=recipes,
        frames=frames,
        progress=progress,
        storage=storage,
        uploader=ChunkedUploader(storage, chunk_size=settings.UPLOAD_CHUNK_SIZE, mode=settings.UPLOAD_MODE),
        extractor=FrameExtractor(jpeg_quality=settings.FRAME_JPEG_QUALITY),
        vision=VisionDescriber(ai, max_workers=settings.VISION_MAX_WORKERS),
        embeddings=embeddings,
        synthesizer=RecipeSynthesizer(ai, recipes, frames),
        config=PipelineConfig.from_settings(settings),
    )
