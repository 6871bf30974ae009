# workers/pipeline/main.py
"""
Command-line worker: turn local cooking videos into recipes.

    python -m workers.pipeline.main VIDEO [VIDEO ...] --owner <user-uuid>
    python -m workers.pipeline.main --cleanup-expired
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional, Sequence

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from video_recipe.app.config import Settings, get_settings
from video_recipe.app.domain.errors import ConfigurationError, PipelineError
from video_recipe.app.domain.models import JobOutcome, QueueStatus
from video_recipe.app.services.ai_router import AIRouter
from video_recipe.app.infra.storage.base import BlobStorage
from video_recipe.app.services.retention import cleanup_expired_videos
from video_recipe.app.services.video_pipeline import VideoPipeline, build_blob_storage, build_pipeline
from workers.pipeline.config import WorkerConfig, get_config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("pipeline-worker")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


class PipelineWorker:
    def __init__(self, config: WorkerConfig, pipeline: VideoPipeline):
        self.config = config
        self.pipeline = pipeline
        self.running = False
        self.current_video: Optional[Path] = None
        self.outcomes: list[JobOutcome] = []

    def start(self, videos: Sequence[Path], owner_id: str) -> int:
        self._validate_configuration()
        self._setup_signal_handlers()
        self._log_startup_info(videos, owner_id)
        self.running = True
        self._run(videos, owner_id)
        self._shutdown()
        return self.exit_code()

    def _validate_configuration(self) -> None:
        errors = self.config.validate()
        if errors:
            raise ConfigurationError(errors)

    def _setup_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown_signal)
        signal.signal(signal.SIGINT, self._handle_shutdown_signal)

    def _log_startup_info(self, videos: Sequence[Path], owner_id: str) -> None:
        logger.info(
            "Starting pipeline worker: id=%s, videos=%d, owner=%s",
            self.config.worker_id,
            len(videos),
            owner_id,
        )

    def _run(self, videos: Sequence[Path], owner_id: str) -> None:
        for video in videos:
            if not self.running:
                logger.info("Shutdown requested, skipping remaining videos")
                break

            outcome = self._process_video(video, owner_id)
            if outcome is not None:
                self.outcomes.append(outcome)

            if self.config.stop_on_failure and (outcome is None or outcome.status is QueueStatus.FAILED):
                logger.warning("Stopping after failed video: %s", video)
                break

    def _process_video(self, video: Path, owner_id: str) -> Optional[JobOutcome]:
        if not video.is_file():
            logger.error("Video not found: %s", video)
            return None

        self.current_video = video
        logger.info("Processing video: %s", video)
        try:
            outcome = self.pipeline.submit(owner_id, video)
        except PipelineError as error:
            logger.error("Could not create job for %s: %s", video, error)
            return None
        finally:
            self.current_video = None

        if outcome.status is QueueStatus.COMPLETED:
            logger.info(
                "Recipe ready: id=%s, frames=%d, failed_frames=%d",
                outcome.recipe_id,
                outcome.frames_total,
                outcome.frames_failed,
            )
        else:
            logger.error("Recipe failed: id=%s, error=%s", outcome.recipe_id, outcome.error)
        return outcome

    def exit_code(self) -> int:
        if not self.outcomes:
            return EXIT_FAILED
        if any(outcome.status is not QueueStatus.COMPLETED for outcome in self.outcomes):
            return EXIT_FAILED
        return EXIT_OK

    def _handle_shutdown_signal(self, signum: int, frame: object) -> None:
        logger.info("Received shutdown signal %d", signum)
        self.running = False

    def _shutdown(self) -> None:
        completed = sum(1 for outcome in self.outcomes if outcome.status is QueueStatus.COMPLETED)
        logger.info(
            "Worker shutting down: completed=%d, failed=%d",
            completed,
            len(self.outcomes) - completed,
        )


def create_default_dependencies(config: WorkerConfig) -> VideoPipeline:
    settings = get_settings()
    ai = AIRouter.from_settings(settings)
    return build_pipeline(settings, ai)


def create_cleanup_storage(settings: Settings) -> BlobStorage:
    return build_blob_storage(settings)


def run_cleanup(config: WorkerConfig) -> int:
    """Delete expired source videos and their thumbnails."""
    try:
        errors = config.validate()
        if errors:
            raise ConfigurationError(errors)
        settings = get_settings()
        max_age = timedelta(days=settings.VIDEO_RETENTION_DAYS) if settings.VIDEO_RETENTION_DAYS else None
        report = cleanup_expired_videos(
            create_cleanup_storage(settings),
            videos_bucket=settings.VIDEOS_BUCKET,
            thumbnails_bucket=settings.THUMBNAILS_BUCKET,
            max_age=max_age,
        )
    except ConfigurationError as error:
        for message in error.errors:
            logger.error("Configuration error: %s", message)
        return EXIT_CONFIG
    except PipelineError as error:
        logger.error("Cleanup failed: %s", error)
        return EXIT_FAILED

    for path in report.deleted_videos:
        logger.info("Deleted expired video: %s", path)
    return EXIT_FAILED if report.skipped else EXIT_OK


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Turn cooking videos into recipes.")
    parser.add_argument("videos", nargs="*", type=Path, metavar="VIDEO", help="Local video file(s)")
    parser.add_argument("--owner", default=None, help="Owner user id (defaults to WORKER_OWNER_ID)")
    parser.add_argument(
        "--cleanup-expired",
        action="store_true",
        help="Delete videos whose deleteAt has passed, with their thumbnails, then exit",
    )
    args = parser.parse_args(argv)
    if not args.videos and not args.cleanup_expired:
        parser.error("at least one VIDEO is required unless --cleanup-expired is given")
    return args


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    config = get_config()

    if args.cleanup_expired:
        return run_cleanup(config)

    owner_id = args.owner or config.default_owner_id
    if not owner_id:
        logger.error("An owner id is required (--owner or WORKER_OWNER_ID)")
        return EXIT_CONFIG

    try:
        errors = config.validate()
        if errors:
            raise ConfigurationError(errors)
        pipeline = create_default_dependencies(config)
        worker = PipelineWorker(config=config, pipeline=pipeline)
        return worker.start(args.videos, owner_id)
    except ConfigurationError as error:
        for message in error.errors:
            logger.error("Configuration error: %s", message)
        return EXIT_CONFIG
    except PipelineError as error:
        logger.error("Worker could not start: %s", error)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
