# video_recipe/app/services/vision.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from video_recipe.app.domain.errors import PipelineError
from video_recipe.app.domain.models import FrameDescription
from video_recipe.app.infra.ai.base import AIProvider
from video_recipe.app.services.prompts import FRAME_ANALYSIS

logger = logging.getLogger(__name__)


def placeholder_description(image_url: str) -> str:
    return f"Description unavailable for frame at {image_url}"


class VisionDescriber:
    """
    Describes frame images with the selected AI backend.

    describe_frames() isolates failures: a frame whose description fails gets a
    placeholder text and the remaining frames are still described.
    """

    def __init__(self, ai: AIProvider, prompt: str = FRAME_ANALYSIS, max_workers: int = 1):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._ai = ai
        self.prompt = prompt
        self.max_workers = max_workers

    def describe(self, image_url: str, prompt: Optional[str] = None) -> str:
        return self._ai.describe_image(image_url, prompt or self.prompt)

    def _describe_one(self, timestamp: float, image_url: str) -> FrameDescription:
        try:
            text = self.describe(image_url)
        except PipelineError as e:
            logger.warning("Frame %.1fs description failed: %s", timestamp, e)
            return FrameDescription(
                timestamp=timestamp,
                image_url=image_url,
                text=placeholder_description(image_url),
                succeeded=False,
                error=str(e),
            )
        if not text.strip():
            logger.warning("Frame %.1fs returned an empty description", timestamp)
            return FrameDescription(
                timestamp=timestamp,
                image_url=image_url,
                text=placeholder_description(image_url),
                succeeded=False,
                error="empty description",
            )
        return FrameDescription(timestamp=timestamp, image_url=image_url, text=text.strip(), succeeded=True)

    def describe_frames(self, frames: list[tuple[float, str]]) -> list[FrameDescription]:
        """
        Describe (timestamp, image_url) pairs.

        Returns:
            One FrameDescription per input, in input order
        """
        if self.max_workers == 1 or len(frames) <= 1:
            results = [self._describe_one(timestamp, url) for timestamp, url in frames]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(lambda item: self._describe_one(*item), frames))

        failed = sum(1 for result in results if not result.succeeded)
        logger.info("Described %d frames (%d failed)", len(results), failed)
        return results
