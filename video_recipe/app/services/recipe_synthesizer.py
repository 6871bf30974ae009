# video_recipe/app/services/recipe_synthesizer.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from video_recipe.app.domain.errors import PipelineError
from video_recipe.app.domain.models import Attribution, Frame
from video_recipe.app.infra.ai.base import AIProvider
from video_recipe.app.infra.db.base import FrameRepository, RecipeJobRepository
from video_recipe.app.schemas.recipes import RecipeSummary, SocialHandle
from video_recipe.app.services.prompts import (
    RECIPE_SYSTEM,
    SOCIAL_MEDIA_DETECTION,
    build_recipe_prompt,
)
from video_recipe.app.services.response_normalizer import (
    RECIPE_SUMMARY_SCHEMA,
    SOCIAL_HANDLE_SCHEMA,
    ResponseNormalizer,
)

logger = logging.getLogger(__name__)

ATTRIBUTION_FRAME_COUNT = 2


@dataclass
class SynthesisResult:
    summary: RecipeSummary
    strategy: str
    degraded: bool
    raw_response: str = ""
    backend_error: Optional[str] = None


@dataclass
class SocialDetection:
    handle: Optional[SocialHandle]
    raw_response: str
    strategy: str


class RecipeSynthesizer:
    """
    Turns frame descriptions into a recipe and looks for the creator's social handle.
    Synthesis always yields a best-effort result; backend failures end up as a
    placeholder summary rather than an exception.
    """

    def __init__(
        self,
        ai: AIProvider,
        recipes: RecipeJobRepository,
        frames: Optional[FrameRepository] = None,
        normalizer: Optional[ResponseNormalizer] = None,
    ):
        self._ai = ai
        self._recipes = recipes
        self._frames = frames
        self._normalizer = normalizer or ResponseNormalizer()

    def synthesize_from_descriptions(
        self,
        descriptions: list[tuple[float, str]],
        prompt: Optional[str] = None,
    ) -> SynthesisResult:
        full_prompt = build_recipe_prompt(descriptions, template=prompt)
        raw = ""
        backend_error = None
        try:
            raw = self._ai.complete(full_prompt, system=RECIPE_SYSTEM, json_mode=True)
        except PipelineError as e:
            backend_error = str(e)
            logger.error("Recipe synthesis call failed, using fallback: %s", e)

        result = self._normalizer.normalize(raw, RECIPE_SUMMARY_SCHEMA)
        try:
            summary = RecipeSummary.model_validate(result.value)
        except ValidationError as e:
            logger.warning("Synthesized recipe did not validate, using defaults: %s", e)
            summary = RecipeSummary()

        return SynthesisResult(
            summary=summary,
            strategy=result.strategy,
            degraded=result.is_degraded,
            raw_response=raw,
            backend_error=backend_error,
        )

    def synthesize(self, recipe_id: str, descriptions: list[tuple[float, str]]) -> SynthesisResult:
        """
        Synthesize and persist the recipe.

        Raises:
            RepositoryError: If the summary could not be written
        """
        result = self.synthesize_from_descriptions(descriptions)
        summary = result.summary
        self._recipes.save_summary(
            recipe_id,
            title=summary.title,
            description=summary.description,
            ingredients=summary.ingredients,
            instructions=summary.instructions,
        )
        logger.info(
            "Recipe summary saved: id=%s, title=%r, strategy=%s",
            recipe_id,
            summary.title,
            result.strategy,
        )
        return result

    def detect_social_handle(self, image_url: str) -> SocialDetection:
        raw = self._ai.describe_image(image_url, SOCIAL_MEDIA_DETECTION)
        result = self._normalizer.normalize(raw, SOCIAL_HANDLE_SCHEMA)
        handle = None
        if result.value.get("handle") and result.value.get("platform"):
            handle = SocialHandle(platform=result.value["platform"], handle=result.value["handle"])
        return SocialDetection(handle=handle, raw_response=raw, strategy=result.strategy)

    def extract_attribution(
        self,
        recipe_id: str,
        frames: Optional[list[Frame]] = None,
    ) -> Optional[Attribution]:
        """
        Look for social handles in the last frames and record them on the recipe.
        The first handle found is the primary one; every distinct handle is kept in `handles`.
        Existing attribution is left alone when nothing is found. Never raises.
        """
        try:
            if frames is None:
                if self._frames is None:
                    return None
                frames = self._frames.list_frames(recipe_id, descending=True, limit=ATTRIBUTION_FRAME_COUNT)
            else:
                frames = sorted(frames, key=lambda f: f.timestamp, reverse=True)[:ATTRIBUTION_FRAME_COUNT]

            found: dict[str, SocialHandle] = {}
            for frame in frames:
                detection = self.detect_social_handle(frame.image_url)
                if detection.handle is not None:
                    found.setdefault(detection.handle.as_key(), detection.handle)

            if not found:
                logger.info("No social handle found for recipe %s", recipe_id)
                return None

            first = next(iter(found.values()))
            existing = self._recipes.get_recipe(recipe_id)
            attribution = Attribution(
                handle=first.handle,
                platform=first.platform,
                original_url=existing.attribution.original_url if existing else None,
                handles=list(found),
            )
            self._recipes.save_attribution(recipe_id, attribution)
            logger.info("Attribution saved: id=%s, %s", recipe_id, ", ".join(found))
            return attribution
        except PipelineError as e:
            logger.warning("Attribution pass failed for recipe %s: %s", recipe_id, e)
            return None
