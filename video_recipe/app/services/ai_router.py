# video_recipe/app/services/ai_router.py
"""
Selects the AI backend once, from configuration, and exposes it behind the
AIProvider interface. There is no silent fallback: a second backend is only
tried when AI_BACKEND_FALLBACK names it.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from video_recipe.app.config import Settings
from video_recipe.app.domain.errors import BackendUnavailable, ConfigurationError
from video_recipe.app.infra.ai.base import AIProvider
from video_recipe.app.infra.ai.ollama_provider import OllamaProvider
from video_recipe.app.infra.ai.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, Settings], AIProvider]


def build_provider(backend: str, settings: Settings) -> AIProvider:
    if backend == "local":
        return OllamaProvider(
            base_url=settings.OLLAMA_BASE_URL,
            text_model=settings.OLLAMA_TEXT_MODEL,
            vision_model=settings.OLLAMA_VISION_MODEL,
            embed_model=settings.OLLAMA_EMBED_MODEL,
            stream=settings.OLLAMA_STREAM,
            timeout=settings.OLLAMA_TIMEOUT_SECONDS,
        )
    if backend == "remote":
        if not settings.OPENAI_API_KEY:
            raise ConfigurationError(["OPENAI_API_KEY is required when AI_BACKEND=remote"])
        return OpenAIProvider(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            vision_model=settings.OPENAI_VISION_MODEL,
            text_model=settings.OPENAI_TEXT_MODEL,
            embed_model=settings.OPENAI_EMBED_MODEL,
        )
    raise ConfigurationError([f"Unknown AI backend: {backend}"])


class AIRouter(AIProvider):
    """
    The backend chosen for this process.

    Pipeline stages receive the router explicitly; they never pick a backend
    themselves.
    """

    def __init__(
        self,
        primary: AIProvider,
        fallback: Optional[AIProvider] = None,
        probe: bool = True,
    ):
        self._provider = self._select(primary, fallback) if probe else primary
        self.name = self._provider.name

    @staticmethod
    def _select(primary: AIProvider, fallback: Optional[AIProvider]) -> AIProvider:
        try:
            primary.probe()
            logger.info("AI backend selected: %s", primary.name)
            return primary
        except BackendUnavailable as e:
            if fallback is None:
                logger.error("AI backend %s unavailable: %s", primary.name, e)
                raise
            logger.warning(
                "AI backend %s unavailable (%s); using configured fallback %s",
                primary.name,
                e.reason,
                fallback.name,
            )

        fallback.probe()
        logger.info("AI backend selected: %s (fallback)", fallback.name)
        return fallback

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        factory: ProviderFactory = build_provider,
        probe: bool = True,
    ) -> "AIRouter":
        primary = factory(settings.AI_BACKEND, settings)
        fallback = None
        if settings.AI_BACKEND_FALLBACK and settings.AI_BACKEND_FALLBACK != settings.AI_BACKEND:
            fallback = factory(settings.AI_BACKEND_FALLBACK, settings)
        return cls(primary, fallback=fallback, probe=probe)

    @property
    def provider(self) -> AIProvider:
        return self._provider

    @property
    def models(self) -> dict[str, str]:
        return self._provider.models

    def describe_image(self, image_url: str, prompt: str) -> str:
        return self._provider.describe_image(image_url, prompt)

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        return self._provider.complete(prompt, system=system, json_mode=json_mode)

    def embed(self, texts: list[str]) -> list[list[float]]:
        return self._provider.embed(texts)

    def list_models(self) -> list[str]:
        return self._provider.list_models()

    def describe_backend(self) -> dict[str, Any]:
        """Diagnostics: active backend, configured models and what the backend reports."""
        info: dict[str, Any] = {
            "backend": self.name,
            "models": dict(self.models),
            "available_models": [],
            "reachable": True,
            "error": None,
        }
        try:
            info["available_models"] = self.list_models()
        except BackendUnavailable as e:
            info["reachable"] = False
            info["error"] = str(e)
        return info
