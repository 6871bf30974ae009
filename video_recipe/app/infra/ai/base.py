# video_recipe/app/infra/ai/base.py
"""
Abstract capability interface for AI backends.
Both implementations expose identical signatures so pipeline stages never
branch on the backend.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class AIProvider(ABC):
    """
    Vision, text completion and embedding capabilities.

    Implementations:
    - OllamaProvider: local Ollama-compatible HTTP server
    - OpenAIProvider: remote OpenAI-compatible chat-completions API
    """

    name: str = "abstract"

    @property
    @abstractmethod
    def models(self) -> dict[str, str]:
        """Configured model names keyed by capability (vision, text, embed)."""
        pass

    @abstractmethod
    def describe_image(self, image_url: str, prompt: str) -> str:
        """
        Describe one image.

        Args:
            image_url: Publicly reachable URL of the image
            prompt: Instruction sent alongside the image

        Returns:
            The model's text answer

        Raises:
            ModelNotFound: If the vision model is not installed/available
            BackendUnavailable: On transport or API failure
        """
        pass

    @abstractmethod
    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Run a text completion and return the raw model text.
        The text is not validated; callers pass it through the response normalizer.
        """
        pass

    @abstractmethod
    def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts, one vector per input, in input order.

        Raises:
            BackendUnavailable: On transport or API failure
        """
        pass

    @abstractmethod
    def list_models(self) -> list[str]:
        """Models the backend reports as available."""
        pass

    def probe(self) -> None:
        """
        Check the backend is reachable.

        Raises:
            BackendUnavailable: If it is not
        """
        self.list_models()
