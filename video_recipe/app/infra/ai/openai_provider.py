# video_recipe/app/infra/ai/openai_provider.py
"""
Remote AI backend using the OpenAI SDK.
Any OpenAI-compatible host works through OPENAI_BASE_URL.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import openai
from openai import OpenAI

from video_recipe.app.domain.errors import BackendUnavailable, ModelNotFound
from video_recipe.app.infra.ai.base import AIProvider

logger = logging.getLogger(__name__)

BACKEND_NAME = "remote"
VISION_MAX_TOKENS = 300


class OpenAIProvider(AIProvider):
    name = BACKEND_NAME

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        vision_model: str = "gpt-4o-mini",
        text_model: str = "gpt-4o-mini",
        embed_model: str = "text-embedding-3-small",
        client: OpenAI | None = None,
    ):
        self.vision_model = vision_model
        self.text_model = text_model
        self.embed_model = embed_model
        self._client = client or OpenAI(api_key=api_key or None, base_url=base_url or None)

        logger.info(
            "OpenAIProvider initialized: base_url=%s, vision=%s, text=%s, embed=%s",
            base_url or "default",
            vision_model,
            text_model,
            embed_model,
        )

    @property
    def models(self) -> dict[str, str]:
        return {"vision": self.vision_model, "text": self.text_model, "embed": self.embed_model}

    def _call(self, model_name: str, operation: str, fn, **kwargs) -> Any:
        try:
            return fn(**kwargs)
        except openai.NotFoundError as e:
            logger.error("Remote model '%s' not found during %s", model_name, operation)
            raise ModelNotFound(BACKEND_NAME, model_name) from e
        except openai.APIError as e:
            logger.error("Remote %s failed: %s", operation, e)
            raise BackendUnavailable(BACKEND_NAME, f"{operation} failed: {e}") from e

    @staticmethod
    def _first_choice_text(response) -> str:
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    def describe_image(self, image_url: str, prompt: str) -> str:
        response = self._call(
            self.vision_model,
            "vision",
            self._client.chat.completions.create,
            model=self.vision_model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            max_tokens=VISION_MAX_TOKENS,
        )
        return self._first_choice_text(response)

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {"model": self.text_model, "messages": messages}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = self._call(
            self.text_model,
            "completion",
            self._client.chat.completions.create,
            **kwargs,
        )
        return self._first_choice_text(response)

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = self._call(
            self.embed_model,
            "embedding",
            self._client.embeddings.create,
            model=self.embed_model,
            input=texts,
        )
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    def list_models(self) -> list[str]:
        page = self._call(self.text_model, "model listing", self._client.models.list)
        return [model.id for model in page]
