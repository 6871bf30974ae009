# video_recipe/app/infra/ai/ollama_provider.py
"""
Local AI backend talking to an Ollama-compatible server over HTTP.

Endpoints:
- POST /api/generate   {model, prompt, images?, stream, format?}
- POST /api/embeddings {model, prompt} -> {embedding}
- GET  /api/tags       installed models
"""
from __future__ import annotations

import base64
import json
import logging
from typing import Any, Optional

import httpx
import numpy as np

from video_recipe.app.domain.errors import BackendUnavailable, ModelNotFound
from video_recipe.app.infra.ai.base import AIProvider

logger = logging.getLogger(__name__)

BACKEND_NAME = "local"


def l2_normalize(vector: list[float]) -> list[float]:
    array = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(array)
    if norm == 0:
        return array.tolist()
    return (array / norm).tolist()


def join_stream_fragments(text: str) -> Optional[str]:
    """
    Concatenate `.response` fields of newline-delimited partial objects.
    Returns None when the text is not a stream.
    """
    fragments = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError:
            return None
        if not isinstance(item, dict) or "response" not in item:
            return None
        fragments.append(str(item.get("response") or ""))
    return "".join(fragments) if fragments else None


class OllamaProvider(AIProvider):
    name = BACKEND_NAME

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        text_model: str = "llama3",
        vision_model: str = "llama3.2-vision:11b",
        embed_model: str = "nomic-embed-text",
        stream: bool = False,
        timeout: float = 120.0,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.text_model = text_model
        self.vision_model = vision_model
        self.embed_model = embed_model
        self.stream = stream
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

        logger.info(
            "OllamaProvider initialized: url=%s, text=%s, vision=%s, embed=%s",
            self.base_url,
            text_model,
            vision_model,
            embed_model,
        )

    @property
    def models(self) -> dict[str, str]:
        return {"vision": self.vision_model, "text": self.text_model, "embed": self.embed_model}

    def _post(self, path: str, payload: dict[str, Any], model: str) -> httpx.Response:
        try:
            response = self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error("Ollama request failed: path=%s, error=%s", path, e)
            raise BackendUnavailable(BACKEND_NAME, f"cannot reach {self.base_url}: {e}") from e

        if response.status_code >= 400:
            body = response.text
            if response.status_code == 404 or ("model" in body and "not found" in body):
                logger.error("Ollama model '%s' not found", model)
                raise ModelNotFound(BACKEND_NAME, model, hint=f"Run: ollama pull {model}")
            raise BackendUnavailable(
                BACKEND_NAME,
                f"HTTP {response.status_code} from {path}: {body[:200]}",
            )
        return response

    def _generate(
        self,
        model: str,
        prompt: str,
        images: Optional[list[str]] = None,
        format: Optional[str] = None,
    ) -> str:
        payload: dict[str, Any] = {"model": model, "prompt": prompt, "stream": self.stream}
        if images:
            payload["images"] = images
        if format:
            payload["format"] = format

        response = self._post("/api/generate", payload, model)
        text = response.text

        # Streaming servers answer with newline-delimited partials; those are
        # returned raw so the response normalizer can reassemble them.
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Ollama returned a non-JSON body (%d chars)", len(text))
            return text
        if isinstance(data, dict):
            return str(data.get("response") or "")
        return text

    def _fetch_image_base64(self, image_url: str) -> str:
        try:
            response = self._client.get(image_url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BackendUnavailable(BACKEND_NAME, f"cannot fetch image {image_url}: {e}") from e
        return base64.b64encode(response.content).decode("ascii")

    def describe_image(self, image_url: str, prompt: str) -> str:
        encoded = self._fetch_image_base64(image_url)
        logger.debug("Describing image with %s: %s", self.vision_model, image_url)
        raw = self._generate(self.vision_model, prompt, images=[encoded])
        joined = join_stream_fragments(raw)
        return (joined if joined is not None else raw).strip()

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        full_prompt = f"{system}\n\n{prompt}" if system else prompt
        return self._generate(self.text_model, full_prompt, format="json" if json_mode else None)

    def embed(self, texts: list[str]) -> list[list[float]]:
        vectors = []
        for text in texts:
            response = self._post(
                "/api/embeddings",
                {"model": self.embed_model, "prompt": text},
                self.embed_model,
            )
            embedding = response.json().get("embedding")
            if not isinstance(embedding, list):
                raise BackendUnavailable(BACKEND_NAME, "embedding missing from response")
            vectors.append(l2_normalize(embedding))
        return vectors

    def list_models(self) -> list[str]:
        try:
            response = self._client.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BackendUnavailable(BACKEND_NAME, f"cannot reach {self.base_url}: {e}") from e
        return [str(model.get("name")) for model in response.json().get("models", [])]

    def close(self) -> None:
        self._client.close()
