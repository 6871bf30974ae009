# video_recipe/app/services/embeddings.py
"""
Text embeddings for frame descriptions and semantic search.
Every stored vector has exactly `dimension` components.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import numpy as np

from video_recipe.app.domain.errors import BackendUnavailable
from video_recipe.app.domain.models import Frame, SimilarityMatch
from video_recipe.app.infra.ai.base import AIProvider
from video_recipe.app.infra.db.base import FrameRepository

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 1536
DEFAULT_BATCH_SIZE = 32


def fit_dimension(vector: Sequence[float], dimension: int = DEFAULT_DIMENSION) -> list[float]:
    """Zero-pad or truncate to exactly `dimension` components."""
    values = [float(v) for v in vector[:dimension]]
    if len(values) < dimension:
        values.extend([0.0] * (dimension - len(values)))
    return values


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Embeddings must have the same length ({len(a)} != {len(b)})")
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0:
        return 0.0
    similarity = float(np.dot(va, vb) / denominator)
    return max(-1.0, min(1.0, similarity))


class EmbeddingGenerator:
    def __init__(
        self,
        ai: AIProvider,
        dimension: int = DEFAULT_DIMENSION,
        batch_size: int = DEFAULT_BATCH_SIZE,
        frame_repo: Optional[FrameRepository] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._ai = ai
        self.dimension = dimension
        self.batch_size = batch_size
        self._frame_repo = frame_repo

    def embed(self, text: str) -> list[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed in fixed-size batches. Output order matches input order."""
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            raw = self._ai.embed(batch)
            if len(raw) != len(batch):
                raise BackendUnavailable(
                    getattr(self._ai, "name", "unknown"),
                    f"returned {len(raw)} embeddings for {len(batch)} inputs",
                )
            vectors.extend(fit_dimension(vector, self.dimension) for vector in raw)
            logger.debug("Embedded batch %d-%d", start, start + len(batch))
        return vectors

    def find_similar(self, query: str, corpus: list[str], top_k: int = 5) -> list[SimilarityMatch]:
        """Rank corpus entries by similarity to the query, ties kept in corpus order."""
        if not corpus or top_k <= 0:
            return []
        query_vector = self.embed(query)
        corpus_vectors = self.embed_many(corpus)
        matches = [
            SimilarityMatch(text=text, similarity=cosine_similarity(query_vector, vector), index=index)
            for index, (text, vector) in enumerate(zip(corpus, corpus_vectors))
        ]
        matches.sort(key=lambda match: (-match.similarity, match.index))
        return matches[:top_k]

    def search_frames(self, query: str, limit: int = 5, threshold: float = 0.5) -> list[dict[str, Any]]:
        """Semantic search over stored frames through the row store's vector RPC."""
        if self._frame_repo is None:
            raise ValueError("search_frames requires a frame repository")
        query_vector = self.embed(query)
        results = self._frame_repo.search_frames(
            query_vector,
            similarity_threshold=threshold,
            match_count=limit,
        )
        logger.info("Frame search: query=%r, hits=%d", query[:60], len(results))
        return results

    def correct_frame(self, frame_id: str, description: str) -> Frame:
        """Replace a sealed frame's description and re-embed it."""
        if self._frame_repo is None:
            raise ValueError("correct_frame requires a frame repository")
        embedding = self.embed(description) if description.strip() else None
        frame = self._frame_repo.correct_frame(frame_id, description, embedding)
        logger.info("Frame %s corrected and re-embedded", frame_id)
        return frame
