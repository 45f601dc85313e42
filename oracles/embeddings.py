"""Embedding service for multilingual (ja/en) text embeddings.

Wraps sentence-transformers with batching, retries, and a dimension check so
that ingestion and query vectors always share the configured dimension.
"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Iterable

import numpy as np
from sentence_transformers import SentenceTransformer
from tenacity import retry, stop_after_attempt, wait_exponential

from cmatch.config import settings
from cmatch.errors import UpstreamError

logger = logging.getLogger(__name__)


class EmbeddingError(UpstreamError):
    """Raised when embedding computation fails."""

    def __init__(self, message: str) -> None:
        super().__init__(message, stage="embed")


@lru_cache(maxsize=4)
def _load_model(model_name: str, device: str) -> SentenceTransformer:
    """Load and cache the sentence transformer model.

    Raises:
        EmbeddingError: If model loading fails
    """
    try:
        logger.info(f"Loading embedding model: {model_name} on device: {device}")
        model = SentenceTransformer(model_name, device=device)
        logger.info(f"Model loaded successfully. Embedding dim: {model.get_sentence_embedding_dimension()}")
        return model
    except Exception as e:
        logger.error(f"Failed to load embedding model: {e}")
        raise EmbeddingError(f"Model loading failed: {e}") from e


class SentenceTransformerEmbedder:
    """Embedding oracle backed by a local sentence-transformers model."""

    def __init__(
        self,
        *,
        model_name: str | None = None,
        dim: int | None = None,
        device: str | None = None,
        batch_size: int | None = None,
        normalize: bool | None = None,
    ) -> None:
        self.model_name = model_name or settings.embeddings.model_name
        self._dim = dim or settings.embeddings.dim
        self.device = device or settings.embeddings.device
        self.batch_size = batch_size or settings.embeddings.batch_size
        self.normalize = settings.embeddings.normalize_embeddings if normalize is None else normalize

    @property
    def dimension(self) -> int:
        return self._dim

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _encode(self, model: SentenceTransformer, text_list: list[str]) -> np.ndarray:
        """Encode with retries. Validation and dimension checks stay outside."""
        return model.encode(
            text_list,
            batch_size=self.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.normalize,
        )

    def embed_texts(self, texts: list[str] | Iterable[str]) -> list[list[float]]:
        """Compute embeddings for a batch of texts.

        Raises:
            EmbeddingError: If an item is blank, encoding fails, or the model
                yields the wrong dimension
        """
        text_list = list(texts)
        if not text_list:
            return []
        if not all(isinstance(t, str) and t.strip() for t in text_list):
            raise EmbeddingError("All items in texts must be non-empty strings")

        model = _load_model(self.model_name, self.device)
        try:
            vectors = self._encode(model, text_list)
        except Exception as e:
            logger.error(f"Embedding computation failed: {e}")
            raise EmbeddingError(f"Failed to compute embeddings: {e}") from e

        vectors = np.atleast_2d(np.asarray(vectors, dtype=np.float32))
        if vectors.shape[1] != self._dim:
            raise EmbeddingError(
                f"Embedding dimension mismatch: model returned {vectors.shape[1]}, expected {self._dim}"
            )

        logger.debug(f"Encoded {len(text_list)} texts")
        return vectors.tolist()

    async def embed(self, text: str) -> list[float]:
        """Embed a single text without blocking the event loop."""
        vectors = await asyncio.to_thread(self.embed_texts, [text])
        return vectors[0]
