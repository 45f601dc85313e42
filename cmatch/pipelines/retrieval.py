"""Vector retrieval: embed a query and fetch nearest chunks above a threshold."""
from __future__ import annotations

import logging

from cmatch.config import settings
from cmatch.domain import RetrievedDocument
from cmatch.errors import UpstreamError, ValidationError
from cmatch.interfaces import Embedder, VectorStore

logger = logging.getLogger(__name__)


class VectorRetriever:
    """Retrieval half of the retrieval-augmented generation step."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        *,
        threshold: float | None = None,
        top_k: int | None = None,
    ) -> None:
        self.embedder = embedder
        self.vector_store = vector_store
        self.threshold = settings.retrieval.match_threshold if threshold is None else threshold
        self.top_k = top_k or settings.retrieval.match_count

    async def retrieve(
        self,
        query: str,
        threshold: float | None = None,
        top_k: int | None = None,
    ) -> list[RetrievedDocument]:
        """Retrieve chunks similar to ``query``.

        Returns:
            Documents with similarity >= threshold, sorted by similarity DESC.
            Empty when nothing clears the threshold.

        Raises:
            ValidationError: On an empty query or out-of-range parameters
            UpstreamError: If the embedder or the store fails
        """
        if not query or not query.strip():
            raise ValidationError("query is required")

        threshold = self.threshold if threshold is None else threshold
        top_k = self.top_k if top_k is None else top_k
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("threshold must be within [0, 1]")
        if top_k < 1:
            raise ValidationError("top_k must be >= 1")

        query_embedding = await self.embedder.embed(query)
        if len(query_embedding) != self.embedder.dimension:
            raise UpstreamError(
                f"query embedding has dimension {len(query_embedding)}, expected {self.embedder.dimension}",
                stage="embed",
            )

        hits = await self.vector_store.match_documents(query_embedding, threshold, top_k)

        # The store contract already filters and orders; enforce it regardless.
        ranked = sorted(
            (h for h in hits if h.similarity >= threshold),
            key=lambda h: h.similarity,
            reverse=True,
        )[:top_k]

        logger.info(f"Retrieved {len(ranked)} documents (threshold={threshold}, top_k={top_k})")
        return ranked
