"""Knowledge chunk store on PostgreSQL + pgvector."""
from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cmatch import models
from cmatch.domain import Chunk, RetrievedDocument
from cmatch.errors import UpstreamError

logger = logging.getLogger(__name__)


class PgVectorStore:
    """VectorStore over ``knowledge_documents`` using cosine distance."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def add_chunk(self, chunk: Chunk) -> None:
        try:
            async with self.session_factory() as session:
                session.add(
                    models.KnowledgeDocument(
                        chunk=chunk.text,
                        source=chunk.source_ref,
                        embedding=list(chunk.embedding),
                    )
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to store knowledge chunk from {chunk.source_ref}: {e}")
            raise UpstreamError(f"Failed to store knowledge chunk: {e}", stage="store") from e

    async def match_documents(
        self,
        query_embedding: Sequence[float],
        match_threshold: float,
        match_count: int,
    ) -> list[RetrievedDocument]:
        """Nearest chunks with similarity >= match_threshold, best first.

        similarity = 1 - cosine distance (pgvector ``<=>``).
        """
        distance = models.KnowledgeDocument.embedding.cosine_distance(list(query_embedding))
        stmt = (
            select(
                models.KnowledgeDocument.id,
                models.KnowledgeDocument.chunk,
                (1 - distance).label("similarity"),
            )
            .where(distance <= 1 - match_threshold)
            .order_by(distance)
            .limit(match_count)
        )
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Vector search failed: {e}")
            raise UpstreamError(f"Vector search failed: {e}", stage="retrieve") from e

        return [RetrievedDocument(id=row.id, content=row.chunk, similarity=float(row.similarity)) for row in rows]
