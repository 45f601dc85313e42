"""Knowledge ingestion: split text into overlapping chunks, embed, store.

Reusable from both the HTTP ingest endpoint and batch scripts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cmatch.config import settings
from cmatch.domain import Chunk
from cmatch.errors import UpstreamError, ValidationError
from cmatch.interfaces import Embedder, VectorStore

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    """Result of ingesting one document."""
    source: str
    chunks_ingested: int
    chunks_total: int

    @property
    def message(self) -> str:
        return f"Ingested {self.chunks_ingested} chunks from {self.source}"


class IngestionError(UpstreamError):
    """Raised when embedding or storing a chunk fails mid-ingestion."""

    def __init__(self, message: str, *, chunks_ingested: int, chunks_total: int) -> None:
        super().__init__(message, stage="ingest")
        self.chunks_ingested = chunks_ingested
        self.chunks_total = chunks_total


def split_text(text: str, chunk_size: int, chunk_overlap: int) -> list[str]:
    """Split text into fixed-size character windows with overlap.

    Consecutive chunks share exactly ``chunk_overlap`` characters, so
    ``chunks[0] + "".join(c[chunk_overlap:] for c in chunks[1:]) == text``.

    Raises:
        ValidationError: If the size/overlap combination cannot terminate
    """
    if chunk_size <= 0:
        raise ValidationError("chunk_size must be positive")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValidationError("chunk_overlap must be >= 0 and smaller than chunk_size")
    if not text:
        return []

    step = chunk_size - chunk_overlap
    chunks: list[str] = []
    start = 0
    while True:
        end = start + chunk_size
        chunks.append(text[start:end])
        if end >= len(text):
            break
        start += step
    return chunks


async def ingest_text(
    text: str,
    source: str,
    *,
    embedder: Embedder,
    vector_store: VectorStore,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> IngestionReport:
    """Chunk, embed and persist a document.

    Args:
        text: Raw document text
        source: Reference recorded with every chunk
        embedder: Embedding oracle
        vector_store: Destination store
        chunk_size: Window size (default from config)
        chunk_overlap: Window overlap (default from config)

    Returns:
        IngestionReport with the number of chunks written

    Raises:
        ValidationError: If text or source is empty
        IngestionError: If any chunk fails; reports how many were written
    """
    if not text or not text.strip() or not source or not source.strip():
        raise ValidationError("text and source are required")

    size = chunk_size or settings.chunking.size
    overlap = settings.chunking.overlap if chunk_overlap is None else chunk_overlap
    windows = split_text(text, size, overlap)
    # whitespace-only windows carry nothing retrievable
    chunks = [w for w in windows if w.strip()]
    total = len(chunks)
    if total < len(windows):
        logger.debug(f"Skipping {len(windows) - total} blank chunks from {source}")

    logger.info(f"Ingesting {total} chunks from {source} (size={size}, overlap={overlap})")

    ingested = 0
    for index, piece in enumerate(chunks):
        try:
            embedding = await embedder.embed(piece)
            if len(embedding) != embedder.dimension:
                raise UpstreamError(
                    f"embedding has dimension {len(embedding)}, expected {embedder.dimension}",
                    stage="embed",
                )
            await vector_store.add_chunk(Chunk(text=piece, embedding=list(embedding), source_ref=source))
        except Exception as e:
            logger.error(f"Ingestion of {source} stopped at chunk {index + 1}/{total}: {e}")
            raise IngestionError(
                f"Ingestion failed after {ingested} of {total} chunks: {e}",
                chunks_ingested=ingested,
                chunks_total=total,
            ) from e
        ingested += 1

    logger.info(f"Ingested {ingested} chunks from {source}")
    return IngestionReport(source=source, chunks_ingested=ingested, chunks_total=total)
