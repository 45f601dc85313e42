"""Narrow contracts for the oracles and stores the pipelines depend on.

Components receive implementations at construction time; tests pass fakes.
"""
from __future__ import annotations

from typing import Protocol, Sequence

from .domain import (
    CandidateKind,
    CandidateRecord,
    ChallengeRecord,
    Chunk,
    CompanyInfo,
    ExecutionLogEntry,
    MatchResult,
    RetrievedDocument,
)


class Embedder(Protocol):
    """Text → fixed-dimension vector oracle."""

    @property
    def dimension(self) -> int: ...

    async def embed(self, text: str) -> list[float]: ...


class TextGenerator(Protocol):
    """Prompt in, text out."""

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = True,
        temperature: float | None = None,
    ) -> str: ...


class VectorStore(Protocol):
    """Persistence for embedded chunks with similarity search."""

    async def add_chunk(self, chunk: Chunk) -> None: ...

    async def match_documents(
        self,
        query_embedding: Sequence[float],
        match_threshold: float,
        match_count: int,
    ) -> list[RetrievedDocument]: ...


class CatalogStore(Protocol):
    """Structured catalog with conjunctive filtering plus the pipeline's own records."""

    async def filter_records(
        self,
        *,
        business_tag: str | None = None,
        department: str | None = None,
        size_band: str | None = None,
        symptoms: Sequence[str] = (),
        kind: CandidateKind | None = None,
        limit: int = 100,
    ) -> list[CandidateRecord]: ...

    async def list_records(
        self,
        *,
        kind: CandidateKind | None = None,
        limit: int = 200,
    ) -> list[CandidateRecord]: ...

    async def save_challenge(self, record: ChallengeRecord) -> int: ...

    async def save_company_profile(self, info: CompanyInfo, *, source_url: str, challenges: list[dict]) -> int: ...

    async def save_match(self, match: MatchResult) -> MatchResult: ...


class ExecutionLogStore(Protocol):
    """Append-only execution log."""

    async def append(self, entry: ExecutionLogEntry) -> None: ...

    async def recent(self, limit: int) -> list[ExecutionLogEntry]: ...
