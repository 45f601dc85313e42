"""Matching strategies dispatched by the orchestrator's match stage.

Each strategy turns a ChallengeRecord into a MatchOutcome:

- external-generative: the generation oracle ranks a catalog snapshot
- catalog-internal-structured: structured search + deterministic rule scoring
- retrieval-augmented-generative: vector retrieval + narrative suggestions
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from cmatch.config import settings
from cmatch.domain import CandidateKind, CandidateRecord, ChallengeRecord, MatchResult, RetrievedDocument
from cmatch.errors import ParseError, UpstreamError
from cmatch.interfaces import CatalogStore, TextGenerator
from cmatch.pipelines.extraction import load_json_object
from cmatch.pipelines.normalization import normalize_keyword
from cmatch.pipelines.retrieval import VectorRetriever
from cmatch.pipelines.search import SearchFilters, search_catalog
from cmatch.rules import RuleEngine, ScoringContext
from cmatch.taxonomy import TaxonomyMatcher
from oracles import prompts

logger = logging.getLogger(__name__)

NO_KNOWLEDGE = "(no related knowledge found)"


class MatchingMethod(str, Enum):
    """Selectable matching strategies."""
    EXTERNAL_GENERATIVE = "external-generative"
    CATALOG_STRUCTURED = "catalog-internal-structured"
    RETRIEVAL_AUGMENTED = "retrieval-augmented-generative"


@dataclass
class MatchOutcome:
    """Uniform result of a match stage."""
    matches: list[MatchResult]
    total_matches: int
    data_source: str
    suggestions: list[dict[str, Any]] = field(default_factory=list)
    query: str | None = None
    retrieved_documents: list[RetrievedDocument] = field(default_factory=list)
    prompt: str | None = None
    warnings: list[str] = field(default_factory=list)


class MatchingStrategy(Protocol):
    method: MatchingMethod
    persists_challenge: bool

    async def match(self, record: ChallengeRecord, *, persist: bool = True) -> MatchOutcome: ...


def rank_matches(matches: list[MatchResult], top_n: int) -> list[MatchResult]:
    """Sort by score DESC (stable for ties) and cap at top_n."""
    return sorted(matches, key=lambda m: m.score, reverse=True)[:top_n]


def clamp_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return min(max(score, 0.0), 1.0)


def _challenge_lines(record: ChallengeRecord) -> str:
    return "\n".join(f"- {line}" for line in record.extracted_challenges)


class _RankedCandidate(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    company_id: str | None = None
    company_name: str = ""
    match_score: Any = 0.0
    match_reason: str = ""
    solution_details: str = ""
    advantages: list[str] = Field(default_factory=list)
    considerations: list[str] = Field(default_factory=list)

    @field_validator("advantages", "considerations", mode="before")
    @classmethod
    def coerce_list(cls, v):
        if v is None:
            return []
        return [v] if isinstance(v, str) else v


class _RankingPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    matches: list[_RankedCandidate] = Field(default_factory=list)


class _Suggestion(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    challenge: str = ""
    suggestion: str = ""
    reason: str = ""


class _SuggestionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    suggestions: list[_Suggestion] = Field(default_factory=list)


def parse_ranking(raw: str) -> list[_RankedCandidate]:
    """Parse the external ranking reply.

    Raises:
        ParseError: If the reply is not a ranking object
    """
    data = load_json_object(raw)
    try:
        return _RankingPayload.model_validate(data).matches
    except PydanticValidationError as e:
        raise ParseError(f"unexpected ranking shape: {e.error_count()} errors", raw_text=raw) from e


def parse_suggestions(raw: str) -> list[dict[str, Any]]:
    """Parse the RAG suggestion reply.

    Raises:
        ParseError: If the reply is not a suggestions object
    """
    data = load_json_object(raw)
    try:
        payload = _SuggestionPayload.model_validate(data)
    except PydanticValidationError as e:
        raise ParseError(f"unexpected suggestion shape: {e.error_count()} errors", raw_text=raw) from e
    return [s.model_dump() for s in payload.suggestions if s.suggestion or s.challenge]


class ExternalGenerativeStrategy:
    """Let the generation oracle rank a snapshot of solution providers."""

    method = MatchingMethod.EXTERNAL_GENERATIVE
    persists_challenge = True
    data_source = "catalog-snapshot"

    def __init__(
        self,
        generator: TextGenerator,
        catalog_store: CatalogStore,
        *,
        top_n: int | None = None,
        snapshot_limit: int | None = None,
    ) -> None:
        self.generator = generator
        self.catalog_store = catalog_store
        self.top_n = top_n or settings.matching.top_n
        self.snapshot_limit = snapshot_limit or settings.matching.catalog_snapshot_limit

    def _build_prompt(self, record: ChallengeRecord, candidates: list[CandidateRecord]) -> str:
        blocks = "\n".join(
            prompts.CANDIDATE_BLOCK.format(
                id=c.id,
                name=c.name,
                industry=c.industry or "",
                tags=", ".join(filter(None, [c.business_tag, *c.tags])),
                region=c.region or "",
                prefecture=c.prefecture or "",
                description=c.description,
            )
            for c in candidates
        )
        return prompts.EXTERNAL_MATCH_USER.format(
            company_name=record.company_name,
            challenges=_challenge_lines(record),
            analysis=json.dumps(record.analysis_payload(), ensure_ascii=False, indent=2),
            candidates=blocks,
        )

    async def _persist(self, matches: list[MatchResult]) -> tuple[list[MatchResult], list[str]]:
        results = await asyncio.gather(
            *(self.catalog_store.save_match(m) for m in matches),
            return_exceptions=True,
        )
        saved: list[MatchResult] = []
        warnings: list[str] = []
        for match, result in zip(matches, results):
            if isinstance(result, UpstreamError):
                logger.warning(f"Dropping match {match.candidate_name}: {result}")
                warnings.append(f"failed to save match {match.candidate_name}: {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                saved.append(result)
        return saved, warnings

    async def match(self, record: ChallengeRecord, *, persist: bool = True) -> MatchOutcome:
        """Rank catalog candidates for ``record``.

        Raises:
            UpstreamError: If the catalog or the generation oracle fails
        """
        snapshot = await self.catalog_store.list_records(
            kind=CandidateKind.SOLUTION_PROVIDER,
            limit=self.snapshot_limit,
        )
        own_name = normalize_keyword(record.company_name)
        candidates = [c for c in snapshot if normalize_keyword(c.name) != own_name]
        if not candidates:
            logger.warning("No solution providers in catalog; skipping external ranking")
            return MatchOutcome([], 0, self.data_source, warnings=["catalog snapshot is empty"])

        system = prompts.EXTERNAL_MATCH_SYSTEM.replace("{top_n}", str(self.top_n))
        user = self._build_prompt(record, candidates)
        logger.info(f"Ranking {len(candidates)} candidates for {record.company_name}")
        raw = await self.generator.generate(system, user, json_mode=True)

        try:
            ranked = parse_ranking(raw)
        except ParseError as e:
            logger.warning(f"Ranking reply could not be parsed: {e}")
            return MatchOutcome(
                [], 0, self.data_source,
                prompt=user,
                warnings=[f"ranking reply could not be parsed: {e}"],
            )

        by_id = {str(c.id): c for c in candidates}
        matches = []
        for item in ranked:
            known = by_id.get(item.company_id or "")
            name = item.company_name or (known.name if known else "")
            if not name:
                continue
            matches.append(
                MatchResult(
                    challenge_ref=record.id,
                    candidate_ref=known.id if known else item.company_id,
                    candidate_name=name,
                    score=clamp_score(item.match_score),
                    reason=item.match_reason,
                    details={
                        "solutionDetails": item.solution_details,
                        "advantages": item.advantages,
                        "considerations": item.considerations,
                    },
                )
            )
        matches = rank_matches(matches, self.top_n)

        warnings: list[str] = []
        if persist and matches:
            matches, warnings = await self._persist(matches)

        logger.info(f"External ranking produced {len(matches)} matches")
        return MatchOutcome(matches, len(matches), self.data_source, prompt=user, warnings=warnings)


class CatalogStructuredStrategy:
    """Structured catalog search scored by the deterministic rule engine."""

    method = MatchingMethod.CATALOG_STRUCTURED
    persists_challenge = True
    data_source = "catalog-search"

    def __init__(
        self,
        catalog_store: CatalogStore,
        *,
        taxonomy: TaxonomyMatcher | None = None,
        rule_engine: RuleEngine | None = None,
        top_n: int | None = None,
        search_limit: int | None = None,
    ) -> None:
        self.catalog_store = catalog_store
        self.taxonomy = taxonomy or TaxonomyMatcher()
        self.rule_engine = rule_engine or RuleEngine()
        self.top_n = top_n or settings.matching.top_n
        self.search_limit = search_limit or settings.matching.search_limit

    @staticmethod
    def _terms(record: ChallengeRecord) -> tuple[list[str], list[str]]:
        """(keywords, categories) taken from the structured analysis."""
        analysis = record.structured
        if analysis is None:
            return [], []
        keywords = analysis.keywords()
        if not keywords:
            keywords = [c.title for c in analysis.challenges if c.title]
        categories = list(dict.fromkeys(c.category for c in analysis.challenges if c.category))
        return keywords, categories

    async def match(self, record: ChallengeRecord, *, persist: bool = True) -> MatchOutcome:
        keywords, categories = self._terms(record)
        hints = self.taxonomy.department_hints(categories + keywords)
        departments = [h.department for h in hints]

        filters = SearchFilters.from_raw(
            department=departments[0] if departments else None,
            symptoms=keywords,
            kind=CandidateKind.SOLUTION_PROVIDER,
        )
        warnings: list[str] = []
        result = await search_catalog(self.catalog_store, filters, self.search_limit)
        if not result.data and filters.department:
            logger.info(f"No candidates for department {filters.department}; relaxing department hint")
            warnings.append(f"department hint {filters.department} relaxed")
            filters = SearchFilters.from_raw(symptoms=keywords, kind=CandidateKind.SOLUTION_PROVIDER)
            result = await search_catalog(self.catalog_store, filters, self.search_limit)

        context = ScoringContext(company_name=record.company_name, keywords=keywords, departments=departments)
        matches = []
        for candidate in result.data:
            scored = self.rule_engine.score(candidate, context)
            if scored is None:
                continue
            matches.append(
                MatchResult(
                    challenge_ref=record.id,
                    candidate_ref=candidate.id,
                    candidate_name=candidate.name,
                    score=scored.score,
                    reason="; ".join(scored.matched_reasons) or "Matched by structured search",
                    details={
                        "industry": candidate.industry,
                        "department": candidate.department,
                        "sizeBand": candidate.size_band,
                        "rulesVersion": settings.matching.rules_version,
                        "ruleTrace": [t.to_dict() for t in scored.traces],
                    },
                )
            )
        matches = rank_matches(matches, self.top_n)

        logger.info(f"Structured matching scored {len(result.data)} candidates, returning {len(matches)}")
        return MatchOutcome(
            matches,
            len(matches),
            self.data_source,
            query=json.dumps(filters.to_dict(), ensure_ascii=False),
            warnings=warnings,
        )


class RetrievalAugmentedStrategy:
    """Retrieve related knowledge and ask the oracle for improvement suggestions."""

    method = MatchingMethod.RETRIEVAL_AUGMENTED
    persists_challenge = False
    data_source = "knowledge-base"

    def __init__(self, retriever: VectorRetriever, generator: TextGenerator) -> None:
        self.retriever = retriever
        self.generator = generator

    async def match(self, record: ChallengeRecord, *, persist: bool = True) -> MatchOutcome:
        query = "\n".join([record.company_name, *record.extracted_challenges])
        documents = await self.retriever.retrieve(query)
        knowledge = "\n---\n".join(d.content for d in documents) or NO_KNOWLEDGE

        user = prompts.RAG_SUGGESTION_USER.format(
            company_name=record.company_name,
            challenges=_challenge_lines(record),
            knowledge=knowledge,
        )
        raw = await self.generator.generate(prompts.RAG_SUGGESTION_SYSTEM, user, json_mode=True)

        warnings: list[str] = []
        try:
            suggestions = parse_suggestions(raw)
        except ParseError as e:
            logger.warning(f"Suggestion reply could not be parsed: {e}")
            suggestions = [{"challenge": "", "suggestion": raw.strip(), "reason": ""}]
            warnings.append(f"suggestion reply could not be parsed: {e}")

        logger.info(f"RAG produced {len(suggestions)} suggestions from {len(documents)} documents")
        return MatchOutcome(
            matches=[],
            total_matches=0,
            data_source=self.data_source,
            suggestions=suggestions,
            query=query,
            retrieved_documents=documents,
            prompt=user,
            warnings=warnings,
        )
