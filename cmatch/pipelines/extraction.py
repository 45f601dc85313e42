"""Challenge extraction: conversation → company profile + structured challenges.

The oracle's reply is parsed exactly once into ``AnalysisOk`` or
``AnalysisDegraded``; downstream code only branches on that tag.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from cmatch.config import settings
from cmatch.domain import (
    AnalysisDegraded,
    AnalysisOk,
    Challenge,
    ChallengeRecord,
    CompanyInfo,
    ParsedAnalysis,
    StructuredAnalysis,
)
from cmatch.errors import ParseError
from cmatch.interfaces import TextGenerator
from cmatch.pipelines.normalization import normalize_conversation
from oracles import prompts

logger = logging.getLogger(__name__)

NO_CHALLENGES_FALLBACK = "No challenges could be extracted from the conversation."

_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)
_BREAK_CHARS = ("\n", "。", "！", "？", ". ", "! ", "? ")


def _as_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return value


class _ChallengePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    category: str = ""
    title: str = ""
    description: str = ""
    urgency: str = ""
    keywords: list[str] = Field(default_factory=list)

    @field_validator("keywords", mode="before")
    @classmethod
    def coerce_keywords(cls, v):
        return _as_list(v)


class _CompanyInfoPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    company_name: str = ""
    industry: str = ""
    business_description: str = ""
    strengths: list[dict[str, Any]] = Field(default_factory=list)
    business_tags: list[str] = Field(default_factory=list)
    original_tags: list[str] = Field(default_factory=list)
    region: str = ""
    prefecture: str = ""

    @field_validator("strengths", mode="before")
    @classmethod
    def coerce_strengths(cls, v):
        return [{"title": s} if isinstance(s, str) else s for s in _as_list(v)]

    @field_validator("business_tags", "original_tags", mode="before")
    @classmethod
    def coerce_tags(cls, v):
        return _as_list(v)


class _ExtractionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    company_info: _CompanyInfoPayload | None = None
    challenges: list[_ChallengePayload] = Field(default_factory=list)
    summary: str = ""

    @model_validator(mode="before")
    @classmethod
    def unwrap_nested_challenges(cls, data):
        # Accept {"challenges": {"challenges": [...], "summary": "..."}} as well
        if isinstance(data, dict) and isinstance(data.get("challenges"), dict):
            nested = data["challenges"]
            data = {
                **data,
                "challenges": nested.get("challenges") or [],
                "summary": data.get("summary") or nested.get("summary") or "",
            }
        return data


def strip_code_fences(raw: str) -> str:
    return _FENCE.sub("", raw.strip())


def load_json_object(raw: str) -> dict[str, Any]:
    """Decode an oracle reply that must be a JSON object.

    Raises:
        ParseError: If the reply is not a JSON object
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}", raw_text=raw) from e
    if not isinstance(data, dict):
        raise ParseError("expected a JSON object", raw_text=raw)
    return data


def _to_analysis(payload: _ExtractionPayload, company_name: str) -> StructuredAnalysis:
    challenges = [
        Challenge(
            category=c.category.strip(),
            title=c.title.strip(),
            description=c.description.strip(),
            urgency=c.urgency.strip(),
            keywords=[k.strip() for k in c.keywords if k and k.strip()],
        )
        for c in payload.challenges
        if c.title.strip() or c.description.strip()
    ]
    company_info = None
    if payload.company_info is not None:
        info = payload.company_info
        company_info = CompanyInfo(
            company_name=info.company_name.strip() or company_name,
            industry=info.industry,
            business_description=info.business_description,
            strengths=info.strengths,
            business_tags=info.business_tags,
            original_tags=info.original_tags,
            region=info.region,
            prefecture=info.prefecture,
        )
    return StructuredAnalysis(
        challenges=challenges,
        summary=payload.summary.strip(),
        company_info=company_info,
    )


def parse_extraction(raw: str, company_name: str) -> ParsedAnalysis:
    """Parse boundary for extraction replies; never raises on bad content."""
    try:
        data = load_json_object(raw)
        try:
            payload = _ExtractionPayload.model_validate(data)
        except PydanticValidationError as e:
            raise ParseError(f"unexpected extraction shape: {e.error_count()} errors", raw_text=raw) from e
    except ParseError as e:
        logger.warning(f"Extraction reply for {company_name} could not be parsed: {e}")
        return AnalysisDegraded(raw_text=raw.strip(), reason=str(e))
    return AnalysisOk(_to_analysis(payload, company_name))


def split_conversation(text: str, max_chars: int) -> list[str]:
    """Split long text near sentence or line boundaries into pieces <= max_chars."""
    if len(text) <= max_chars:
        return [text]

    pieces: list[str] = []
    start = 0
    while start < len(text):
        end = start + max_chars
        if end < len(text):
            window = text[start:end]
            cuts = [window.rfind(ch) + len(ch) for ch in _BREAK_CHARS if ch in window]
            # Hard cut when no boundary exists in the window
            if cuts:
                end = start + max(cuts)
        pieces.append(text[start:end])
        start = end
    return pieces


def merge_analyses(analyses: list[StructuredAnalysis]) -> StructuredAnalysis:
    """Merge per-piece analyses, de-duplicating challenges on (category, title)."""
    merged: dict[tuple[str, str], Challenge] = {}
    summaries: list[str] = []
    company_info: CompanyInfo | None = None

    for analysis in analyses:
        for challenge in analysis.challenges:
            key = (challenge.category, challenge.title)
            existing = merged.get(key)
            if existing is None:
                merged[key] = Challenge(
                    category=challenge.category,
                    title=challenge.title,
                    description=challenge.description,
                    urgency=challenge.urgency,
                    keywords=list(challenge.keywords),
                )
            else:
                existing.keywords.extend(k for k in challenge.keywords if k not in existing.keywords)
        if analysis.summary:
            summaries.append(analysis.summary)
        if company_info is None:
            company_info = analysis.company_info

    return StructuredAnalysis(
        challenges=list(merged.values()),
        summary=" ".join(summaries),
        company_info=company_info,
        total_chunks=len(analyses),
    )


def render_challenges(analysis: ParsedAnalysis) -> list[str]:
    """Human-readable challenge lines; always at least one non-empty entry."""
    if isinstance(analysis, AnalysisDegraded):
        return [analysis.raw_text or NO_CHALLENGES_FALLBACK]
    lines = [c.render() for c in analysis.analysis.challenges]
    if lines:
        return lines
    return [analysis.analysis.summary or NO_CHALLENGES_FALLBACK]


class ChallengeExtractor:
    """Runs the extraction oracle over a (possibly split) conversation."""

    def __init__(
        self,
        generator: TextGenerator,
        *,
        max_chars: int | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self.generator = generator
        self.max_chars = max_chars or settings.llm.max_extraction_chars
        self.max_concurrency = max_concurrency or settings.llm.max_concurrent_chunks

    async def _extract_piece(
        self,
        semaphore: asyncio.Semaphore,
        company_name: str,
        piece: str,
        index: int,
        total: int,
    ) -> ParsedAnalysis:
        system = prompts.EXTRACTION_SYSTEM
        label = "Conversation data"
        if total > 1:
            system = f"{system}\n\n{prompts.EXTRACTION_PARTIAL_NOTE}"
            label = f"Conversation data (part {index + 1} of {total})"
        user = prompts.EXTRACTION_USER.format(company_name=company_name, label=label, conversation=piece)

        async with semaphore:
            logger.info(f"Extracting challenges for {company_name}: part {index + 1}/{total} ({len(piece)} chars)")
            raw = await self.generator.generate(system, user, json_mode=True)
        return parse_extraction(raw, company_name)

    async def extract(
        self,
        company_name: str,
        conversation_data: str,
        source_url: str,
    ) -> ChallengeRecord:
        """Extract a ChallengeRecord.

        Raises:
            UpstreamError: If the generation oracle is unavailable
        """
        conversation = normalize_conversation(conversation_data) or conversation_data
        pieces = split_conversation(conversation, self.max_chars)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        tasks = [
            asyncio.ensure_future(self._extract_piece(semaphore, company_name, piece, i, len(pieces)))
            for i, piece in enumerate(pieces)
        ]
        try:
            parsed = await asyncio.gather(*tasks)
        except BaseException:
            # one failed piece fails the run; stop the rest
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        ok = [p.analysis for p in parsed if isinstance(p, AnalysisOk)]
        analysis: ParsedAnalysis
        if ok:
            merged = merge_analyses(ok)
            merged.total_chunks = len(pieces)
            analysis = AnalysisOk(merged)
        else:
            degraded = [p for p in parsed if isinstance(p, AnalysisDegraded)]
            analysis = AnalysisDegraded(
                raw_text="\n\n".join(d.raw_text for d in degraded if d.raw_text),
                reason=degraded[0].reason,
            )

        extracted = render_challenges(analysis)
        logger.info(
            f"Extracted {len(extracted)} challenge lines for {company_name} "
            f"({'degraded' if isinstance(analysis, AnalysisDegraded) else 'structured'})"
        )
        return ChallengeRecord(
            company_name=company_name,
            source_url=source_url,
            extracted_challenges=extracted,
            analysis=analysis,
            conversation_data=conversation_data,
        )
