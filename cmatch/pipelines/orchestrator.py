"""Matching orchestrator: filter → extract → persist → match → aggregate.

Every run, successful or failed past validation, writes exactly one
execution-log entry.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from cmatch.config import settings
from cmatch.domain import ChallengeRecord, ExecutionLogEntry
from cmatch.errors import DuplicateRecordError, PersistenceWarning, UpstreamError, ValidationError
from cmatch.interfaces import CatalogStore
from cmatch.pipelines.conversation_filter import FilterOptions, filter_conversation
from cmatch.pipelines.execution_log import ExecutionLogger
from cmatch.pipelines.extraction import ChallengeExtractor
from cmatch.pipelines.strategies import MatchingMethod, MatchingStrategy, MatchOutcome

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class StepRecord:
    """Outcome of one pipeline stage."""
    step: str
    status: StepStatus
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "status": self.status.value, "detail": self.detail}


class PipelineFailure(UpstreamError):
    """A fatal stage failure; carries the steps recorded so far."""

    def __init__(self, message: str, steps: list[StepRecord], *, stage: str | None = None) -> None:
        super().__init__(message, stage=stage)
        self.steps = steps


@dataclass
class PipelineRequest:
    """Input of one orchestrated run."""
    company_name: str
    conversation_data: str
    source_url: str
    matching_method: MatchingMethod | str | None = None
    persist: bool = True
    filter_options: FilterOptions | None = None

    def to_payload(self) -> dict[str, Any]:
        method = self.matching_method.value if isinstance(self.matching_method, MatchingMethod) else self.matching_method
        payload: dict[str, Any] = {
            "companyName": self.company_name,
            "sourceUrl": self.source_url,
            "conversationLength": len(self.conversation_data or ""),
            "matchingMethod": method,
            "persist": self.persist,
        }
        if self.filter_options is not None:
            payload["filterOptions"] = asdict(self.filter_options)
        return payload


@dataclass
class PipelineResult:
    """Aggregated result of a successful run."""
    record: ChallengeRecord
    outcome: MatchOutcome
    method: MatchingMethod
    steps: list[StepRecord]

    @property
    def processed_count(self) -> int:
        return len(self.record.extracted_challenges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "extractedChallenges": self.record.extracted_challenges,
            "challengeAnalysis": self.record.analysis_payload(),
            "matches": [m.to_dict() for m in self.outcome.matches],
            "totalMatches": self.outcome.total_matches,
            "dataSource": self.outcome.data_source,
            "steps": [s.to_dict() for s in self.steps],
            "processedCount": self.processed_count,
            "challengeId": self.record.id,
            "suggestions": self.outcome.suggestions,
            "matchingMethod": self.method.value,
        }


class MatchingOrchestrator:
    """Runs the challenge → match pipeline with one strategy per request."""

    def __init__(
        self,
        extractor: ChallengeExtractor,
        strategies: dict[MatchingMethod, MatchingStrategy],
        catalog_store: CatalogStore,
        execution_logger: ExecutionLogger,
        *,
        default_method: MatchingMethod | str | None = None,
        extraction_timeout: float | None = None,
        exclude_speakers: list[str] | None = None,
    ) -> None:
        self.extractor = extractor
        self.strategies = strategies
        self.catalog_store = catalog_store
        self.execution_logger = execution_logger
        self.default_method = MatchingMethod(default_method or settings.matching.default_method)
        self.extraction_timeout = extraction_timeout or settings.llm.extraction_timeout_seconds
        self.exclude_speakers = (
            list(settings.matching.exclude_speakers) if exclude_speakers is None else exclude_speakers
        )

    def _resolve_method(self, request: PipelineRequest) -> MatchingMethod:
        """Validate required fields and pick the strategy. No side effects."""
        missing = [
            name
            for name, value in (
                ("companyName", request.company_name),
                ("conversationData", request.conversation_data),
                ("sourceUrl", request.source_url),
            )
            if not value or not str(value).strip()
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        try:
            method = MatchingMethod(request.matching_method) if request.matching_method else self.default_method
        except ValueError as e:
            raise ValidationError(f"Unknown matching method: {request.matching_method}") from e
        if method not in self.strategies:
            raise ValidationError(f"Matching method not available: {method.value}")
        return method

    def _filter(self, request: PipelineRequest, steps: list[StepRecord]) -> str:
        options = request.filter_options or FilterOptions()
        if not options.exclude_speakers and self.exclude_speakers:
            options = FilterOptions(
                exclude_speakers=list(self.exclude_speakers),
                include_speakers=options.include_speakers,
                exclude_keywords=options.exclude_keywords,
            )
        if not options.active:
            return request.conversation_data

        result = filter_conversation(request.conversation_data, options)
        if not result.filtered_data.strip():
            raise ValidationError("Conversation is empty after speaker filtering")

        steps.append(
            StepRecord(
                "filter",
                StepStatus.SUCCESS,
                {
                    "originalSpeakers": result.original_speakers,
                    "includedSpeakers": result.included_speakers,
                    "excludedSpeakers": result.excluded_speakers,
                    "includedLines": result.included_lines,
                    "excludedLines": result.excluded_lines,
                },
            )
        )
        logger.info(f"Filtered conversation: kept {result.included_lines}, dropped {result.excluded_lines} lines")
        return result.filtered_data

    async def _extract(self, request: PipelineRequest, conversation: str) -> ChallengeRecord:
        try:
            record = await asyncio.wait_for(
                self.extractor.extract(request.company_name, conversation, request.source_url),
                timeout=self.extraction_timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                f"Challenge extraction timed out after {self.extraction_timeout:.0f}s",
                stage="extract",
            ) from e
        record.conversation_data = request.conversation_data
        return record

    async def _persist(self, record: ChallengeRecord) -> StepRecord:
        """Store the challenge and company profile; failures become warnings."""
        detail: dict[str, Any] = {}
        warnings: list[PersistenceWarning] = []

        try:
            record.id = await self.catalog_store.save_challenge(record)
            detail["challengeId"] = record.id
        except Exception as e:
            warnings.append(PersistenceWarning(f"Failed to save challenge: {e}"))

        analysis = record.structured
        if analysis is not None and analysis.company_info is not None:
            try:
                detail["profileId"] = await self.catalog_store.save_company_profile(
                    analysis.company_info,
                    source_url=record.source_url,
                    challenges=[asdict(c) for c in analysis.challenges],
                )
            except DuplicateRecordError:
                logger.info(f"Company profile for {record.company_name} already exists; keeping existing data")
                detail["duplicate"] = True
            except Exception as e:
                warnings.append(PersistenceWarning(f"Failed to save company profile: {e}"))

        if warnings:
            for w in warnings:
                logger.warning(str(w))
            detail["warnings"] = [str(w) for w in warnings]
            return StepRecord("persist", StepStatus.ERROR, detail)
        return StepRecord("persist", StepStatus.SUCCESS, detail)

    async def run(self, request: PipelineRequest) -> PipelineResult:
        """Run the whole pipeline for one request.

        Raises:
            ValidationError: On missing fields or an unknown method (nothing is logged)
            PipelineFailure: If extraction or matching fails fatally
        """
        method = self._resolve_method(request)
        strategy = self.strategies[method]
        steps: list[StepRecord] = []
        stage = "filter"

        logger.info(f"Processing {request.company_name} with {method.value}")
        conversation = self._filter(request, steps)

        try:
            stage = "extract"
            record = await self._extract(request, conversation)
            steps.append(
                StepRecord(
                    "extract",
                    StepStatus.SUCCESS,
                    {
                        "challenges": len(record.extracted_challenges),
                        "degraded": record.degraded,
                        "totalChunks": record.structured.total_chunks if record.structured else 1,
                    },
                )
            )

            if strategy.persists_challenge and request.persist:
                stage = "persist"
                steps.append(await self._persist(record))

            stage = "match"
            outcome = await strategy.match(record, persist=request.persist)
            steps.append(
                StepRecord(
                    "match",
                    StepStatus.SUCCESS,
                    {"method": method.value, "totalMatches": outcome.total_matches, "warnings": outcome.warnings},
                )
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            if isinstance(e, UpstreamError):
                logger.error(f"Pipeline failed at {stage} for {request.company_name}: {message}")
            else:
                logger.exception(f"Unexpected error at {stage} for {request.company_name}: {message}")
            steps.append(StepRecord(stage, StepStatus.ERROR, {"error": message}))
            await self.execution_logger.record(
                ExecutionLogEntry(
                    request_payload=request.to_payload(),
                    result={"steps": [s.to_dict() for s in steps]},
                    error=message,
                )
            )
            raise PipelineFailure(message, steps, stage=stage) from e

        result = PipelineResult(record=record, outcome=outcome, method=method, steps=steps)
        steps.append(
            StepRecord(
                "aggregate",
                StepStatus.SUCCESS,
                {"processedCount": result.processed_count, "totalMatches": outcome.total_matches},
            )
        )
        await self.execution_logger.record(
            ExecutionLogEntry(
                request_payload=request.to_payload(),
                query=outcome.query,
                retrieved_documents=[d.to_dict() for d in outcome.retrieved_documents],
                prompt=outcome.prompt,
                result=result.to_dict(),
            )
        )
        logger.info(
            f"Processed {request.company_name}: {result.processed_count} challenges, "
            f"{outcome.total_matches} matches"
        )
        return result
