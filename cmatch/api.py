"""FastAPI app: knowledge ingestion, catalog search, challenge processing and logs.

All JSON bodies use camelCase keys; errors come back as ``{"error": ...}``.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import settings
from .container import ServiceContainer, get_container
from .errors import UpstreamError, ValidationError
from .logging_config import setup_logging
from .pipelines.conversation_filter import FilterOptions
from .pipelines.ingest import ingest_text
from .pipelines.orchestrator import PipelineFailure, PipelineRequest
from .pipelines.search import SearchFilters, search_catalog

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    steps: list[dict] | None = None


class IngestRequest(CamelModel):
    text: str | None = None
    source: str | None = None


class IngestResponse(CamelModel):
    success: bool
    message: str


class SearchRequest(CamelModel):
    """Structured catalog search request."""
    business_tag: str | None = None
    department: str | None = None
    size_band: str | None = None
    symptoms: str | list[str] | None = None
    kind: str | None = None
    limit: int | None = Field(default=None, ge=1, le=settings.search.max_limit)


class CandidateDTO(CamelModel):
    id: int | str
    kind: str
    name: str
    business_tag: str | None = None
    department: str | None = None
    size_band: str | None = None
    industry: str | None = None
    region: str | None = None
    prefecture: str | None = None
    employee_count: int | None = None
    description: str = ""
    strengths: str = ""
    challenge_name: str = ""
    symptom: str = ""
    recommended_play: str = ""
    primary_kpi: str = ""
    tags: list[str] = Field(default_factory=list)


class SearchResponse(CamelModel):
    success: bool
    data: list[CandidateDTO]
    statistics: dict[str, Any]
    search_criteria: dict[str, Any]


class ProcessRequest(CamelModel):
    """Challenge processing request; required fields are checked by the orchestrator."""
    company_name: str | None = None
    conversation_data: str | None = None
    source_url: str | None = None
    matching_method: str | None = None
    persist: bool = True
    exclude_speakers: list[str] | None = None
    include_speakers: list[str] | None = None
    exclude_keywords: list[str] | None = None

    def to_pipeline_request(self) -> PipelineRequest:
        filter_options = None
        if self.exclude_speakers or self.include_speakers or self.exclude_keywords:
            filter_options = FilterOptions(
                exclude_speakers=self.exclude_speakers or [],
                include_speakers=self.include_speakers or [],
                exclude_keywords=self.exclude_keywords or [],
            )
        return PipelineRequest(
            company_name=self.company_name or "",
            conversation_data=self.conversation_data or "",
            source_url=self.source_url or "",
            matching_method=self.matching_method,
            persist=self.persist,
            filter_options=filter_options,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    setup_logging()
    logger.info("Application starting up")

    yield

    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Challenge extraction and company matching with RAG and structured search",
    lifespan=lifespan,
)


# CORS middleware
from fastapi.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],  # Frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str, steps: list[dict] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, steps=steps).model_dump(exclude_none=True),
    )


# Exception handlers
@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    """Handle missing or malformed input."""
    logger.warning(f"Validation error: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request, exc: RequestValidationError):
    """Handle request bodies that fail schema validation."""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    logger.warning(f"Request validation error: {errors}")
    return _error(status.HTTP_400_BAD_REQUEST, message)


@app.exception_handler(PipelineFailure)
async def pipeline_failure_handler(request, exc: PipelineFailure):
    """Handle fatal pipeline failures, returning the steps run so far."""
    logger.error(f"Pipeline failure at {exc.stage}: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), [s.to_dict() for s in exc.steps])


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request, exc: UpstreamError):
    """Handle oracle and store failures."""
    logger.error(f"Upstream error ({exc.stage}): {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "ingest": "/ingest",
            "search": "/search",
            "process": "/process",
            "logs": "/logs",
            "docs": "/docs",
        },
    }


@app.post("/ingest", response_model=IngestResponse)
async def ingest(
    body: IngestRequest,
    container: ServiceContainer = Depends(get_container),
) -> IngestResponse:
    """Split, embed and store a knowledge document."""
    report = await ingest_text(
        body.text or "",
        body.source or "",
        embedder=container.embedder,
        vector_store=container.vector_store,
    )
    return IngestResponse(success=True, message=report.message)


@app.post("/search", response_model=SearchResponse)
async def search(
    body: SearchRequest,
    container: ServiceContainer = Depends(get_container),
) -> SearchResponse:
    """Conjunctive structured search over the candidate catalog."""
    filters = SearchFilters.from_raw(
        business_tag=body.business_tag,
        department=body.department,
        size_band=body.size_band,
        symptoms=body.symptoms,
        kind=body.kind,
    )
    result = await search_catalog(container.catalog_store, filters, body.limit)
    return SearchResponse(
        success=True,
        data=[CandidateDTO.model_validate(r.to_dict()) for r in result.data],
        statistics=result.statistics.to_dict(),
        search_criteria={**filters.to_dict(), "limit": result.limit},
    )


@app.post("/process")
async def process(
    body: ProcessRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Extract challenges from a conversation and match them with one strategy.

    Raises:
        ValidationError: Missing fields or unknown matching method (400)
        PipelineFailure: Extraction or matching failed (500, with steps)
    """
    result = await container.orchestrator.run(body.to_pipeline_request())
    return result.to_dict()


@app.get("/logs")
async def logs(
    limit: int = Query(default=settings.execution_log.recent_limit, ge=1, le=1000),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Most recent execution log entries, newest first."""
    entries = await container.execution_logger.recent(limit)
    return {"logs": [e.to_dict() for e in entries]}
