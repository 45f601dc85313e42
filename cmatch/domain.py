"""Domain records passed between pipeline stages.

These are plain dataclasses; ORM rows live in :mod:`cmatch.models` and are
converted at the store boundary.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CandidateKind(str, Enum):
    """Kind of catalog entry."""
    SOLUTION_PROVIDER = "solution_provider"
    PERSONA_PATTERN = "persona_pattern"


@dataclass(frozen=True)
class Chunk:
    """Embedded knowledge chunk written to the vector store."""
    text: str
    embedding: list[float]
    source_ref: str


@dataclass(frozen=True)
class RetrievedDocument:
    """Single nearest-neighbour hit."""
    id: int | str
    content: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "content": self.content, "similarity": self.similarity}


@dataclass
class CandidateRecord:
    """Solution provider or persona pattern from the catalog."""
    id: int | str
    kind: CandidateKind = CandidateKind.SOLUTION_PROVIDER
    name: str = ""
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
    tags: list[str] = field(default_factory=list)

    def free_text(self) -> str:
        """Concatenated free-text fields used for keyword matching."""
        parts = [self.symptom, self.challenge_name, self.description, self.strengths]
        return "\n".join(p for p in parts if p)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass
class Challenge:
    """One extracted business challenge."""
    category: str
    title: str
    description: str = ""
    urgency: str = ""
    keywords: list[str] = field(default_factory=list)

    def render(self) -> str:
        return f"{self.category}: {self.title} - {self.description}"


@dataclass
class CompanyInfo:
    """Company profile extracted alongside the challenges."""
    company_name: str
    industry: str = ""
    business_description: str = ""
    strengths: list[dict[str, Any]] = field(default_factory=list)
    business_tags: list[str] = field(default_factory=list)
    original_tags: list[str] = field(default_factory=list)
    region: str = ""
    prefecture: str = ""


@dataclass
class StructuredAnalysis:
    """Parsed and merged challenge analysis."""
    challenges: list[Challenge] = field(default_factory=list)
    summary: str = ""
    company_info: CompanyInfo | None = None
    total_chunks: int = 1

    def keywords(self) -> list[str]:
        seen: dict[str, None] = {}
        for challenge in self.challenges:
            for keyword in challenge.keywords:
                if keyword and keyword.strip():
                    seen.setdefault(keyword.strip(), None)
        return list(seen)


@dataclass(frozen=True)
class AnalysisOk:
    """Oracle output parsed into a structured analysis."""
    analysis: StructuredAnalysis


@dataclass(frozen=True)
class AnalysisDegraded:
    """Oracle output could not be parsed; the raw text is kept."""
    raw_text: str
    reason: str


ParsedAnalysis = AnalysisOk | AnalysisDegraded


@dataclass
class ChallengeRecord:
    """Extraction result for one company conversation."""
    company_name: str
    source_url: str
    extracted_challenges: list[str]
    analysis: ParsedAnalysis
    conversation_data: str = ""
    id: int | None = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def degraded(self) -> bool:
        return isinstance(self.analysis, AnalysisDegraded)

    @property
    def structured(self) -> StructuredAnalysis | None:
        return self.analysis.analysis if isinstance(self.analysis, AnalysisOk) else None

    def analysis_payload(self) -> dict[str, Any]:
        """JSON view of the analysis with an explicit status marker."""
        if isinstance(self.analysis, AnalysisDegraded):
            return {
                "status": "degraded",
                "challenges": [],
                "summary": "",
                "rawText": self.analysis.raw_text,
                "parseError": self.analysis.reason,
            }
        analysis = self.analysis.analysis
        return {
            "status": "ok",
            "challenges": [asdict(c) for c in analysis.challenges],
            "summary": analysis.summary,
            "totalChunks": analysis.total_chunks,
            "companyInfo": asdict(analysis.company_info) if analysis.company_info else None,
        }


@dataclass(frozen=True)
class MatchResult:
    """Ranked candidate for a challenge. Never mutated after creation."""
    challenge_ref: int | None
    candidate_ref: int | str | None
    candidate_name: str
    score: float
    reason: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "challengeRef": self.challenge_ref,
            "candidateRef": self.candidate_ref,
            "candidateName": self.candidate_name,
            "score": self.score,
            "reason": self.reason,
            "details": self.details,
        }


@dataclass
class ExecutionLogEntry:
    """One pipeline invocation, successful or failed."""
    request_payload: dict[str, Any] | None = None
    query: str | None = None
    retrieved_documents: list[dict[str, Any]] | None = None
    prompt: str | None = None
    result: Any = None
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requestPayload": self.request_payload,
            "query": self.query,
            "retrievedDocuments": self.retrieved_documents,
            "prompt": self.prompt,
            "result": self.result,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
        }
