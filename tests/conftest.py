import asyncio
import json
import math
import sys
from pathlib import Path

import pytest

# add project root to sys.path
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from cmatch.domain import CandidateKind, CandidateRecord, RetrievedDocument  # noqa: E402
from cmatch.errors import DuplicateRecordError, UpstreamError  # noqa: E402


class FakeEmbedder:
    """Deterministic character-bucket embedding."""

    def __init__(self, dimension: int = 16, *, wrong_dimension: bool = False, fail_on: str | None = None):
        self._dimension = dimension
        self.wrong_dimension = wrong_dimension
        self.fail_on = fail_on
        self.calls: list[str] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise UpstreamError("embedding oracle unavailable", stage="embed")
        size = self._dimension + 1 if self.wrong_dimension else self._dimension
        vector = [0.0] * size
        for ch in text:
            vector[ord(ch) % size] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]


class FakeGenerator:
    """Replays queued replies; an Exception in the queue is raised instead."""

    def __init__(self, responses=None, *, handler=None, delay: float = 0.0):
        self.responses = list(responses or [])
        self.handler = handler
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.peak = 0

    async def generate(self, system_prompt, user_prompt, *, json_mode=True, temperature=None):
        self.calls.append((system_prompt, user_prompt))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.handler is not None:
                reply = self.handler(system_prompt, user_prompt)
            else:
                reply = self.responses.pop(0)
        finally:
            self.active -= 1
        if isinstance(reply, Exception):
            raise reply
        return reply


class InMemoryVectorStore:
    def __init__(self, *, fail_after: int | None = None):
        self.rows: list[tuple[int, str, list[float], str]] = []
        self.fail_after = fail_after

    async def add_chunk(self, chunk):
        if self.fail_after is not None and len(self.rows) >= self.fail_after:
            raise UpstreamError("vector store unavailable", stage="store")
        self.rows.append((len(self.rows) + 1, chunk.text, list(chunk.embedding), chunk.source_ref))

    async def match_documents(self, query_embedding, match_threshold, match_count):
        hits = []
        for row_id, text, embedding, _ in self.rows:
            similarity = sum(a * b for a, b in zip(query_embedding, embedding))
            if similarity >= match_threshold:
                hits.append(RetrievedDocument(id=row_id, content=text, similarity=similarity))
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:match_count]


class StaticVectorStore:
    """Returns fixed hits regardless of the query (possibly unsorted / below threshold)."""

    def __init__(self, hits):
        self.hits = list(hits)
        self.calls = []

    async def add_chunk(self, chunk):
        raise NotImplementedError

    async def match_documents(self, query_embedding, match_threshold, match_count):
        self.calls.append((list(query_embedding), match_threshold, match_count))
        return list(self.hits)


def _contains(value, needle):
    return bool(value) and needle.lower() in value.lower()


class InMemoryCatalogStore:
    def __init__(self, records=None, *, fail_challenge=False, fail_match_names=(), existing_profiles=()):
        self.records = list(records or [])
        self.fail_challenge = fail_challenge
        self.fail_match_names = set(fail_match_names)
        self.profiles: dict[str, dict] = {name: {} for name in existing_profiles}
        self.challenges = []
        self.matches = []

    async def filter_records(self, *, business_tag=None, department=None, size_band=None, symptoms=(), kind=None, limit=100):
        keywords = [s for s in symptoms if s and s.strip()]
        rows = []
        for r in self.records:
            if kind is not None and r.kind != kind:
                continue
            if business_tag and not _contains(r.business_tag, business_tag):
                continue
            if department and not _contains(r.department, department):
                continue
            if size_band and r.size_band != size_band:
                continue
            if keywords and not any(
                _contains(field, k) for k in keywords for field in (r.symptom, r.challenge_name, r.description, r.strengths)
            ):
                continue
            rows.append(r)

        first = keywords[0] if keywords else None

        def order(r):
            relevance = 2
            if first is not None:
                relevance = 0 if _contains(r.symptom, first) else 1 if _contains(r.challenge_name, first) else 2
            return (relevance, r.business_tag or "", r.department or "", r.size_band or "", r.id)

        return sorted(rows, key=order)[:limit]

    async def list_records(self, *, kind=None, limit=200):
        return [r for r in self.records if kind is None or r.kind == kind][:limit]

    async def save_challenge(self, record):
        if self.fail_challenge:
            raise UpstreamError("catalog store unavailable", stage="persist")
        self.challenges.append(record)
        return len(self.challenges)

    async def save_company_profile(self, info, *, source_url, challenges):
        if info.company_name in self.profiles:
            raise DuplicateRecordError(f"Company profile already exists: {info.company_name}", stage="persist")
        self.profiles[info.company_name] = {"source_url": source_url, "challenges": challenges}
        return len(self.profiles)

    async def save_match(self, match):
        if match.candidate_name in self.fail_match_names:
            raise UpstreamError(f"failed to insert {match.candidate_name}", stage="match")
        self.matches.append(match)
        return match


class InMemoryLogStore:
    def __init__(self, *, fail=False):
        self.entries = []
        self.fail = fail

    async def append(self, entry):
        if self.fail:
            raise UpstreamError("log store unavailable", stage="log")
        entry.id = len(self.entries) + 1
        self.entries.append(entry)

    async def recent(self, limit):
        return list(reversed(self.entries))[:limit]


def sample_records():
    return [
        CandidateRecord(
            id=1,
            name="Acme DX Partners",
            business_tag="IT",
            department="IT",
            size_band="large",
            industry="IT services",
            employee_count=1500,
            description="業務効率化 and DX consulting",
            strengths="cloud migration",
            tags=["DX"],
        ),
        CandidateRecord(
            id=2,
            name="Sales Boost Inc",
            business_tag="Marketing",
            department="Sales",
            size_band="small",
            industry="Marketing",
            employee_count=50,
            description="lead generation services",
            strengths="営業 outsourcing",
        ),
        CandidateRecord(
            id=3,
            kind=CandidateKind.PERSONA_PATTERN,
            name="Manufacturing persona",
            business_tag="Manufacturing",
            department="Manufacturing",
            size_band="mid",
            challenge_name="品質 improvement",
            symptom="defect rate rising",
        ),
        CandidateRecord(
            id=4,
            name="Target Corp",
            business_tag="IT",
            department="IT",
            size_band="mid",
            industry="Retail",
            description="業務効率化 in stores",
        ),
        CandidateRecord(
            id=5,
            name="HR Works",
            business_tag=None,
            department="HR",
            size_band="mid",
            industry="Staffing",
            employee_count=300,
            description="採用 support",
            strengths="人材育成",
        ),
    ]


def extraction_reply(
    *,
    company_name="Target Corp",
    challenges=None,
    summary="Manual work slows the back office.",
    company_info=True,
):
    if challenges is None:
        challenges = [
            {
                "category": "Technology and systems",
                "title": "Manual reporting",
                "description": "Reports are compiled by hand every week",
                "urgency": "high",
                "keywords": ["業務効率化"],
            }
        ]
    payload = {"challenges": challenges, "summary": summary}
    if company_info:
        payload["company_info"] = {
            "company_name": company_name,
            "industry": "Retail",
            "business_description": "Chain of grocery stores",
            "strengths": ["Loyal customers"],
            "business_tags": ["retail"],
            "region": "Kanto",
            "prefecture": "Tokyo",
        }
    return json.dumps(payload, ensure_ascii=False)


def ranking_reply(matches):
    return json.dumps({"matches": matches}, ensure_ascii=False)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def catalog_store():
    return InMemoryCatalogStore(sample_records())


@pytest.fixture
def log_store():
    return InMemoryLogStore()


def make_container(generator, *, catalog_store=None, log_store=None, vector_store=None, embedder=None):
    from cmatch.container import ServiceContainer

    return ServiceContainer.create(
        embedder=embedder or FakeEmbedder(),
        generator=generator,
        vector_store=vector_store if vector_store is not None else InMemoryVectorStore(),
        catalog_store=catalog_store if catalog_store is not None else InMemoryCatalogStore(sample_records()),
        log_store=log_store if log_store is not None else InMemoryLogStore(),
    )
