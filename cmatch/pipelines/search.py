"""Structured filter search over the candidate catalog with distribution stats."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from cmatch.config import settings
from cmatch.domain import CandidateKind, CandidateRecord
from cmatch.errors import ValidationError
from cmatch.interfaces import CatalogStore

logger = logging.getLogger(__name__)

UNCLASSIFIED = "unclassified"


@dataclass
class SearchFilters:
    """Conjunctive filters; ``None``/empty means pass-through."""
    business_tag: str | None = None
    department: str | None = None
    size_band: str | None = None
    symptoms: list[str] = field(default_factory=list)
    kind: CandidateKind | None = None

    @classmethod
    def from_raw(
        cls,
        *,
        business_tag: str | None = None,
        department: str | None = None,
        size_band: str | None = None,
        symptoms: str | Sequence[str] | None = None,
        kind: str | CandidateKind | None = None,
    ) -> "SearchFilters":
        """Normalize loosely typed input (single symptom string, blanks)."""
        if isinstance(symptoms, str):
            symptoms = [symptoms]
        cleaned = [s.strip() for s in (symptoms or []) if s and s.strip()]
        try:
            parsed_kind = CandidateKind(kind) if kind else None
        except ValueError as e:
            raise ValidationError(f"unknown candidate kind: {kind}") from e
        return cls(
            business_tag=_blank_to_none(business_tag),
            department=_blank_to_none(department),
            size_band=_blank_to_none(size_band),
            symptoms=cleaned,
            kind=parsed_kind,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "businessTag": self.business_tag,
            "department": self.department,
            "sizeBand": self.size_band,
            "symptoms": list(self.symptoms),
            "kind": self.kind.value if self.kind else None,
        }


@dataclass
class SearchStatistics:
    """Grouped counts over the filtered result set."""
    total_matches: int
    business_tag_distribution: dict[str, int]
    department_distribution: dict[str, int]
    size_band_distribution: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalMatches": self.total_matches,
            "businessTagDistribution": self.business_tag_distribution,
            "departmentDistribution": self.department_distribution,
            "sizeBandDistribution": self.size_band_distribution,
        }


@dataclass
class SearchResult:
    data: list[CandidateRecord]
    statistics: SearchStatistics
    filters: SearchFilters
    limit: int


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _distribution(values: Iterable[str | None]) -> dict[str, int]:
    return dict(Counter(v or UNCLASSIFIED for v in values))


def compute_statistics(records: Sequence[CandidateRecord]) -> SearchStatistics:
    """Count records per categorical dimension."""
    return SearchStatistics(
        total_matches=len(records),
        business_tag_distribution=_distribution(r.business_tag for r in records),
        department_distribution=_distribution(r.department for r in records),
        size_band_distribution=_distribution(r.size_band for r in records),
    )


async def search_catalog(
    catalog_store: CatalogStore,
    filters: SearchFilters,
    limit: int | None = None,
) -> SearchResult:
    """Run a conjunctive filter search and aggregate statistics.

    Each supplied filter narrows the result set; symptom keywords are ORed
    among themselves and then ANDed with the rest.

    Raises:
        ValidationError: If limit is out of range
        UpstreamError: If the catalog store fails
    """
    limit = settings.search.default_limit if limit is None else limit
    if limit < 1 or limit > settings.search.max_limit:
        raise ValidationError(f"limit must be between 1 and {settings.search.max_limit}")

    logger.info(f"Catalog search: {filters.to_dict()} (limit={limit})")

    records = await catalog_store.filter_records(
        business_tag=filters.business_tag,
        department=filters.department,
        size_band=filters.size_band,
        symptoms=filters.symptoms,
        kind=filters.kind,
        limit=limit,
    )
    records = records[:limit]
    statistics = compute_statistics(records)

    logger.info(f"Catalog search returned {statistics.total_matches} records")
    return SearchResult(data=records, statistics=statistics, filters=filters, limit=limit)
