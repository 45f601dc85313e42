"""Challenge category taxonomy: maps extracted categories and keywords to department hints.

Lookup order is exact synonym, then fuzzy match via rapidfuzz.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from rapidfuzz import fuzz, process

from cmatch.config import settings
from cmatch.pipelines.normalization import normalize_keyword

logger = logging.getLogger(__name__)


@dataclass
class CategoryTaxonomy:
    """One challenge category with its department and synonyms (ja/en)."""
    category: str
    department: str
    synonyms: list[str] = field(default_factory=list)


@dataclass
class DepartmentHint:
    """Department inferred from a challenge term."""
    department: str
    category: str
    matched_text: str
    confidence: float
    method: str = "fuzzy"  # exact, fuzzy


CHALLENGE_TAXONOMY: list[CategoryTaxonomy] = [
    CategoryTaxonomy(
        "Operational efficiency", "Operations",
        ["operational efficiency", "業務効率化", "業務改善", "efficiency", "productivity", "生産性", "工数削減"],
    ),
    CategoryTaxonomy(
        "Cost reduction", "Finance",
        ["cost reduction", "コスト削減", "cost", "経費削減", "原価低減", "budget"],
    ),
    CategoryTaxonomy(
        "People and organisation", "HR",
        ["people and organisation", "人材", "人事", "採用", "recruiting", "hiring", "人材育成", "組織", "離職", "retention"],
    ),
    CategoryTaxonomy(
        "Technology and systems", "IT",
        ["technology and systems", "it", "dx", "システム", "デジタル化", "digital transformation", "infrastructure", "情報システム"],
    ),
    CategoryTaxonomy(
        "Marketing and sales", "Sales",
        ["marketing and sales", "営業", "sales", "マーケティング", "marketing", "販路拡大", "集客", "lead generation", "売上"],
    ),
    CategoryTaxonomy(
        "Quality improvement", "Manufacturing",
        ["quality improvement", "品質", "品質向上", "quality", "不良", "defect", "製造"],
    ),
    CategoryTaxonomy(
        "Compliance and security", "Legal",
        ["compliance and security", "コンプライアンス", "compliance", "セキュリティ", "security", "法務", "情報漏洩"],
    ),
]


class TaxonomyMatcher:
    """Resolves challenge categories/keywords to department hints."""

    def __init__(self, taxonomy: list[CategoryTaxonomy] | None = None, fuzzy_threshold: int | None = None) -> None:
        self.taxonomy = taxonomy or CHALLENGE_TAXONOMY
        self.fuzzy_threshold = settings.matching.fuzzy_threshold if fuzzy_threshold is None else fuzzy_threshold

        self._synonym_map: dict[str, CategoryTaxonomy] = {}
        for entry in self.taxonomy:
            self._synonym_map[normalize_keyword(entry.category)] = entry
            for syn in entry.synonyms:
                self._synonym_map[normalize_keyword(syn)] = entry

        logger.info(f"Loaded {len(self.taxonomy)} challenge categories with {len(self._synonym_map)} synonyms")

    def lookup(self, term: str) -> DepartmentHint | None:
        """Best department hint for a single term, or None."""
        key = normalize_keyword(term)
        if not key:
            return None

        entry = self._synonym_map.get(key)
        if entry is not None:
            return DepartmentHint(entry.department, entry.category, term, 1.0, method="exact")

        best = process.extractOne(key, list(self._synonym_map), scorer=fuzz.WRatio)
        if best is None:
            return None
        synonym, score, _ = best
        if score < self.fuzzy_threshold:
            return None
        entry = self._synonym_map[synonym]
        return DepartmentHint(entry.department, entry.category, term, score / 100.0)

    def department_hints(self, terms: Iterable[str]) -> list[DepartmentHint]:
        """Hints for all terms, best first, one per department."""
        best: dict[str, DepartmentHint] = {}
        for term in terms:
            hint = self.lookup(term)
            if hint is None:
                continue
            current = best.get(hint.department)
            if current is None or hint.confidence > current.confidence:
                best[hint.department] = hint
        hints = sorted(best.values(), key=lambda h: h.confidence, reverse=True)
        logger.debug(f"Resolved {len(hints)} department hints")
        return hints
