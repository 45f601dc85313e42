"""Rule engine for deterministic catalog candidate scoring.

Implements hard and soft rule evaluation with full audit traces.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cmatch.domain import CandidateRecord
from cmatch.pipelines.normalization import normalize_keyword

logger = logging.getLogger(__name__)


class RuleType(str, Enum):
    """Rule types."""
    # Hard rules (filters)
    EXCLUDE_SELF = "exclude_self"

    # Soft rules (scoring)
    INDUSTRY_KEYWORD = "industry_keyword"
    DESCRIPTION_KEYWORD = "description_keyword"
    STRENGTHS_KEYWORD = "strengths_keyword"
    EMPLOYEE_SCALE = "employee_scale"
    DEPARTMENT_HINT = "department_hint"


class RuleStatus(str, Enum):
    """Rule evaluation status."""
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclass
class Evidence:
    """Evidence for a rule evaluation."""
    source: str  # e.g., "description", "keywords"
    text: str


@dataclass
class RuleTrace:
    """Audit trace for a single rule evaluation."""
    rule_id: str
    name: str
    status: RuleStatus
    reason: str
    evidence: list[Evidence] = field(default_factory=list)
    score_delta: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "name": self.name,
            "status": self.status.value,
            "reason": self.reason,
            "scoreDelta": self.score_delta,
            "evidence": [{"source": e.source, "text": e.text} for e in self.evidence],
        }


@dataclass
class RuleConfig:
    """Configuration for a single rule."""
    id: str
    name: str
    type: RuleType
    params: dict[str, Any] = field(default_factory=dict)
    weight: float = 1.0


@dataclass
class ScoringContext:
    """What the candidate is scored against."""
    company_name: str
    keywords: list[str] = field(default_factory=list)
    departments: list[str] = field(default_factory=list)


@dataclass
class ScoredCandidate:
    candidate: CandidateRecord
    score: float
    traces: list[RuleTrace]

    @property
    def matched_reasons(self) -> list[str]:
        return [t.reason for t in self.traces if t.status == RuleStatus.PASS and t.score_delta > 0]


def default_rules() -> list[RuleConfig]:
    """Default scoring rules for catalog-internal matching."""
    return [
        RuleConfig("r-self", "Exclude the challenge company", RuleType.EXCLUDE_SELF),
        RuleConfig("r-industry", "Industry / business tag keyword", RuleType.INDUSTRY_KEYWORD, {"bonus": 0.3}),
        RuleConfig("r-description", "Description keyword", RuleType.DESCRIPTION_KEYWORD, {"bonus": 0.4}),
        RuleConfig("r-strengths", "Strengths / symptom keyword", RuleType.STRENGTHS_KEYWORD, {"bonus": 0.3}),
        RuleConfig(
            "r-scale",
            "Employee scale",
            RuleType.EMPLOYEE_SCALE,
            {"tiers": [(1000, 0.1), (100, 0.05)]},
        ),
        RuleConfig("r-department", "Department hint", RuleType.DEPARTMENT_HINT, {"bonus": 0.1}),
    ]


def _keyword_hits(text: str | None, keywords: list[str]) -> list[str]:
    haystack = normalize_keyword(text or "")
    if not haystack:
        return []
    return [k for k in keywords if k and normalize_keyword(k) in haystack]


class RuleEngine:
    """Config-driven rule engine for candidate evaluation.

    Evaluates both hard rules (filters) and soft rules (scoring) with
    full audit trails.
    """

    _HARD_TYPES = {RuleType.EXCLUDE_SELF}

    def __init__(self, rules: list[RuleConfig] | None = None):
        """Initialize rule engine.

        Args:
            rules: List of RuleConfig objects; defaults to ``default_rules()``
        """
        self.rules = rules if rules is not None else default_rules()
        self.hard_rules = [r for r in self.rules if r.type in self._HARD_TYPES]
        self.soft_rules = [r for r in self.rules if r.type not in self._HARD_TYPES]

        logger.info(
            f"Initialized rule engine: {len(self.hard_rules)} hard, "
            f"{len(self.soft_rules)} soft rules"
        )

    def evaluate_hard_rules(
        self,
        candidate: CandidateRecord,
        context: ScoringContext,
    ) -> tuple[bool, list[RuleTrace]]:
        """Evaluate hard filtering rules.

        Returns:
            Tuple of (passed, rule_traces)
        """
        traces = []

        for rule in self.hard_rules:
            trace = self._evaluate_rule(rule, candidate, context)
            traces.append(trace)

            if trace.status == RuleStatus.FAIL:
                return False, traces

        return True, traces

    def evaluate_soft_rules(
        self,
        candidate: CandidateRecord,
        context: ScoringContext,
        base_score: float = 0.0,
    ) -> tuple[float, list[RuleTrace]]:
        """Evaluate soft scoring rules.

        Returns:
            Tuple of (adjusted_score, rule_traces)
        """
        traces = []
        total_delta = 0.0

        for rule in self.soft_rules:
            trace = self._evaluate_rule(rule, candidate, context)
            traces.append(trace)

            if trace.status == RuleStatus.PASS:
                total_delta += trace.score_delta * rule.weight

        return base_score + total_delta, traces

    def score(self, candidate: CandidateRecord, context: ScoringContext) -> ScoredCandidate | None:
        """Hard rules then soft rules; score clamped to [0, 1]. None if filtered out."""
        passed, hard_traces = self.evaluate_hard_rules(candidate, context)
        if not passed:
            return None
        raw, soft_traces = self.evaluate_soft_rules(candidate, context)
        return ScoredCandidate(candidate, min(max(raw, 0.0), 1.0), hard_traces + soft_traces)

    def _evaluate_rule(
        self,
        rule: RuleConfig,
        candidate: CandidateRecord,
        context: ScoringContext,
    ) -> RuleTrace:
        if rule.type == RuleType.EXCLUDE_SELF:
            return self._eval_exclude_self(rule, candidate, context)
        if rule.type == RuleType.INDUSTRY_KEYWORD:
            text = " ".join(filter(None, [candidate.industry, candidate.business_tag, *candidate.tags]))
            return self._eval_keyword(rule, "industry", text, context)
        if rule.type == RuleType.DESCRIPTION_KEYWORD:
            return self._eval_keyword(rule, "description", candidate.description, context)
        if rule.type == RuleType.STRENGTHS_KEYWORD:
            text = "\n".join(filter(None, [candidate.strengths, candidate.symptom, candidate.challenge_name]))
            return self._eval_keyword(rule, "strengths", text, context)
        if rule.type == RuleType.EMPLOYEE_SCALE:
            return self._eval_employee_scale(rule, candidate)
        if rule.type == RuleType.DEPARTMENT_HINT:
            return self._eval_department(rule, candidate, context)

        logger.warning(f"Unknown rule type: {rule.type}")
        return RuleTrace(rule.id, rule.name, RuleStatus.SKIP, f"Unknown rule type: {rule.type}")

    def _eval_exclude_self(self, rule: RuleConfig, candidate: CandidateRecord, context: ScoringContext) -> RuleTrace:
        if normalize_keyword(candidate.name) == normalize_keyword(context.company_name):
            return RuleTrace(rule.id, rule.name, RuleStatus.FAIL, f"Candidate is the company itself: {candidate.name}")
        return RuleTrace(rule.id, rule.name, RuleStatus.PASS, "Different company")

    def _eval_keyword(self, rule: RuleConfig, source: str, text: str | None, context: ScoringContext) -> RuleTrace:
        if not context.keywords:
            return RuleTrace(rule.id, rule.name, RuleStatus.SKIP, "No keywords to match")

        hits = _keyword_hits(text, context.keywords)
        if not hits:
            return RuleTrace(rule.id, rule.name, RuleStatus.PASS, f"No keyword in {source}")

        return RuleTrace(
            rule.id,
            rule.name,
            RuleStatus.PASS,
            f"{source} mentions {', '.join(hits)}",
            evidence=[Evidence(source=source, text=h) for h in hits],
            score_delta=rule.params.get("bonus", 0.0),
        )

    def _eval_employee_scale(self, rule: RuleConfig, candidate: CandidateRecord) -> RuleTrace:
        employees = candidate.employee_count
        if employees is None:
            return RuleTrace(rule.id, rule.name, RuleStatus.SKIP, "Employee count unknown")

        for minimum, bonus in rule.params.get("tiers", []):
            if employees > minimum:
                return RuleTrace(
                    rule.id,
                    rule.name,
                    RuleStatus.PASS,
                    f"{employees} employees (> {minimum})",
                    score_delta=bonus,
                )
        return RuleTrace(rule.id, rule.name, RuleStatus.PASS, f"{employees} employees")

    def _eval_department(self, rule: RuleConfig, candidate: CandidateRecord, context: ScoringContext) -> RuleTrace:
        if not context.departments or not candidate.department:
            return RuleTrace(rule.id, rule.name, RuleStatus.SKIP, "No department to compare")

        department = normalize_keyword(candidate.department)
        for hint in context.departments:
            if normalize_keyword(hint) in department:
                return RuleTrace(
                    rule.id,
                    rule.name,
                    RuleStatus.PASS,
                    f"Department {candidate.department} matches hint {hint}",
                    evidence=[Evidence(source="department", text=candidate.department)],
                    score_delta=rule.params.get("bonus", 0.0),
                )
        return RuleTrace(rule.id, rule.name, RuleStatus.PASS, "Department does not match")
