import pytest

from cmatch.domain import CandidateRecord
from cmatch.rules import RuleConfig, RuleEngine, RuleStatus, RuleType, ScoringContext
from cmatch.taxonomy import TaxonomyMatcher


def _candidate(**overrides):
    data = dict(
        id=10,
        name="Acme DX Partners",
        industry="DX consulting",
        department="IT",
        employee_count=None,
        description="",
        strengths="",
    )
    data.update(overrides)
    return CandidateRecord(**data)


def test_all_keyword_rules_clamp_to_one():
    engine = RuleEngine()
    candidate = _candidate(description="We help with DX projects", strengths="DX talent", employee_count=1500)

    scored = engine.score(candidate, ScoringContext(company_name="Target Corp", keywords=["DX"], departments=["IT"]))

    assert scored.score == 1.0
    deltas = {t.rule_id: t.score_delta for t in scored.traces}
    assert deltas["r-industry"] == pytest.approx(0.3)
    assert deltas["r-description"] == pytest.approx(0.4)
    assert deltas["r-strengths"] == pytest.approx(0.3)
    assert deltas["r-scale"] == pytest.approx(0.1)
    assert deltas["r-department"] == pytest.approx(0.1)


def test_company_itself_is_excluded():
    engine = RuleEngine()

    scored = engine.score(_candidate(name="target corp"), ScoringContext(company_name="Target Corp", keywords=["DX"]))

    assert scored is None
    passed, traces = engine.evaluate_hard_rules(_candidate(name="Target Corp"), ScoringContext(company_name="Target Corp"))
    assert not passed
    assert traces[-1].status is RuleStatus.FAIL


def test_no_keywords_only_scale_counts():
    scored = RuleEngine().score(_candidate(employee_count=150), ScoringContext(company_name="Target Corp"))

    assert scored.score == pytest.approx(0.05)
    skipped = [t.rule_id for t in scored.traces if t.status is RuleStatus.SKIP]
    assert {"r-industry", "r-description", "r-strengths", "r-department"} <= set(skipped)


def test_keyword_match_is_width_and_case_insensitive():
    candidate = _candidate(description="ＤＸ推進の支援")

    scored = RuleEngine().score(candidate, ScoringContext(company_name="Target Corp", keywords=["dx"]))

    assert scored.score == pytest.approx(0.7)
    assert any("description mentions dx" == reason for reason in scored.matched_reasons)


def test_custom_rule_weights():
    rules = [RuleConfig("desc", "Description", RuleType.DESCRIPTION_KEYWORD, {"bonus": 0.4}, weight=0.5)]

    score, traces = RuleEngine(rules).evaluate_soft_rules(
        _candidate(description="cloud"), ScoringContext(company_name="X", keywords=["cloud"])
    )

    assert score == pytest.approx(0.2)
    assert traces[0].evidence[0].text == "cloud"


def test_taxonomy_exact_and_fuzzy_lookup():
    matcher = TaxonomyMatcher()

    assert matcher.lookup("営業").department == "Sales"
    assert matcher.lookup("営業").method == "exact"
    fuzzy = matcher.lookup("cost reductions")
    assert fuzzy.department == "Finance"
    assert fuzzy.method == "fuzzy"
    assert matcher.lookup("zzzz") is None
    assert matcher.lookup("  ") is None


def test_taxonomy_department_hints_dedupe():
    hints = TaxonomyMatcher().department_hints(["People and organisation", "採用", "lead generation"])

    assert [h.department for h in hints] == ["HR", "Sales"]
