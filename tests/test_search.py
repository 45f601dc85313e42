import asyncio

import pytest

from cmatch.domain import CandidateKind
from cmatch.errors import ValidationError
from cmatch.pipelines.search import UNCLASSIFIED, SearchFilters, compute_statistics, search_catalog


def _search(store, limit=None, **raw):
    return asyncio.run(search_catalog(store, SearchFilters.from_raw(**raw), limit))


def test_empty_filters_pass_through(catalog_store):
    result = _search(catalog_store)

    assert len(result.data) == 5
    assert result.statistics.total_matches == 5
    assert result.limit == 100


def test_empty_filters_respect_limit(catalog_store):
    result = _search(catalog_store, limit=2)

    assert len(result.data) == 2
    assert result.statistics.total_matches == 2


def test_adding_filters_never_grows_result(catalog_store):
    broad = _search(catalog_store, department="it")
    narrower = _search(catalog_store, department="it", size_band="large")
    narrowest = _search(catalog_store, department="it", size_band="large", symptoms=["採用"])

    assert {r.id for r in broad.data} == {1, 4}
    assert {r.id for r in narrower.data} <= {r.id for r in broad.data}
    assert [r.id for r in narrower.data] == [1]
    assert narrowest.data == []


def test_symptoms_are_ored(catalog_store):
    result = _search(catalog_store, symptoms=["defect", "採用"])

    assert {r.id for r in result.data} == {3, 5}


def test_single_symptom_string_is_accepted(catalog_store):
    result = _search(catalog_store, symptoms="lead generation")

    assert [r.name for r in result.data] == ["Sales Boost Inc"]


def test_kind_filter(catalog_store):
    result = _search(catalog_store, kind="persona_pattern")

    assert [r.id for r in result.data] == [3]
    assert result.filters.kind is CandidateKind.PERSONA_PATTERN


def test_statistics_count_missing_values_as_unclassified(catalog_store):
    stats = _search(catalog_store, size_band="mid").statistics.to_dict()

    assert stats["totalMatches"] == 3
    assert stats["sizeBandDistribution"] == {"mid": 3}
    assert stats["businessTagDistribution"][UNCLASSIFIED] == 1
    assert stats["departmentDistribution"] == {"Manufacturing": 1, "IT": 1, "HR": 1}


def test_compute_statistics_empty():
    stats = compute_statistics([])

    assert stats.total_matches == 0
    assert stats.department_distribution == {}


@pytest.mark.parametrize("limit", [0, -1, 1001])
def test_limit_out_of_range(catalog_store, limit):
    with pytest.raises(ValidationError):
        _search(catalog_store, limit=limit)


def test_from_raw_normalizes_input():
    filters = SearchFilters.from_raw(business_tag="  ", department=" IT ", symptoms=["", " 採用 ", "  "])

    assert filters.business_tag is None
    assert filters.department == "IT"
    assert filters.symptoms == ["採用"]
    assert filters.to_dict()["kind"] is None


def test_from_raw_rejects_unknown_kind():
    with pytest.raises(ValidationError):
        SearchFilters.from_raw(kind="supplier")
