import pytest
from fastapi.testclient import TestClient

from cmatch.api import app
from cmatch.container import get_container
from cmatch.errors import UpstreamError
from conftest import FakeGenerator, InMemoryLogStore, InMemoryVectorStore, extraction_reply, make_container, ranking_reply

RANKING = ranking_reply(
    [{"company_id": "1", "company_name": "Acme DX Partners", "match_score": 0.8, "match_reason": "DX consulting"}]
)

PROCESS_BODY = {
    "companyName": "Target Corp",
    "conversationData": "田中 10:00:00\nレポート作成が手作業です",
    "sourceUrl": "https://example.com/minutes/1",
}


@pytest.fixture
def make_client():
    def factory(container):
        app.dependency_overrides[get_container] = lambda: container
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


def test_health(make_client):
    client = make_client(make_container(FakeGenerator([])))

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_root_lists_endpoints(make_client):
    resp = make_client(make_container(FakeGenerator([]))).get("/")

    assert resp.status_code == 200
    assert "/process" in resp.json()["endpoints"].values()


def test_ingest(make_client):
    store = InMemoryVectorStore()
    client = make_client(make_container(FakeGenerator([]), vector_store=store))

    resp = client.post("/ingest", json={"text": "a" * 2400, "source": "handbook.md"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Ingested 3 chunks from handbook.md"}
    assert len(store.rows) == 3


def test_ingest_missing_source(make_client):
    resp = make_client(make_container(FakeGenerator([]))).post("/ingest", json={"text": "hello"})

    assert resp.status_code == 400
    assert "error" in resp.json()


def test_ingest_store_failure(make_client):
    client = make_client(make_container(FakeGenerator([]), vector_store=InMemoryVectorStore(fail_after=0)))

    resp = client.post("/ingest", json={"text": "hello", "source": "x.md"})

    assert resp.status_code == 500
    assert "0 of 1" in resp.json()["error"]


def test_search_camel_case(make_client):
    client = make_client(make_container(FakeGenerator([])))

    resp = client.post("/search", json={"department": "it", "sizeBand": "large"})

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert [r["name"] for r in body["data"]] == ["Acme DX Partners"]
    assert body["data"][0]["businessTag"] == "IT"
    assert body["statistics"]["totalMatches"] == 1
    assert body["statistics"]["sizeBandDistribution"] == {"large": 1}
    assert body["searchCriteria"]["department"] == "it"
    assert body["searchCriteria"]["limit"] == 100


def test_search_symptom_string(make_client):
    resp = make_client(make_container(FakeGenerator([]))).post("/search", json={"symptoms": "defect"})

    assert [r["id"] for r in resp.json()["data"]] == [3]


@pytest.mark.parametrize("body", [{"limit": 0}, {"limit": 5000}, {"kind": "supplier"}])
def test_search_bad_input(make_client, body):
    resp = make_client(make_container(FakeGenerator([]))).post("/search", json=body)

    assert resp.status_code == 400
    assert "error" in resp.json()


def test_process_success(make_client):
    log_store = InMemoryLogStore()
    client = make_client(make_container(FakeGenerator([extraction_reply(), RANKING]), log_store=log_store))

    resp = client.post("/process", json=PROCESS_BODY)

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["totalMatches"] == 1
    assert body["processedCount"] == 1
    assert body["matches"][0]["candidateName"] == "Acme DX Partners"
    assert [s["step"] for s in body["steps"]] == ["extract", "persist", "match", "aggregate"]
    assert body["matchingMethod"] == "external-generative"

    logs = client.get("/logs").json()["logs"]
    assert len(logs) == 1
    assert logs[0]["requestPayload"]["companyName"] == "Target Corp"


def test_process_missing_field(make_client):
    log_store = InMemoryLogStore()
    client = make_client(make_container(FakeGenerator([]), log_store=log_store))

    resp = client.post("/process", json={"companyName": "Target Corp"})

    assert resp.status_code == 400
    assert "conversationData" in resp.json()["error"]
    assert log_store.entries == []


def test_process_oracle_failure_returns_steps(make_client):
    client = make_client(make_container(FakeGenerator([UpstreamError("oracle down", stage="generate")])))

    resp = client.post("/process", json=PROCESS_BODY)

    body = resp.json()
    assert resp.status_code == 500
    assert body["error"] == "oracle down"
    assert body["steps"] == [{"step": "extract", "status": "error", "detail": {"error": "oracle down"}}]


def test_logs_newest_first_and_limit(make_client):
    log_store = InMemoryLogStore()
    container = make_container(
        FakeGenerator([extraction_reply(), RANKING, extraction_reply(), RANKING]), log_store=log_store
    )
    client = make_client(container)
    client.post("/process", json=PROCESS_BODY)
    client.post("/process", json={**PROCESS_BODY, "companyName": "Other Co"})

    logs = client.get("/logs", params={"limit": 1}).json()["logs"]

    assert len(logs) == 1
    assert logs[0]["requestPayload"]["companyName"] == "Other Co"
    assert client.get("/logs", params={"limit": 0}).status_code == 400


def test_process_unexpected_error_returns_envelope(make_client):
    log_store = InMemoryLogStore()
    client = make_client(make_container(FakeGenerator([RuntimeError("boom")]), log_store=log_store))

    resp = client.post("/process", json={**PROCESS_BODY, "matchingMethod": "catalog-internal-structured"})

    body = resp.json()
    assert resp.status_code == 500
    assert body == {"error": "boom", "steps": [{"step": "extract", "status": "error", "detail": {"error": "boom"}}]}
    assert len(log_store.entries) == 1


def test_ingest_blank_tail(make_client):
    store = InMemoryVectorStore()
    client = make_client(make_container(FakeGenerator([]), vector_store=store))

    resp = client.post("/ingest", json={"text": "hello world" + "\n" * 2500, "source": "notes.md"})

    assert resp.status_code == 200
    assert resp.json()["message"] == "Ingested 1 chunks from notes.md"
