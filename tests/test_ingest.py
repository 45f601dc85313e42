import asyncio
import math

import pytest

from cmatch.errors import UpstreamError, ValidationError
from cmatch.pipelines.ingest import IngestionError, ingest_text, split_text
from conftest import FakeEmbedder, InMemoryVectorStore


def test_split_text_window_count():
    text = "".join(chr(ord("a") + i % 26) for i in range(2400))

    chunks = split_text(text, 1000, 200)

    assert len(chunks) == 3
    assert [len(c) for c in chunks] == [1000, 1000, 800]
    assert chunks[1][:200] == chunks[0][-200:]


def test_split_text_reassembles():
    text = "顧客対応の負荷が高い。" * 317

    chunks = split_text(text, 1000, 200)

    assert chunks[0] + "".join(c[200:] for c in chunks[1:]) == text
    assert len(chunks) == math.ceil((len(text) - 200) / 800)


@pytest.mark.parametrize("length,expected", [(1, 1), (1000, 1), (1001, 2), (1800, 2), (1801, 3)])
def test_split_text_boundaries(length, expected):
    assert len(split_text("x" * length, 1000, 200)) == expected


def test_split_text_empty():
    assert split_text("", 1000, 200) == []


@pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, 150), (100, -1)])
def test_split_text_rejects_bad_parameters(size, overlap):
    with pytest.raises(ValidationError):
        split_text("abc", size, overlap)


def test_ingest_text_stores_every_chunk():
    embedder = FakeEmbedder()
    store = InMemoryVectorStore()

    report = asyncio.run(
        ingest_text("z" * 2400, "handbook.md", embedder=embedder, vector_store=store, chunk_size=1000, chunk_overlap=200)
    )

    assert report.chunks_ingested == 3
    assert report.chunks_total == 3
    assert report.message == "Ingested 3 chunks from handbook.md"
    assert len(store.rows) == 3
    assert all(source == "handbook.md" for *_, source in store.rows)
    assert all(len(embedding) == embedder.dimension for _, _, embedding, _ in store.rows)


@pytest.mark.parametrize("text,source", [("", "a.md"), ("   ", "a.md"), ("body", ""), ("body", "  ")])
def test_ingest_text_requires_text_and_source(text, source):
    store = InMemoryVectorStore()

    with pytest.raises(ValidationError):
        asyncio.run(ingest_text(text, source, embedder=FakeEmbedder(), vector_store=store))

    assert store.rows == []


def test_ingest_text_reports_partial_progress():
    store = InMemoryVectorStore(fail_after=2)

    with pytest.raises(IngestionError) as excinfo:
        asyncio.run(
            ingest_text("y" * 2400, "faq.md", embedder=FakeEmbedder(), vector_store=store, chunk_size=1000, chunk_overlap=200)
        )

    assert excinfo.value.chunks_ingested == 2
    assert excinfo.value.chunks_total == 3
    assert isinstance(excinfo.value, UpstreamError)


def test_ingest_text_rejects_wrong_dimension():
    store = InMemoryVectorStore()

    with pytest.raises(IngestionError) as excinfo:
        asyncio.run(ingest_text("some text", "x.md", embedder=FakeEmbedder(wrong_dimension=True), vector_store=store))

    assert excinfo.value.chunks_ingested == 0
    assert store.rows == []


def test_ingest_text_embedder_failure():
    embedder = FakeEmbedder(fail_on="boom")

    with pytest.raises(IngestionError):
        asyncio.run(ingest_text("boom", "x.md", embedder=embedder, vector_store=InMemoryVectorStore()))


def test_ingest_text_skips_blank_windows():
    embedder = FakeEmbedder()
    store = InMemoryVectorStore()
    # windows two and three are all whitespace
    text = "hello world " + " " * 2500

    report = asyncio.run(
        ingest_text(text, "doc.md", embedder=embedder, vector_store=store, chunk_size=1000, chunk_overlap=200)
    )

    assert report.chunks_total == 1
    assert report.chunks_ingested == 1
    assert all(call.strip() for call in embedder.calls)
    assert len(store.rows) == 1


class _BrokenVectorStore:
    def __init__(self, fail_after: int):
        self.fail_after = fail_after
        self.added = 0

    async def add_chunk(self, chunk):
        if self.added >= self.fail_after:
            raise ConnectionRefusedError(111, "Connect call failed")
        self.added += 1


def test_ingest_text_wraps_unexpected_errors():
    store = _BrokenVectorStore(fail_after=1)

    with pytest.raises(IngestionError) as excinfo:
        asyncio.run(
            ingest_text("x" * 2400, "faq.md", embedder=FakeEmbedder(), vector_store=store, chunk_size=1000, chunk_overlap=200)
        )

    assert excinfo.value.chunks_ingested == 1
    assert excinfo.value.chunks_total == 3
    assert "1 of 3" in str(excinfo.value)
