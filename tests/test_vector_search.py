from contextlib import contextmanager

from core.contracts import RetrievedChunk
from retrieval import vector_search
from storage import repo


class ExplodingEmbedder:
    def embed_texts(self, texts):
        raise AssertionError("query should not be embedded")


class DummyEmbedder:
    def __init__(self):
        self.calls = []

    def embed_texts(self, texts):
        self.calls.append(texts)
        return [[0.5, 0.5] for _ in texts]


@contextmanager
def _fake_connection():
    yield object()


def _chunk(chunk_id, similarity, page=1):
    return RetrievedChunk(
        chunk_id=chunk_id,
        document_id="doc",
        page_number=page,
        snippet_text=f"text {chunk_id}",
        metadata={},
        similarity=similarity,
    )


def test_blank_query_returns_nothing():
    assert vector_search.retrieve("doc", "   ", embedder=ExplodingEmbedder()) == []


def test_unindexed_document_skips_embedding(monkeypatch):
    monkeypatch.setattr(vector_search, "get_connection", _fake_connection)
    monkeypatch.setattr(repo, "count_embedded_chunks", lambda conn, document_id: 0)
    results = vector_search.retrieve("doc", "door schedule", embedder=ExplodingEmbedder())
    assert results == []


def test_results_are_ranked_by_similarity(monkeypatch):
    captured = {}

    def fake_match(conn, document_id, query_embedding, limit):
        captured["args"] = (document_id, query_embedding, limit)
        return [_chunk("c1", 0.2), _chunk("c2", 0.9), _chunk("c3", 0.5)]

    monkeypatch.setattr(vector_search, "get_connection", _fake_connection)
    monkeypatch.setattr(repo, "count_embedded_chunks", lambda conn, document_id: 3)
    monkeypatch.setattr(repo, "match_chunks", fake_match)
    embedder = DummyEmbedder()

    results = vector_search.retrieve("doc", " panel schedule ", limit=2, embedder=embedder)

    assert embedder.calls == [["panel schedule"]]
    assert captured["args"] == ("doc", [0.5, 0.5], 2)
    assert [chunk.chunk_id for chunk in results] == ["c2", "c3"]


def test_fetch_by_pages_dedupes_and_caps(monkeypatch):
    captured = {}

    def fake_fetch(conn, document_id, pages, limit):
        captured["args"] = (document_id, pages, limit)
        return []

    monkeypatch.setattr(vector_search, "get_connection", _fake_connection)
    monkeypatch.setattr(repo, "fetch_chunks_by_pages", fake_fetch)

    vector_search.fetch_by_pages("doc", [3, 1, 3])
    assert captured["args"] == ("doc", [1, 3], 24)

    vector_search.fetch_by_pages("doc", [5], limit=4)
    assert captured["args"] == ("doc", [5], 4)

    assert vector_search.fetch_by_pages("doc", []) == []


def test_fetch_sample_uses_first_chunks(monkeypatch):
    captured = {}

    def fake_first(conn, document_id, limit):
        captured["args"] = (document_id, limit)
        return [_chunk("c1", 0.0)]

    monkeypatch.setattr(vector_search, "get_connection", _fake_connection)
    monkeypatch.setattr(repo, "fetch_first_chunks", fake_first)
    assert len(vector_search.fetch_sample("doc")) == 1
    assert captured["args"] == ("doc", 12)
