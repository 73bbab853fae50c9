from contextlib import contextmanager
from types import SimpleNamespace

import pytest

from core import config
from core.contracts import ChunkCandidate
from core.errors import EmbeddingDimensionError, IndexingError
from embedding import indexer
from embedding.openai_embedder import OpenAIEmbedder
from storage import repo


class FakeConn:
    def __init__(self, events):
        self.events = events

    def commit(self):
        self.events.append("commit")

    def rollback(self):
        self.events.append("rollback")


class DummyEmbedder:
    def __init__(self, dim=4):
        self.dim = dim
        self.calls = []

    def embed_texts(self, texts):
        self.calls.append(list(texts))
        return [[0.1] * self.dim for _ in texts]


class FakeEmbeddingsAPI:
    def __init__(self, dim):
        self.dim = dim

    def create(self, model, input, encoding_format):
        return SimpleNamespace(
            data=[
                SimpleNamespace(index=i, embedding=[0.0] * self.dim)
                for i in range(len(input))
            ]
        )


class FakeOpenAI:
    def __init__(self, dim):
        self.embeddings = FakeEmbeddingsAPI(dim)


def _candidates(count, page_number=1):
    return [
        ChunkCandidate(
            document_id="doc-1",
            page_number=page_number + (i % 2),
            snippet_text=f"Chunk {i} text.",
            metadata={"chunk_index": i},
        )
        for i in range(count)
    ]


@pytest.fixture
def store(monkeypatch):
    events = []
    state = {"missing": 0}

    @contextmanager
    def fake_connection():
        yield FakeConn(events)

    def fake_delete(conn, document_id):
        events.append(f"delete:{document_id}")
        return 7

    def fake_insert(conn, rows):
        rows = list(rows)
        events.append(f"insert:{len(rows)}")
        return [f"id-{len(events)}-{i}" for i in range(len(rows))]

    def fake_missing(conn, chunk_ids):
        events.append("verify")
        return state["missing"] if state["missing"] >= 0 else len(chunk_ids)

    monkeypatch.setattr(indexer, "get_connection", fake_connection)
    monkeypatch.setattr(repo, "delete_chunks", fake_delete)
    monkeypatch.setattr(repo, "insert_chunks", fake_insert)
    monkeypatch.setattr(repo, "count_missing_embeddings", fake_missing)
    return SimpleNamespace(events=events, state=state)


def test_reindex_deletes_before_inserting_in_batches(store, monkeypatch):
    monkeypatch.setattr(config.settings, "insert_batch_size", 2)
    result = indexer.reindex("doc-1", _candidates(5), embedder=DummyEmbedder())

    assert store.events[0] == "delete:doc-1"
    inserts = [event for event in store.events if event.startswith("insert")]
    assert inserts == ["insert:2", "insert:2", "insert:1"]
    assert store.events.index("delete:doc-1") < store.events.index("insert:2")
    assert store.events[-1] == "verify"
    assert result.chunk_count == 5
    assert result.page_count == 2
    assert result.warnings == []


def test_reindex_without_candidates_only_clears(store):
    embedder = DummyEmbedder()
    result = indexer.reindex("doc-1", [], embedder=embedder, warnings=["Tier 1 failed"])
    assert store.events == ["delete:doc-1", "commit"]
    assert embedder.calls == []
    assert result.chunk_count == 0
    assert result.warnings == ["Tier 1 failed"]


def test_dimension_mismatch_aborts_before_delete(store, monkeypatch):
    monkeypatch.setattr(config.settings, "embedding_dim", 1536)
    embedder = OpenAIEmbedder(client=FakeOpenAI(dim=768))
    with pytest.raises(EmbeddingDimensionError) as excinfo:
        indexer.reindex("doc-1", _candidates(3), embedder=embedder)
    assert excinfo.value.expected == 1536
    assert excinfo.value.actual == 768
    assert store.events == []


def test_zero_embedded_rows_is_fatal(store):
    store.state["missing"] = -1
    with pytest.raises(IndexingError):
        indexer.reindex("doc-1", _candidates(3), embedder=DummyEmbedder())


def test_partial_embedding_is_a_warning(store):
    store.state["missing"] = 1
    result = indexer.reindex("doc-1", _candidates(4), embedder=DummyEmbedder())
    assert result.chunk_count == 3
    assert any("Only 3 of 4" in warning for warning in result.warnings)


def test_openai_embedder_batches(monkeypatch):
    monkeypatch.setattr(config.settings, "embedding_dim", 8)
    monkeypatch.setattr(config.settings, "embedding_batch_size", 2)
    client = FakeOpenAI(dim=8)
    calls = []
    original_create = client.embeddings.create

    def recording_create(model, input, encoding_format):
        calls.append(len(input))
        return original_create(model, input, encoding_format)

    client.embeddings.create = recording_create
    vectors = OpenAIEmbedder(client=client).embed_texts(["a", "b", "c", "d", "e"])
    assert calls == [2, 2, 1]
    assert len(vectors) == 5
    assert all(len(vector) == 8 for vector in vectors)
