"""Tests for the local ChromaDB vector store."""

import pytest

from aikb.cache import KeyValueStore, LocalEntryCache
from aikb.errors import RemoteServiceError
from aikb.models import VectorRecord
from aikb.service import KnowledgeService
from aikb.storage.chromadb import ChromaVectorStore

from conftest import FakeEmbedder


def test_empty_collection_query(tmp_path):
    store = ChromaVectorStore(str(tmp_path / "chroma"))
    assert store.query([1.0, 0.0, 0.0]) == []


def test_upsert_is_idempotent(tmp_path):
    store = ChromaVectorStore(str(tmp_path / "chroma"))
    record = VectorRecord("text_1", [1.0, 0.0, 0.0], {"title": "first", "headings": ["H1"]})
    store.upsert([record])
    store.upsert([VectorRecord("text_1", [1.0, 0.0, 0.0], {"title": "second", "headings": ["H1"]})])

    assert store.count() == 1
    matches = store.query([1.0, 0.0, 0.0], top_k=5)
    assert len(matches) == 1
    assert matches[0]["id"] == "text_1"
    assert matches[0]["metadata"]["title"] == "second"
    assert matches[0]["metadata"]["headings"] == ["H1"]
    assert matches[0]["score"] > 0.99


def test_delete_and_fetch_ids(tmp_path):
    store = ChromaVectorStore(str(tmp_path / "chroma"))
    store.upsert([
        VectorRecord("a", [1.0, 0.0, 0.0], {"title": "a"}),
        VectorRecord("b", [0.0, 1.0, 0.0], {"title": "b"}),
    ])
    assert store.fetch_ids(["a", "b", "c"]) == {"a", "b"}

    store.delete(["a", "missing"])
    assert store.fetch_ids(["a", "b"]) == {"b"}


def test_text_that_looks_like_json_stays_text(tmp_path):
    store = ChromaVectorStore(str(tmp_path / "chroma"))
    store.upsert([VectorRecord("a", [1.0, 0.0, 0.0], {"content": "[1, 2]", "alt": "{}", "headings": []})])

    meta = store.query([1.0, 0.0, 0.0])[0]["metadata"]

    assert meta["content"] == "[1, 2]"
    assert meta["alt"] == "{}"
    assert meta["headings"] == []
    assert "_json_keys" not in meta


def test_chroma_failures_become_remote_errors(tmp_path):
    store = ChromaVectorStore(str(tmp_path / "chroma"))
    store.upsert([VectorRecord("a", [1.0, 0.0, 0.0], {"title": "a"})])

    # wrong dimension for this collection
    with pytest.raises(RemoteServiceError):
        store.query([1.0] * 26)
    with pytest.raises(RemoteServiceError):
        store.upsert([VectorRecord("b", [1.0] * 26, {"title": "b"})])


def test_search_on_chroma_degrades_to_empty(tmp_path, config):
    store = ChromaVectorStore(str(tmp_path / "chroma"))
    store.upsert([VectorRecord("a", [1.0, 0.0, 0.0], {"title": "a"})])
    config["vector_backend"] = "chromadb"
    embedder = FakeEmbedder()
    service = KnowledgeService(
        config, LocalEntryCache(KeyValueStore(config["store_path"])),
        embedder_factory=lambda cfg: embedder,
        store_factory=lambda cfg: store,
    )

    assert service.search("hello") == []
