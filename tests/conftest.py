"""Shared fakes: an in-memory vector index and a letter-count embedder."""

import copy
import string
import threading

import numpy as np
import pytest

from aikb.config import DEFAULT_CONFIG
from aikb.embeddings.embedder import EmbedderBase, l2_normalize
from aikb.errors import RemoteServiceError
from aikb.knowledge_base import KnowledgeBase
from aikb.storage import VectorStoreBase


class FakeEmbedder(EmbedderBase):
    """Bag-of-letters embedding: texts sharing letters score higher."""

    dimension = 26

    def __init__(self, fail: Exception | None = None):
        self.fail = fail
        self.texts: list[str] = []

    def embed(self, text):
        if self.fail:
            raise self.fail
        self.texts.append(text)
        counts = [0.0] * 26
        for ch in text.lower():
            if ch in string.ascii_lowercase:
                counts[ord(ch) - ord("a")] += 1
        return l2_normalize(counts)


class FakeVectorStore(VectorStoreBase):
    def __init__(self):
        self.records = {}
        self.fail_upsert: Exception | None = None
        self.fail_query: Exception | None = None
        self.fail_delete: Exception | None = None
        self.deleted: list[list[str]] = []
        self.lock = threading.Lock()

    def upsert(self, records):
        if self.fail_upsert:
            raise self.fail_upsert
        with self.lock:
            for r in records:
                self.records[r.id] = r
        return {"upsertedCount": len(records)}

    def query(self, vector, top_k=10, include_metadata=True):
        if self.fail_query:
            raise self.fail_query
        q = np.asarray(vector)
        scored = [
            {
                "id": r.id,
                "score": float(np.dot(q, np.asarray(r.values))),
                "metadata": dict(r.metadata) if include_metadata else {},
            }
            for r in self.records.values()
        ]
        scored.sort(key=lambda m: m["score"], reverse=True)
        return scored[:top_k]

    def delete(self, ids):
        if self.fail_delete:
            raise self.fail_delete
        self.deleted.append(list(ids))
        for i in ids:
            self.records.pop(i, None)
        return {}

    def fetch_ids(self, ids):
        return {i for i in ids if i in self.records}


def rejected(status=500):
    return RemoteServiceError(f"HTTP {status}", status=status, body="nope")


def unreachable():
    return RemoteServiceError("connection refused")


@pytest.fixture
def config(tmp_path):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["store_path"] = str(tmp_path / "store.json")
    cfg["chroma_path"] = str(tmp_path / "chroma")
    cfg["hf_api_key"] = "hf_testkey_0123456789"
    cfg["pinecone_api_key"] = "pcsk_testkey_0123456789"
    cfg["pinecone"]["custom_host"] = "test-index.svc.pinecone.io"
    return cfg


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def kb(config, embedder, vector_store):
    return KnowledgeBase(
        config,
        embedder_factory=lambda cfg: embedder,
        store_factory=lambda cfg: vector_store,
    )
