"""ChromaDB vector store backend for running without a hosted index."""

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import chromadb

from ..errors import RemoteServiceError
from ..models import VectorRecord
from .base import VectorStoreBase

logger = logging.getLogger(__name__)

COLLECTION_NAME = "entries"

# Names the keys whose values were JSON-encoded on write
JSON_KEYS_FIELD = "_json_keys"


def _flatten_metadata(meta: dict[str, Any]) -> dict[str, Any]:
    """Chroma metadata values must be scalars; lists are stored as JSON strings."""
    flat: dict[str, Any] = {}
    encoded = []
    for k, v in meta.items():
        if isinstance(v, (list, dict)):
            flat[k] = json.dumps(v)
            encoded.append(k)
        elif v is None:
            flat[k] = ""
        else:
            flat[k] = v
    if encoded:
        flat[JSON_KEYS_FIELD] = ",".join(encoded)
    return flat


def _restore_metadata(meta: dict[str, Any] | None) -> dict[str, Any]:
    out = dict(meta or {})
    encoded = out.pop(JSON_KEYS_FIELD, "")
    for k in filter(None, encoded.split(",")):
        if isinstance(out.get(k), str):
            out[k] = json.loads(out[k])
    return out


@contextmanager
def _chroma_errors(op: str) -> Iterator[None]:
    try:
        yield
    except Exception as e:
        logger.error("Chroma %s failed: %s", op, e)
        raise RemoteServiceError(f"Chroma {op} failed: {e}", body=str(e)) from e


class ChromaVectorStore(VectorStoreBase):
    """ChromaDB-backed persistent vector store."""

    def __init__(self, chroma_path: str, collection_name: str = COLLECTION_NAME):
        self.chroma_path = Path(chroma_path)
        self.chroma_path.mkdir(parents=True, exist_ok=True)
        self.client = chromadb.PersistentClient(path=str(self.chroma_path))
        self.collection_name = collection_name

    @property
    def collection(self) -> chromadb.Collection:
        return self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def upsert(self, records: list[VectorRecord]) -> dict[str, Any]:
        if not records:
            return {"upsertedCount": 0}
        with _chroma_errors("upsert"):
            self.collection.upsert(
                ids=[r.id for r in records],
                embeddings=[list(r.values) for r in records],
                metadatas=[_flatten_metadata(r.metadata) for r in records],
            )
        return {"upsertedCount": len(records)}

    def query(
        self,
        vector: list[float],
        top_k: int = 10,
        include_metadata: bool = True,
    ) -> list[dict[str, Any]]:
        with _chroma_errors("query"):
            collection = self.collection
            count = collection.count()
            if count == 0:
                return []
            results = collection.query(
                query_embeddings=[list(vector)],
                n_results=min(top_k, count),
                include=["metadatas", "distances"],
            )

        matches = []
        if results and results["ids"] and results["ids"][0]:
            for i, doc_id in enumerate(results["ids"][0]):
                meta = results["metadatas"][0][i] if include_metadata and results["metadatas"] else {}
                distance = results["distances"][0][i] if results["distances"] else 1.0
                matches.append({
                    "id": doc_id,
                    "score": 1.0 - float(distance),
                    "metadata": _restore_metadata(meta),
                })
        return matches

    def delete(self, ids: list[str]) -> dict[str, Any]:
        if ids:
            with _chroma_errors("delete"):
                self.collection.delete(ids=list(ids))
        return {}

    def fetch_ids(self, ids: list[str]) -> set[str]:
        if not ids:
            return set()
        with _chroma_errors("fetch"):
            result = self.collection.get(ids=list(ids), include=[])
        return set(result["ids"])

    def count(self) -> int:
        return self.collection.count()
