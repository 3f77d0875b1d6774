"""Abstract base class for vector stores and factory function."""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..errors import ConfigurationError
from ..models import VectorRecord


class VectorStoreBase(ABC):
    """Common interface for vector storage backends."""

    @abstractmethod
    def upsert(self, records: list[VectorRecord]) -> dict[str, Any]:
        """Insert or fully replace records by id."""

    @abstractmethod
    def query(
        self,
        vector: list[float],
        top_k: int = 10,
        include_metadata: bool = True,
    ) -> list[dict[str, Any]]:
        """Nearest records, best first. Each match is a dict with: id, score, metadata.
        An empty index returns an empty list."""

    @abstractmethod
    def delete(self, ids: list[str]) -> dict[str, Any]:
        """Delete records by id. Unknown ids are ignored."""

    @abstractmethod
    def fetch_ids(self, ids: list[str]) -> set[str]:
        """Return the subset of ids that exist in the store."""


def get_vector_store(config: dict[str, Any], client: httpx.Client | None = None) -> VectorStoreBase:
    """Factory: return the right vector store based on config."""
    backend = config.get("vector_backend", "pinecone")

    if backend == "pinecone":
        from .pinecone import PineconeVectorStore
        pc_cfg = config.get("pinecone", {})
        return PineconeVectorStore(
            api_key=config.get("pinecone_api_key", ""),
            host=pinecone_host(pc_cfg),
            api_version=pc_cfg.get("api_version", "2025-04"),
            timeout=config.get("http_timeout", 30.0),
            client=client,
        )
    elif backend == "chromadb":
        from .chromadb import ChromaVectorStore
        return ChromaVectorStore(config["chroma_path"])
    else:
        raise ConfigurationError(f"Unknown vector_backend: {backend}")


def pinecone_host(pc_cfg: dict[str, Any]) -> str:
    """Index host: the custom host if set, otherwise derived from index/project/environment."""
    if pc_cfg.get("custom_host"):
        return pc_cfg["custom_host"]
    return f"{pc_cfg.get('index_name')}-{pc_cfg.get('project_id')}.svc.{pc_cfg.get('environment')}.pinecone.io"
