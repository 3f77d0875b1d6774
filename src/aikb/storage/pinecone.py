"""Pinecone vector store backend over the data-plane REST API.

Plain request/response: no buffering, no retries. Any non-2xx answer becomes a
RemoteServiceError carrying the status code and body.
"""

import logging
from typing import Any

import httpx

from ..errors import RemoteServiceError
from ..models import VectorRecord
from .base import VectorStoreBase

logger = logging.getLogger(__name__)

# Pinecone caps fetch requests by id count
FETCH_BATCH = 100


class PineconeVectorStore(VectorStoreBase):
    """Pinecone index accessed with an API key."""

    def __init__(
        self,
        api_key: str,
        host: str,
        api_version: str = "2025-04",
        timeout: float | None = 30.0,
        client: httpx.Client | None = None,
    ):
        self.host = host.removeprefix("https://").rstrip("/")
        self.base_url = f"https://{self.host}"
        self._headers = {
            "Api-Key": api_key,
            "Content-Type": "application/json",
            "X-Pinecone-Api-Version": api_version,
        }
        self._client = client or httpx.Client(timeout=timeout)

    def _request(self, method: str, path: str, op: str, **kwargs) -> dict[str, Any]:
        try:
            resp = self._client.request(method, f"{self.base_url}{path}", headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"Pinecone {op} request failed: {e}") from e

        if not resp.is_success:
            logger.error("Pinecone %s error body: %s", op, resp.text[:500])
            raise RemoteServiceError(
                f"Pinecone {op} failed {resp.status_code}",
                status=resp.status_code,
                body=resp.text,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    def upsert(self, records: list[VectorRecord]) -> dict[str, Any]:
        if not records:
            return {"upsertedCount": 0}
        return self._request(
            "POST", "/vectors/upsert", "upsert",
            json={"vectors": [r.to_dict() for r in records]},
        )

    def query(
        self,
        vector: list[float],
        top_k: int = 10,
        include_metadata: bool = True,
    ) -> list[dict[str, Any]]:
        data = self._request(
            "POST", "/query", "query",
            json={"vector": list(vector), "topK": top_k, "includeMetadata": include_metadata},
        )
        return [
            {"id": m.get("id"), "score": m.get("score"), "metadata": m.get("metadata") or {}}
            for m in data.get("matches") or []
        ]

    def delete(self, ids: list[str]) -> dict[str, Any]:
        if not ids:
            return {}
        return self._request("POST", "/vectors/delete", "delete", json={"ids": list(ids)})

    def fetch_ids(self, ids: list[str]) -> set[str]:
        found: set[str] = set()
        for start in range(0, len(ids), FETCH_BATCH):
            batch = ids[start:start + FETCH_BATCH]
            data = self._request("GET", "/vectors/fetch", "fetch", params={"ids": batch})
            found.update((data.get("vectors") or {}).keys())
        return found

    def close(self) -> None:
        self._client.close()
