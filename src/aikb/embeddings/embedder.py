"""Text embedding via a remote inference endpoint or a local model."""

import logging
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable

import httpx
import numpy as np

from ..errors import ConfigurationError, RemoteServiceError, UnexpectedFormat

logger = logging.getLogger(__name__)

HEALTH_CHECK_TEXT = "health check"


@dataclass
class DecodedEmbedding:
    """An embedding response after shape detection."""
    kind: str  # "flat", "tokens", "wrapped"
    vector: list[float]


def _is_number(x: Any) -> bool:
    return isinstance(x, Real) and not isinstance(x, bool)


def _is_vector(x: Any) -> bool:
    return isinstance(x, list) and all(_is_number(v) for v in x)


def _decode_flat(data: Any) -> DecodedEmbedding | None:
    if isinstance(data, list) and data and _is_vector(data):
        return DecodedEmbedding("flat", [float(v) for v in data])
    return None


def _decode_tokens(data: Any) -> DecodedEmbedding | None:
    if isinstance(data, list) and data and all(_is_vector(tok) for tok in data):
        return DecodedEmbedding("tokens", mean_pool(data))
    return None


def _decode_wrapped(data: Any) -> DecodedEmbedding | None:
    # {"embedding": [...]} or [{"embedding": [...]}]
    if isinstance(data, list) and data and isinstance(data[0], dict):
        data = data[0]
    if isinstance(data, dict) and _is_vector(data.get("embedding")):
        return DecodedEmbedding("wrapped", [float(v) for v in data["embedding"]])
    return None


DECODERS: tuple[Callable[[Any], DecodedEmbedding | None], ...] = (
    _decode_flat,
    _decode_tokens,
    _decode_wrapped,
)


def decode_embedding(data: Any) -> DecodedEmbedding:
    """Try each known response shape in turn.

    Raises UnexpectedFormat when none match.
    """
    for decoder in DECODERS:
        try:
            decoded = decoder(data)
        except ValueError as e:
            # ragged token matrix
            raise UnexpectedFormat(f"Unexpected embedding format: {e}") from e
        if decoded is not None:
            return decoded
    raise UnexpectedFormat(f"Unexpected embedding format: {type(data).__name__}")


def mean_pool(token_embeddings: list[list[float]]) -> list[float]:
    """Average per-token vectors into one vector, per dimension."""
    if not token_embeddings:
        return []
    matrix = np.asarray(token_embeddings, dtype=np.float64)
    if matrix.ndim != 2:
        raise ValueError(f"token embeddings must be 2-D, got {matrix.ndim}-D")
    return matrix.mean(axis=0).tolist()


def l2_normalize(vector: list[float]) -> list[float]:
    """Scale to unit Euclidean norm. A zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr)) or 1.0
    return (arr / norm).tolist()


class EmbedderBase:
    """Common behaviour for embedding backends."""

    dimension: int | None = None

    def embed(self, text: str) -> list[float]:
        raise NotImplementedError

    def _check_dimension(self, vector: list[float]) -> None:
        if self.dimension and len(vector) != self.dimension:
            logger.warning(
                "Embedding dimension %d != expected %d; storing anyway",
                len(vector), self.dimension,
            )

    def health_check(self) -> bool:
        """True if the backend can embed a short test string."""
        try:
            return len(self.embed(HEALTH_CHECK_TEXT)) > 0
        except Exception as e:
            logger.warning("Embedding health check failed: %s", e)
            return False


class RemoteEmbedder(EmbedderBase):
    """Embeds text through the Hugging Face Inference API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api-inference.huggingface.co",
        dimension: int | None = None,
        timeout: float | None = 30.0,
        client: httpx.Client | None = None,
    ):
        self.model = model
        self.url = f"{base_url.rstrip('/')}/models/{model}"
        self.dimension = dimension
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def embed(self, text: str) -> list[float]:
        payload = {"inputs": text, "options": {"wait_for_model": True}}
        try:
            resp = self._client.post(self.url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"Embedding request failed: {e}") from e

        if not resp.is_success:
            logger.error("Embedding service error %s: %s", resp.status_code, resp.text[:200])
            raise RemoteServiceError(
                f"Embedding service error {resp.status_code}",
                status=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise UnexpectedFormat("Embedding response is not JSON") from e

        decoded = decode_embedding(data)
        logger.debug("Decoded %s embedding of length %d", decoded.kind, len(decoded.vector))
        self._check_dimension(decoded.vector)
        return l2_normalize(decoded.vector)

    def close(self) -> None:
        self._client.close()


class LocalEmbedder(EmbedderBase):
    """Embeds text with a local sentence-transformers model."""

    def __init__(self, model_name: str, dimension: int | None = None):
        self.model_name = model_name
        self.dimension = dimension
        self._model = None

    @property
    def model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> list[float]:
        vector = np.asarray(self.model.encode(text), dtype=np.float64).tolist()
        self._check_dimension(vector)
        return l2_normalize(vector)


def get_embedder(config: dict[str, Any], client: httpx.Client | None = None) -> EmbedderBase:
    """Factory: return the embedding backend named in config."""
    backend = config.get("embedding_backend", "remote")
    hf_cfg = config.get("huggingface", {})
    dimension = config.get("pinecone", {}).get("dimension")

    if backend == "remote":
        return RemoteEmbedder(
            api_key=config.get("hf_api_key", ""),
            model=hf_cfg.get("model", "BAAI/bge-large-en-v1.5"),
            base_url=hf_cfg.get("base_url", "https://api-inference.huggingface.co"),
            dimension=dimension,
            timeout=config.get("http_timeout", 30.0),
            client=client,
        )
    elif backend == "local":
        return LocalEmbedder(hf_cfg.get("local_model", "BAAI/bge-large-en-v1.5"), dimension=dimension)
    else:
        raise ConfigurationError(f"Unknown embedding_backend: {backend}")
