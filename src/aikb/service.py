"""Knowledge entry service: capture -> embed -> persist, and query -> embed -> search.

The service builds its clients lazily. Initialization state is one of
Uninitialized, Initializing (with an event other callers wait on) or Ready
(holding the clients); a failed initialization drops back to Uninitialized so
the next call retries.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from .cache import LocalEntryCache
from .config import validate_config
from .embeddings.embedder import EmbedderBase, get_embedder
from .errors import RemoteServiceError, StorageError, ValidationError
from .logging_config import preview
from .models import CaptureContext, Entry, SearchMatch, VectorRecord, make_id, now_iso
from .storage import VectorStoreBase, get_vector_store

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 20


@dataclass
class Uninitialized:
    pass


@dataclass
class Initializing:
    done: threading.Event = field(default_factory=threading.Event)
    result: "Ready | None" = None
    error: BaseException | None = None


@dataclass
class Ready:
    embedder: EmbedderBase
    vector_store: VectorStoreBase
    healthy: bool = True


ServiceState = Uninitialized | Initializing | Ready


class KnowledgeService:
    """Composes the embedder and vector store with the local cache."""

    def __init__(
        self,
        config: dict[str, Any],
        cache: LocalEntryCache,
        embedder_factory: Callable[[dict[str, Any]], EmbedderBase] = get_embedder,
        store_factory: Callable[[dict[str, Any]], VectorStoreBase] = get_vector_store,
    ):
        self.config = config
        self.cache = cache
        self._embedder_factory = embedder_factory
        self._store_factory = store_factory
        self._lock = threading.Lock()
        self._state: ServiceState = Uninitialized()

    @property
    def state(self) -> ServiceState:
        return self._state

    def initialize(self) -> Ready:
        """Build and health-check the clients once; concurrent callers share the attempt."""
        with self._lock:
            state = self._state
            if isinstance(state, Ready):
                return state
            if isinstance(state, Initializing):
                pending, owner = state, False
            else:
                pending, owner = Initializing(), True
                self._state = pending

        if not owner:
            pending.done.wait()
            if pending.error is not None:
                raise pending.error
            return pending.result

        try:
            ready = self._build()
        except BaseException as e:
            pending.error = e
            with self._lock:
                self._state = Uninitialized()
            pending.done.set()
            logger.error("Failed to initialize knowledge service: %s", e)
            raise

        pending.result = ready
        with self._lock:
            self._state = ready
        pending.done.set()
        return ready

    def _build(self) -> Ready:
        logger.info("Initializing knowledge service...")
        validate_config(self.config)
        embedder = self._embedder_factory(self.config)
        vector_store = self._store_factory(self.config)
        healthy = embedder.health_check()
        if healthy:
            logger.info("Knowledge service initialized")
        else:
            logger.warning("Knowledge service initialized, but the embedding service did not answer the health check")
        return Ready(embedder, vector_store, healthy)

    # -- operations ------------------------------------------------------

    def embed_text(self, text: str) -> list[float]:
        return self.initialize().embedder.embed(text)

    def save_text(self, text: str, context: CaptureContext | None = None) -> str:
        """Embed and store captured text. Returns the new entry id."""
        if not text or not text.strip():
            raise ValidationError("No content to save: no text provided")
        ready = self.initialize()
        ctx = context or CaptureContext()

        embedding_text = f"{text}\n{ctx.title}\n{' '.join(ctx.headings)}"
        entry = Entry(
            id=make_id("text"),
            user_id=self.cache.get_user_id(),
            type="text",
            content=text,
            url=ctx.url,
            title=ctx.title,
            page_context=dict(ctx.page_context),
            timestamp=now_iso(),
        )
        logger.info("Saving text %r from %s", preview(text), ctx.url or "unknown page")
        return self._persist(ready, entry, embedding_text)

    def save_image(self, image_url: str, context: CaptureContext | None = None) -> str:
        """Store an image by its text signals (alt text, title, headings)."""
        if not image_url or not image_url.strip():
            raise ValidationError("No content to save: no image URL provided")
        ready = self.initialize()
        ctx = context or CaptureContext()

        embedding_text = f"{ctx.alt_text} {ctx.title} {' '.join(ctx.headings)}"
        entry = Entry(
            id=make_id("image"),
            user_id=self.cache.get_user_id(),
            type="image",
            image_url=image_url,
            alt_text=ctx.alt_text,
            url=ctx.url,
            title=ctx.title,
            page_context=dict(ctx.page_context),
            timestamp=now_iso(),
        )
        logger.info("Saving image %s from %s", image_url, ctx.url or "unknown page")
        return self._persist(ready, entry, embedding_text)

    def _persist(self, ready: Ready, entry: Entry, embedding_text: str) -> str:
        entry.ai_id = entry.id
        vector = ready.embedder.embed(embedding_text)
        record = VectorRecord(id=entry.id, values=vector, metadata=entry.remote_metadata())

        self.cache.add_pending("upsert", entry.id, entry)
        try:
            ready.vector_store.upsert([record])
        except RemoteServiceError as e:
            if e.reachable:
                # Rejected outright: nothing reached the index
                self._drop_pending("upsert", entry.id)
            else:
                logger.warning("Upsert of %s may or may not have landed; left for reconcile", entry.id)
            raise

        try:
            with self.cache.store.transaction():
                self.cache.save(entry)
                self.cache.clear_pending("upsert", entry.id)
        except StorageError:
            logger.error(
                "Partial failure: %s is in the vector index but not the local cache; "
                "run reconcile to restore it", entry.id,
            )
            raise
        logger.info("Saved %s entry %s", entry.type, entry.id)
        return entry.id

    def _drop_pending(self, op: str, entry_id: str) -> None:
        try:
            self.cache.clear_pending(op, entry_id)
        except StorageError as e:
            logger.warning("Could not clear pending %s for %s: %s", op, entry_id, e)

    def search(self, query: str, top_k: int = DEFAULT_TOP_K) -> list[SearchMatch]:
        """Semantic search. A failing index query yields no results; embedding errors propagate."""
        if not query or not query.strip():
            raise ValidationError("Search query is empty")
        ready = self.initialize()
        vector = ready.embedder.embed(query)
        logger.debug("Query embedding length: %d", len(vector))

        try:
            raw = ready.vector_store.query(vector, top_k=top_k, include_metadata=True)
        except RemoteServiceError as e:
            logger.warning("Vector index query failed, returning no matches: %s", e)
            return []

        matches = [SearchMatch.from_remote(m) for m in raw]
        logger.info("Search %r: %d match(es)", preview(query), len(matches))
        return matches

    def delete(self, entry_id: str) -> None:
        """Remove the entry's vector from the index. The local copy is untouched."""
        ready = self.initialize()
        ready.vector_store.delete([entry_id])
        logger.info("Deleted vector %s", entry_id)

    def fetch_ids(self, ids: list[str]) -> set[str]:
        if not ids:
            return set()
        return self.initialize().vector_store.fetch_ids(ids)

    def health_check(self) -> bool:
        try:
            ready = self.initialize()
        except Exception as e:
            logger.warning("Health check could not initialize: %s", e)
            return False
        return ready.embedder.health_check()
