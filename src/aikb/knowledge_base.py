"""The application context: one object owning the cache, the service and the user id.

Construct a KnowledgeBase once at process start and pass it to whatever needs
it (message dispatcher, native host, CLI commands).
"""

import logging
from pathlib import Path
from typing import Any, Callable

from .cache import KeyValueStore, LocalEntryCache
from .embeddings.embedder import EmbedderBase, get_embedder
from .errors import StorageError
from .models import CaptureContext, Entry, ReconcileReport, SearchMatch
from .service import DEFAULT_TOP_K, KnowledgeService
from .storage import VectorStoreBase, get_vector_store

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """Entry points for every knowledge-base operation."""

    def __init__(
        self,
        config: dict[str, Any],
        embedder_factory: Callable[[dict[str, Any]], EmbedderBase] = get_embedder,
        store_factory: Callable[[dict[str, Any]], VectorStoreBase] = get_vector_store,
    ):
        self.config = config
        self.store = KeyValueStore(Path(config["store_path"]))
        self.cache = LocalEntryCache(self.store)
        self.service = KnowledgeService(
            config, self.cache,
            embedder_factory=embedder_factory,
            store_factory=store_factory,
        )
        self._user_id: str | None = None

    @property
    def user_id(self) -> str:
        if self._user_id is None:
            self._user_id = self.cache.get_user_id()
        return self._user_id

    def startup(self) -> int:
        """Claim legacy entries for this installation. Returns how many were migrated."""
        try:
            return self.cache.migrate_entries(self.user_id)
        except StorageError as e:
            logger.error("Failed to migrate existing entries: %s", e)
            return 0

    # -- capture ---------------------------------------------------------

    def save_text(
        self,
        text: str,
        page_context: dict[str, Any] | None = None,
        url: str = "",
        title: str = "",
    ) -> Entry:
        ctx = CaptureContext(url=url or "", title=title or "", page_context=dict(page_context or {}))
        entry_id = self.service.save_text(text, ctx)
        return self.cache.get(entry_id) or Entry(id=entry_id, ai_id=entry_id, content=text)

    def save_image(
        self,
        image_url: str,
        alt_text: str = "",
        page_context: dict[str, Any] | None = None,
        url: str = "",
        title: str = "",
    ) -> Entry:
        ctx = CaptureContext(
            url=url or "",
            title=title or "",
            page_context=dict(page_context or {}),
            alt_text=alt_text or "",
        )
        entry_id = self.service.save_image(image_url, ctx)
        return self.cache.get(entry_id) or Entry(id=entry_id, ai_id=entry_id, type="image", image_url=image_url)

    # -- retrieval -------------------------------------------------------

    def search(self, query: str, top_k: int | None = None) -> list[SearchMatch]:
        return self.service.search(query, top_k=top_k or self.config.get("search_top_k", DEFAULT_TOP_K))

    def scoped_user_id(self) -> str | None:
        """The user id, or None when the local store cannot be read."""
        try:
            return self.user_id
        except StorageError as e:
            logger.warning("User id unavailable, returning no entries: %s", e)
            return None

    def list_entries(self) -> list[Entry]:
        user_id = self.scoped_user_id()
        return self.cache.get_all(user_id) if user_id else []

    def recent(self, limit: int = 10) -> list[Entry]:
        user_id = self.scoped_user_id()
        return self.cache.get_recent(limit, user_id) if user_id else []

    def search_local(self, query: str) -> list[Entry]:
        user_id = self.scoped_user_id()
        return self.cache.search_local(query, user_id) if user_id else []

    # -- edits -----------------------------------------------------------

    def categorize(self, entry_id: str, category: str) -> bool:
        return self.cache.categorize(entry_id, category)

    def delete_entry(self, entry_id: str) -> None:
        """Delete an entry from both the vector index and the local cache.

        The index goes first; if it fails the local copy is kept so the entry
        stays visible and can be deleted again.
        """
        entry = self.cache.get(entry_id)
        remote_id = (entry.ai_id if entry else "") or entry_id

        self.cache.add_pending("delete", entry_id, remote_id=remote_id)
        try:
            self.service.delete(remote_id)
        except Exception:
            self._clear_pending_quietly("delete", entry_id)
            raise

        try:
            with self.store.transaction():
                self.cache.delete(entry_id)
                self.cache.clear_pending("delete", entry_id)
        except StorageError:
            logger.error(
                "Partial failure: %s was removed from the vector index but not the local cache; "
                "run reconcile to finish the delete", entry_id,
            )
            raise

    def _clear_pending_quietly(self, op: str, entry_id: str) -> None:
        try:
            self.cache.clear_pending(op, entry_id)
        except StorageError as e:
            logger.warning("Could not clear pending %s for %s: %s", op, entry_id, e)

    # -- maintenance -----------------------------------------------------

    def reconcile(self) -> ReconcileReport:
        from .maintenance.reconcile import run_reconcile
        return run_reconcile(self)

    def status(self) -> dict[str, Any]:
        from .maintenance.heartbeat import kb_status
        return kb_status(self)
