"""Heartbeat: summarize recent activity and the health of both stores."""

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from ..cache import parse_timestamp
from ..config import redact
from ..errors import ConfigurationError
from ..models import Entry

if TYPE_CHECKING:
    from ..knowledge_base import KnowledgeBase


def get_recent_entries(kb: "KnowledgeBase", days: int = 7) -> list[Entry]:
    """Entries captured in the last N days, newest first."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    recent = [e for e in kb.cache.get_all(kb.scoped_user_id()) if parse_timestamp(e.timestamp) >= cutoff]
    recent.sort(key=lambda e: parse_timestamp(e.timestamp), reverse=True)
    return recent


def kb_status(kb: "KnowledgeBase") -> dict[str, Any]:
    """Configuration, service health and cache statistics in one dict."""
    cfg = kb.config
    status: dict[str, Any] = {
        "user_id": kb.scoped_user_id(),
        "store_path": cfg.get("store_path"),
        "embedding_backend": cfg.get("embedding_backend"),
        "vector_backend": cfg.get("vector_backend"),
        "config": redact(cfg),
        "configured": True,
        "healthy": False,
        "error": None,
    }

    try:
        ready = kb.service.initialize()
        status["healthy"] = ready.embedder.health_check()
    except ConfigurationError as e:
        status["configured"] = False
        status["error"] = str(e)

    status.update(kb.cache.stats(kb.scoped_user_id()))
    status["entries_last_7_days"] = len(get_recent_entries(kb, days=7))
    status["pending_writes"] = len(kb.cache.pending())
    return status
