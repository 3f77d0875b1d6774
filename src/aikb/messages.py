"""Message dispatcher for requests coming from the browser extension.

Every request is a dict with a ``type`` key. Every answer is an envelope:
``{"success": True, ...}`` or ``{"success": False, "error": "<message>"}``.
"""

import logging
from typing import Any, Callable, Protocol

from .errors import KnowledgeBaseError, user_message
from .knowledge_base import KnowledgeBase
from .logging_config import preview

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 10


class Notifier(Protocol):
    def __call__(self, title: str, message: str) -> None: ...


def log_notifier(title: str, message: str) -> None:
    """Default notifier: write the notification to the log."""
    logger.info("[%s] %s", title, message)


def _page_identity(request: dict[str, Any], page_context: dict[str, Any]) -> tuple[str, str]:
    tab = request.get("tab") or {}
    url = request.get("url") or tab.get("url") or page_context.get("pageUrl") or ""
    title = request.get("title") or tab.get("title") or page_context.get("pageTitle") or ""
    return url, title


def _get_all_entries(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    entries = kb.list_entries()
    return {"success": True, "entries": [e.to_wire() for e in entries]}


def _get_recent_entries(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    limit = int(request.get("limit") or DEFAULT_RECENT_LIMIT)
    entries = kb.recent(limit)
    return {"success": True, "entries": [e.to_wire() for e in entries]}


def _search_knowledge_base(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    query = request.get("query") or ""
    top_k = request.get("topK")
    results = kb.search(query, top_k=int(top_k) if top_k else None)
    return {"success": True, "results": [m.to_dict() for m in results], "error": None}


def _search_local(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    entries = kb.search_local(request.get("query") or "")
    return {"success": True, "entries": [e.to_wire() for e in entries]}


def _delete_entry(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    kb.delete_entry(request.get("entryId") or "")
    return {"success": True}


def _categorize_entry(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    updated = kb.categorize(request.get("entryId") or "", request.get("category") or "")
    return {"success": True, "updated": updated}


def _save_highlighted_text(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    text = request.get("text") or request.get("selectedText") or ""
    page_context = request.get("pageContext") or request.get("context") or {}
    url, title = _page_identity(request, page_context)
    entry = kb.save_text(text, page_context=page_context, url=url, title=title)
    notify("Text Saved", f'Saved: "{preview(text)}"')
    return {"success": True, "id": entry.id}


def _save_image(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    page_context = request.get("pageContext") or {}
    url, title = _page_identity(request, page_context)
    entry = kb.save_image(
        request.get("imageUrl") or "",
        alt_text=request.get("altText") or "",
        page_context=page_context,
        url=url,
        title=title,
    )
    notify("Image Saved", "Image saved to knowledge base")
    return {"success": True, "id": entry.id}


def _get_status(kb: KnowledgeBase, request: dict[str, Any], notify: Notifier) -> dict[str, Any]:
    status = kb.status()
    status.pop("config", None)
    return {"success": True, "status": status}


Handler = Callable[[KnowledgeBase, dict[str, Any], Notifier], dict[str, Any]]

HANDLERS: dict[str, Handler] = {
    "GET_ALL_ENTRIES": _get_all_entries,
    "GET_RECENT_ENTRIES": _get_recent_entries,
    "SEARCH_KNOWLEDGE_BASE": _search_knowledge_base,
    "SEARCH_LOCAL": _search_local,
    "DELETE_ENTRY": _delete_entry,
    "CATEGORIZE_ENTRY": _categorize_entry,
    "SAVE_HIGHLIGHTED_TEXT": _save_highlighted_text,
    "SAVE_IMAGE": _save_image,
    "GET_STATUS": _get_status,
}

# Failures of these are shown to the user
NOTIFY_ON_FAILURE = {
    "SAVE_HIGHLIGHTED_TEXT": "Save Failed",
    "SAVE_IMAGE": "Save Failed",
    "DELETE_ENTRY": "Delete Failed",
    "CATEGORIZE_ENTRY": "Categorize Failed",
}

# Empty collections sent back with the error
FAILURE_DEFAULTS: dict[str, dict[str, Any]] = {
    "GET_ALL_ENTRIES": {"entries": []},
    "GET_RECENT_ENTRIES": {"entries": []},
    "SEARCH_LOCAL": {"entries": []},
    "SEARCH_KNOWLEDGE_BASE": {"results": []},
}


def dispatch(kb: KnowledgeBase, request: Any, notify: Notifier = log_notifier) -> dict[str, Any]:
    """Answer one request from the extension."""
    if not isinstance(request, dict):
        return {"success": False, "error": "Request must be a JSON object"}

    msg_type = request.get("type")
    handler = HANDLERS.get(msg_type)
    if handler is None:
        logger.warning("Unknown message type: %s", msg_type)
        return {"success": False, "error": f"Unknown message type: {msg_type}"}

    logger.debug("Handling %s", msg_type)
    try:
        return handler(kb, request, notify)
    except KnowledgeBaseError as e:
        logger.error("%s failed: %s", msg_type, e)
        message = user_message(e)
    except Exception as e:
        logger.exception("%s failed unexpectedly", msg_type)
        message = str(e) or e.__class__.__name__

    if msg_type in NOTIFY_ON_FAILURE:
        notify(NOTIFY_ON_FAILURE[msg_type], message)
    return {"success": False, "error": message, **FAILURE_DEFAULTS.get(msg_type, {})}
