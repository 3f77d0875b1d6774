"""Data models used throughout aikb."""

import random
import string
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

ENTRY_TYPES = ("text", "image")

# Remote metadata limits
MAX_CONTENT_CHARS = 500
MAX_HEADINGS = 15


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_id(prefix: str, suffix_len: int = 7) -> str:
    """Build an id like 'text_1718000000000_k3j9x2a'."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(random.choices(alphabet, k=suffix_len))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def headings_from(page_context: dict[str, Any] | None) -> list[str]:
    """Nearby headings from a page context bag, falling back to page headings."""
    ctx = page_context or {}
    headings = ctx.get("nearbyHeadings") or ctx.get("headings") or []
    if isinstance(headings, str):
        return [headings]
    return [str(h) for h in headings]


@dataclass
class CaptureContext:
    """Where a capture came from."""
    url: str = ""
    title: str = ""
    page_context: dict[str, Any] = field(default_factory=dict)
    alt_text: str = ""

    @property
    def headings(self) -> list[str]:
        return headings_from(self.page_context)


@dataclass
class Entry:
    """A single captured piece of knowledge (text or image)."""
    id: str = ""
    user_id: str = ""
    type: str = "text"
    content: str = ""
    image_url: str = ""
    alt_text: str = ""
    url: str = ""
    title: str = ""
    page_context: dict[str, Any] = field(default_factory=dict)
    category: str = ""
    timestamp: str = ""
    ai_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_wire(self) -> dict[str, Any]:
        """camelCase shape the browser extension expects."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "content": self.content,
            "imageUrl": self.image_url,
            "alt": self.alt_text,
            "url": self.url,
            "title": self.title,
            "pageContext": self.page_context,
            "category": self.category,
            "timestamp": self.timestamp,
            "aiId": self.ai_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entry":
        """Build an Entry from a stored dict, tolerating legacy keys."""
        return cls(
            id=data.get("id") or "",
            user_id=data.get("user_id") or data.get("userId") or "",
            type=data.get("type") or "text",
            content=data.get("content") or data.get("text") or "",
            image_url=data.get("image_url") or data.get("imageUrl") or "",
            alt_text=data.get("alt_text") or data.get("alt") or "",
            url=data.get("url") or "",
            title=data.get("title") or "",
            page_context=dict(data.get("page_context") or data.get("pageContext") or {}),
            category=data.get("category") or "",
            timestamp=data.get("timestamp") or "",
            ai_id=data.get("ai_id") or data.get("aiId") or "",
        )

    @property
    def headings(self) -> list[str]:
        return headings_from(self.page_context)

    def searchable_text(self) -> str:
        """Text matched by local substring search."""
        nearby = (self.page_context or {}).get("nearbyHeadings") or []
        if isinstance(nearby, str):
            nearby = [nearby]
        return " ".join([self.content, self.title, self.category, " ".join(str(h) for h in nearby)])

    def remote_metadata(self) -> dict[str, Any]:
        """Flattened, size-constrained metadata stored with the vector."""
        ctx = self.page_context or {}
        snippet = ctx.get("nearbyText") or ctx.get("selectedText") or ""
        meta: dict[str, Any] = {
            "type": self.type,
            "url": self.url,
            "title": self.title,
            "headings": self.headings[:MAX_HEADINGS],
            "category": self.category,
            "timestamp": self.timestamp,
        }
        if self.type == "image":
            meta["imageUrl"] = self.image_url
            meta["alt"] = self.alt_text
        else:
            meta["content"] = self.content[:MAX_CONTENT_CHARS]
            meta["metaDescription"] = ctx.get("metaDescription") or ""
            meta["contextSnippet"] = str(snippet)[:MAX_CONTENT_CHARS]
        return meta


@dataclass
class VectorRecord:
    """A vector with its id and flattened metadata, as stored remotely."""
    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "values": list(self.values), "metadata": self.metadata}


@dataclass
class SearchMatch:
    """A semantic search hit with canonical metadata."""
    id: str
    score: float
    metadata: dict[str, Any]

    @classmethod
    def from_remote(cls, match: dict[str, Any]) -> "SearchMatch":
        meta = match.get("metadata") or {}
        headings = meta.get("headings") or []
        if isinstance(headings, str):
            headings = [headings]
        canonical = {
            "type": meta.get("type") or "",
            "content": meta.get("content") or "",
            "imageUrl": meta.get("imageUrl") or "",
            "alt": meta.get("alt") or "",
            "url": meta.get("url") or "",
            "title": meta.get("title") or "",
            "headings": list(headings),
            "metaDescription": meta.get("metaDescription") or "",
            "contextSnippet": meta.get("contextSnippet") or "",
            "category": meta.get("category") or "",
            "timestamp": meta.get("timestamp") or "",
        }
        return cls(id=str(match.get("id", "")), score=float(match.get("score") or 0.0), metadata=canonical)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReconcileReport:
    """Result of comparing the local cache with the remote index."""
    restored: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    deletes_replayed: list[str] = field(default_factory=list)
    still_pending: list[str] = field(default_factory=list)
    local_only: list[str] = field(default_factory=list)
    checked: int = 0
    error: str = ""

    @property
    def consistent(self) -> bool:
        return not (self.still_pending or self.local_only or self.error)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["consistent"] = self.consistent
        return data
