"""Local entry cache: a JSON key-value file mirroring every saved entry.

The file holds four top-level keys:

    userId          installation identity, created lazily
    entries         list of Entry dicts, append-only apart from category edits and deletes
    kb_categories   reserved, preserved as-is
    pending_writes  cross-store writes that have started but not finished

Every read-modify-write happens inside ``KeyValueStore.transaction()``, which
holds a thread lock and an exclusive file lock for the whole cycle, so two
concurrent saves can never overwrite each other's append.
"""

import json
import logging
import os
import random
import string
import tempfile
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import portalocker

from .errors import StorageError
from .models import Entry, make_id, now_iso

logger = logging.getLogger(__name__)

USER_ID_KEY = "userId"
ENTRIES_KEY = "entries"
CATEGORIES_KEY = "kb_categories"
PENDING_KEY = "pending_writes"

LOCK_TIMEOUT = 10.0


def _new_user_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"user_{int(time.time() * 1000)}_{suffix}"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; unparseable values sort last."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class KeyValueStore:
    """A JSON object on disk with serialized, atomic read-modify-write."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock_path = self.path.with_name(self.path.name + ".lock")
        self._lock = threading.RLock()
        self._depth = 0
        self._current: dict[str, Any] = {}

    def read(self) -> dict[str, Any]:
        """Load the whole object. Raises StorageError if the file is unreadable."""
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not hold a JSON object")
        return data

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            # Inside a transaction, see its uncommitted changes
            data = self._current if self._depth else self.read()
            return data.get(key, default)

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Could not write {self.path}: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[dict[str, Any]]:
        """Yield the stored object for mutation; write it back if the block succeeds.

        Nested transactions in the same thread share the outer one's locks and
        write once, when the outermost block exits.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self._current
                finally:
                    self._depth -= 1
                return

            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                file_lock = portalocker.Lock(str(self._lock_path), mode="a", timeout=LOCK_TIMEOUT)
                file_lock.acquire()
            except (OSError, portalocker.exceptions.LockException) as e:
                raise StorageError(f"Could not lock {self.path}: {e}") from e

            try:
                self._current = self.read()
                self._depth = 1
                try:
                    yield self._current
                finally:
                    self._depth = 0
                self._write(self._current)
            finally:
                self._current = {}
                file_lock.release()


class LocalEntryCache:
    """Denormalized mirror of saved entries, scoped by user id."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    # -- identity --------------------------------------------------------

    def get_user_id(self) -> str:
        """The installation's user id, created and persisted on first use."""
        try:
            existing = self.store.get(USER_ID_KEY)
        except StorageError as e:
            logger.warning("Could not read user id, will try to recreate: %s", e)
            existing = None
        if existing:
            return existing
        with self.store.transaction() as data:
            if not data.get(USER_ID_KEY):
                data[USER_ID_KEY] = _new_user_id()
                logger.info("Created user id %s", data[USER_ID_KEY])
            return data[USER_ID_KEY]

    # -- reads (best effort) ---------------------------------------------

    def _load_entries(self) -> list[Entry]:
        try:
            raw = self.store.get(ENTRIES_KEY, []) or []
        except StorageError as e:
            logger.warning("Entry read failed, returning empty list: %s", e)
            return []
        return [Entry.from_dict(d) for d in raw if isinstance(d, dict)]

    def get_all(self, user_id: str | None = None) -> list[Entry]:
        """All entries, or only those owned by user_id when given."""
        entries = self._load_entries()
        if not user_id:
            return entries
        return [e for e in entries if e.user_id == user_id]

    def get(self, entry_id: str) -> Entry | None:
        for entry in self._load_entries():
            if entry.id == entry_id:
                return entry
        return None

    def get_recent(self, limit: int = 10, user_id: str | None = None) -> list[Entry]:
        """Newest first by timestamp, truncated to limit."""
        entries = self.get_all(user_id)
        entries.sort(key=lambda e: parse_timestamp(e.timestamp), reverse=True)
        return entries[:max(limit, 0)]

    def search_local(self, query: str, user_id: str | None = None) -> list[Entry]:
        """Case-insensitive substring match, in insertion order."""
        needle = (query or "").lower()
        return [e for e in self.get_all(user_id) if needle in e.searchable_text().lower()]

    def stats(self, user_id: str | None = None) -> dict[str, Any]:
        entries = self.get_all(user_id)
        by_type: dict[str, int] = {}
        by_category: dict[str, int] = {}
        for e in entries:
            by_type[e.type] = by_type.get(e.type, 0) + 1
            category = e.category or "uncategorized"
            by_category[category] = by_category.get(category, 0) + 1
        return {"total_entries": len(entries), "types": by_type, "categories": by_category}

    # -- writes (errors propagate) ---------------------------------------

    def save(self, entry: Entry) -> Entry:
        """Append an entry, assigning an id and timestamp when missing."""
        if not entry.id:
            entry.id = make_id("entry", 9)
        if not entry.timestamp:
            entry.timestamp = now_iso()
        with self.store.transaction() as data:
            data.setdefault(ENTRIES_KEY, []).append(entry.to_dict())
            total = len(data[ENTRIES_KEY])
        logger.debug("Saved entry %s locally (%d total)", entry.id, total)
        return entry

    def delete(self, entry_id: str) -> bool:
        """Remove the entry with this id. Returns False if there was none."""
        with self.store.transaction() as data:
            entries = data.get(ENTRIES_KEY, [])
            kept = [e for e in entries if e.get("id") != entry_id]
            data[ENTRIES_KEY] = kept
        removed = len(kept) != len(entries)
        if removed:
            logger.info("Entry %s deleted from local cache", entry_id)
        return removed

    def categorize(self, entry_id: str, category: str) -> bool:
        """Set the category of one entry. Returns False if there was none."""
        with self.store.transaction() as data:
            for e in data.get(ENTRIES_KEY, []):
                if e.get("id") == entry_id:
                    e["category"] = category
                    logger.info("Entry %s categorized as %r", entry_id, category)
                    return True
        return False

    def migrate_entries(self, user_id: str) -> int:
        """Stamp user_id on legacy entries that have none. Returns how many changed."""
        updated = 0
        with self.store.transaction() as data:
            for e in data.get(ENTRIES_KEY, []):
                if not (e.get("user_id") or e.get("userId")):
                    e["user_id"] = user_id
                    updated += 1
        if updated:
            logger.info("Migrated %d entries to user %s", updated, user_id)
        return updated

    # -- pending-write log -----------------------------------------------

    def add_pending(
        self, op: str, entry_id: str, entry: Entry | None = None, remote_id: str | None = None,
    ) -> None:
        record: dict[str, Any] = {"op": op, "id": entry_id, "created": now_iso()}
        if remote_id:
            record["remote_id"] = remote_id
        if entry is not None:
            record["entry"] = entry.to_dict()
        with self.store.transaction() as data:
            data.setdefault(PENDING_KEY, []).append(record)

    def clear_pending(self, op: str, entry_id: str) -> None:
        with self.store.transaction() as data:
            data[PENDING_KEY] = [
                p for p in data.get(PENDING_KEY, [])
                if not (p.get("op") == op and p.get("id") == entry_id)
            ]

    def pending(self) -> list[dict[str, Any]]:
        try:
            return list(self.store.get(PENDING_KEY, []) or [])
        except StorageError as e:
            logger.warning("Pending-write log unreadable: %s", e)
            return []
