"""Reconcile the local cache with the vector index."""

import logging
from typing import TYPE_CHECKING

from ..errors import ConfigurationError, RemoteServiceError, user_message
from ..models import Entry, ReconcileReport

if TYPE_CHECKING:
    from ..knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

# Errors meaning the index could not be consulted
UNAVAILABLE = (RemoteServiceError, ConfigurationError)


def run_reconcile(kb: "KnowledgeBase") -> ReconcileReport:
    """Finish or discard interrupted writes, then look for entries missing remotely.

    Pending upserts whose vector reached the index get their local copy
    restored; those whose vector never arrived are dropped. Pending deletes are
    replayed against both stores. Finally every local entry is checked against
    the index and the ones with no vector are reported as local-only.
    """
    report = ReconcileReport()
    pending = kb.cache.pending()
    upserts = [p for p in pending if p.get("op") == "upsert"]
    deletes = [p for p in pending if p.get("op") == "delete"]

    if upserts:
        try:
            present = kb.service.fetch_ids([p["id"] for p in upserts])
        except UNAVAILABLE as e:
            logger.warning("Could not check pending upserts against the index: %s", e)
            report.error = user_message(e)
            report.still_pending.extend(p["id"] for p in upserts)
        else:
            for p in upserts:
                entry_id = p["id"]
                with kb.store.transaction():
                    if entry_id in present:
                        if kb.cache.get(entry_id) is None and p.get("entry"):
                            kb.cache.save(Entry.from_dict(p["entry"]))
                            report.restored.append(entry_id)
                    else:
                        report.dropped.append(entry_id)
                    kb.cache.clear_pending("upsert", entry_id)

    for p in deletes:
        entry_id = p["id"]
        try:
            kb.service.delete(p.get("remote_id") or entry_id)
        except UNAVAILABLE as e:
            logger.warning("Pending delete of %s still failing: %s", entry_id, e)
            report.error = report.error or user_message(e)
            report.still_pending.append(entry_id)
            continue
        with kb.store.transaction():
            kb.cache.delete(entry_id)
            kb.cache.clear_pending("delete", entry_id)
        report.deletes_replayed.append(entry_id)

    user_id = kb.scoped_user_id()
    local = {(e.ai_id or e.id): e.id for e in kb.cache.get_all(user_id)} if user_id else {}
    if local:
        try:
            present = kb.service.fetch_ids(list(local))
        except UNAVAILABLE as e:
            logger.warning("Could not compare local entries with the index: %s", e)
            report.error = report.error or user_message(e)
        else:
            report.checked = len(local)
            report.local_only = [local[rid] for rid in local if rid not in present]

    if report.consistent:
        logger.info("Reconcile: stores consistent (%d entries checked)", report.checked)
    else:
        logger.warning(
            "Reconcile: %d local-only entr(ies), %d write(s) still pending",
            len(report.local_only), len(report.still_pending),
        )
    return report
