"""Tests for the extension message dispatcher."""

from aikb.messages import dispatch

from conftest import rejected


class Notifications(list):
    def __call__(self, title, message):
        self.append((title, message))


def test_save_and_list_entries(kb):
    notes = Notifications()
    saved = dispatch(kb, {
        "type": "SAVE_HIGHLIGHTED_TEXT",
        "selectedText": "Mitochondria are the powerhouse of the cell",
        "context": {"nearbyHeadings": ["Cells"]},
        "tab": {"url": "https://bio.test", "title": "Biology"},
    }, notes)

    assert saved["success"] is True
    assert notes[0][0] == "Text Saved"

    listed = dispatch(kb, {"type": "GET_ALL_ENTRIES"})
    assert listed["success"] is True
    [entry] = listed["entries"]
    assert entry["id"] == saved["id"]
    assert entry["url"] == "https://bio.test"
    assert entry["title"] == "Biology"
    assert entry["pageContext"] == {"nearbyHeadings": ["Cells"]}

    recent = dispatch(kb, {"type": "GET_RECENT_ENTRIES", "limit": 5})
    assert [e["id"] for e in recent["entries"]] == [saved["id"]]


def test_save_image(kb):
    notes = Notifications()
    resp = dispatch(kb, {
        "type": "SAVE_IMAGE",
        "imageUrl": "https://img.test/cat.png",
        "altText": "a cat",
        "pageContext": {"pageTitle": "Cats"},
    }, notes)

    assert resp["success"] is True
    assert notes == [("Image Saved", "Image saved to knowledge base")]
    entry = kb.cache.get(resp["id"])
    assert entry.image_url == "https://img.test/cat.png"
    assert entry.title == "Cats"


def test_save_failure_is_reported(kb):
    notes = Notifications()
    resp = dispatch(kb, {"type": "SAVE_HIGHLIGHTED_TEXT", "text": "  "}, notes)

    assert resp["success"] is False
    assert resp["error"].startswith("No content to save")
    assert notes == [("Save Failed", resp["error"])]


def test_search_knowledge_base(kb):
    dispatch(kb, {"type": "SAVE_HIGHLIGHTED_TEXT", "text": "quantum entanglement"})
    resp = dispatch(kb, {"type": "SEARCH_KNOWLEDGE_BASE", "query": "quantum"})

    assert resp["success"] is True
    assert resp["results"][0]["metadata"]["content"] == "quantum entanglement"
    assert "score" in resp["results"][0]


def test_search_failure_envelope(kb, embedder):
    embedder.fail = rejected(401)
    resp = dispatch(kb, {"type": "SEARCH_KNOWLEDGE_BASE", "query": "anything"})

    assert resp == {
        "success": False,
        "error": "The remote service rejected the request (HTTP 401).",
        "results": [],
    }


def test_search_local(kb):
    dispatch(kb, {"type": "SAVE_HIGHLIGHTED_TEXT", "text": "Rust ownership rules"})
    resp = dispatch(kb, {"type": "SEARCH_LOCAL", "query": "OWNERSHIP"})
    assert len(resp["entries"]) == 1


def test_categorize_and_delete(kb, vector_store):
    saved = dispatch(kb, {"type": "SAVE_HIGHLIGHTED_TEXT", "text": "note"})

    resp = dispatch(kb, {"type": "CATEGORIZE_ENTRY", "entryId": saved["id"], "category": "work"})
    assert resp == {"success": True, "updated": True}
    assert kb.cache.get(saved["id"]).category == "work"

    assert dispatch(kb, {"type": "DELETE_ENTRY", "entryId": saved["id"]}) == {"success": True}
    assert kb.cache.get(saved["id"]) is None
    assert vector_store.records == {}


def test_delete_failure_notifies(kb, vector_store):
    saved = dispatch(kb, {"type": "SAVE_HIGHLIGHTED_TEXT", "text": "note"})
    vector_store.fail_delete = rejected(503)
    notes = Notifications()

    resp = dispatch(kb, {"type": "DELETE_ENTRY", "entryId": saved["id"]}, notes)

    assert resp["success"] is False
    assert notes[0][0] == "Delete Failed"
    assert kb.cache.get(saved["id"]) is not None


def test_get_status(kb):
    resp = dispatch(kb, {"type": "GET_STATUS"})
    assert resp["success"] is True
    assert resp["status"]["configured"] is True
    assert "config" not in resp["status"]


def test_unknown_and_malformed_requests(kb):
    assert dispatch(kb, {"type": "MAKE_COFFEE"}) == {
        "success": False,
        "error": "Unknown message type: MAKE_COFFEE",
    }
    assert dispatch(kb, ["not", "a", "dict"])["success"] is False


def test_empty_search_query_is_explained(kb):
    resp = dispatch(kb, {"type": "SEARCH_KNOWLEDGE_BASE", "query": "   "})

    assert resp["success"] is False
    assert resp["error"] == "Search query is empty"
    assert resp["results"] == []


def test_entries_from_corrupt_store(kb, tmp_path):
    (tmp_path / "store.json").write_text("{not json")

    assert dispatch(kb, {"type": "GET_ALL_ENTRIES"}) == {"success": True, "entries": []}
    assert dispatch(kb, {"type": "GET_RECENT_ENTRIES", "limit": 3})["entries"] == []
