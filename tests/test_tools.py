"""Tests for the MCP tool functions with mocked collaborators"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from conftest import FakeConnector, extract_json
from translation_server_mcp import (
    export_items,
    save_to_zotero,
    translate_import,
    translate_search,
    translate_web,
)
from translation_server_mcp.errors import RemoteRejection


@pytest.fixture
def mock_translation(monkeypatch: Any) -> MagicMock:
    mock = MagicMock()
    monkeypatch.setattr("translation_server_mcp.get_translation_client", lambda settings: mock)
    return mock


@pytest.fixture
def connector(monkeypatch: Any) -> FakeConnector:
    fake = FakeConnector()
    monkeypatch.setattr("translation_server_mcp.get_connector", lambda settings: fake)
    return fake


def test_translate_web_multiple_choices(mock_translation: MagicMock) -> None:
    mock_translation.translate_web.return_value = {
        "status": "multiple_choices",
        "url": "https://example.org",
        "session": "S",
        "items": {"1": "a", "2": "b"},
    }
    out = translate_web("https://example.org")
    assert "Multiple choices" in out and "Choices: 2" in out
    assert extract_json(out)["session"] == "S"


def test_translate_search_error_is_rendered(mock_translation: MagicMock) -> None:
    mock_translation.translate_search.side_effect = RemoteRejection("translate_search", 501, "no translators")
    out = translate_search(" 10.1/abc ")
    assert out.startswith("Error translating identifier: HTTP 501")
    mock_translation.translate_search.assert_called_once_with("10.1/abc")


def test_translate_import_result_block(mock_translation: MagicMock) -> None:
    mock_translation.translate_import.return_value = {"status": "ok", "items": [{"itemType": "book", "title": "T"}]}
    out = translate_import("TY  - BOOK\nER  -")
    assert "Items: 1" in out
    assert extract_json(out)["items"][0]["title"] == "T"


def test_export_items_counts_ris_entries(mock_translation: MagicMock) -> None:
    mock_translation.export_items.return_value = {"status": "ok", "output": "TY  - JOUR\nER  -\n\nTY  - BOOK\nER  -\n"}
    out = export_items([{}, {}], "ris")
    res = extract_json(out)
    assert res["count"] == 2
    assert any("COUNT_HEURISTIC" in w for w in res["warnings"])
    assert "### Exported content" in out


def test_export_items_counts_bibtex_entries(mock_translation: MagicMock) -> None:
    bib = "@article{a, title={A}}\n\n@book{b, title={B}}\n"
    mock_translation.export_items.return_value = {"status": "ok", "output": bib}
    out = export_items([{}, {}], "bibtex")
    assert extract_json(out)["count"] == 2


def test_save_to_zotero_connector_end_to_end(connector: FakeConnector) -> None:
    items = [
        {"itemType": "journalArticle", "title": "Paper", "key": "K1"},
        {"itemType": "note", "note": "n", "parentItem": "K1"},
    ]
    out = save_to_zotero(items, sessionID="S-1", saveSnapshot=True)
    res = extract_json(out)
    assert res["sessionID"] == "S-1"
    assert len(res["items"]) == 1 and len(res["items"][0]["notes"]) == 1
    assert res["snapshot"] == {"skipped": True, "reason": "no_url"}
    assert "Snapshot: skipped (no_url)" in out
    assert connector.submitted["sessionID"] == "S-1"


def test_save_to_zotero_reports_attachment_errors(connector: FakeConnector) -> None:
    connector.fail_fetch["http://x/a.pdf"] = RuntimeError("boom")
    out = save_to_zotero(
        {"itemType": "book", "title": "B"},
        attachmentUrls=["http://x/a.pdf", "http://x/b.pdf"],
        attachmentTitles=["A", "B"],
    )
    res = extract_json(out)
    assert res["attachmentsSaved"] == 1
    assert res["attachmentErrors"] == [{"url": "http://x/a.pdf", "message": "boom"}]
    assert res["resolverAttempts"] == 0
    assert "with warnings" in out


def test_save_to_zotero_submit_failure(connector: FakeConnector) -> None:
    connector.fail_submit = RemoteRejection("zotero connector save", 500, "internal")
    out = save_to_zotero([{"itemType": "book"}])
    assert out.startswith("Error saving to Zotero (connector): HTTP 500")
    assert "Hint:" in out


def test_save_to_zotero_requires_items(connector: FakeConnector) -> None:
    out = save_to_zotero([])
    assert "Error saving to Zotero" in out
    assert connector.calls == []


def test_save_to_zotero_unknown_target(connector: FakeConnector) -> None:
    out = save_to_zotero([{"itemType": "book"}], target="cloud")  # type: ignore[arg-type]
    assert out == "Unknown Zotero target: cloud"


def test_save_to_zotero_local_target(monkeypatch: Any) -> None:
    captured: dict[str, Any] = {}

    def fake_save_local(items, settings, library_type, library_id, collection_key):
        captured.update(items=items, collection=collection_key)
        return {"statusCode": 200, "response": {}}

    monkeypatch.setattr("translation_server_mcp.save_local", fake_save_local)
    out = save_to_zotero([{"itemType": "book"}], target="local", collectionKey="C")
    assert "local API" in out
    assert captured["collection"] == "C"
