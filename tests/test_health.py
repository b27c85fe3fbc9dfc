from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from conftest import extract_json
from translation_server_mcp import translation_health


def test_health_reports_reachability(monkeypatch: Any) -> None:
    ts = MagicMock()
    ts.ping.return_value = True
    conn = MagicMock()
    conn.ping.return_value = False
    monkeypatch.setattr("translation_server_mcp.get_translation_client", lambda s: ts)
    monkeypatch.setattr("translation_server_mcp.get_connector", lambda s: conn)
    monkeypatch.setenv("ZOTERO_API_KEY", "secret")

    msg = translation_health()
    assert msg.startswith("# Health")
    data = extract_json(msg)
    assert data["translationServer"] == "ok"
    assert data["connector"] == "unreachable"
    assert data["config"]["api_key"] == "(set)"
    assert "secret" not in msg
    assert "latencyMs" in data


def test_health_with_broken_config(monkeypatch: Any, tmp_path) -> None:
    monkeypatch.setenv("ZOTERO_MCP_CONFIG", str(tmp_path / "missing.yaml"))
    msg = translation_health()
    assert msg.startswith("Health check failed")
