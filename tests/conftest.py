from __future__ import annotations

import json
import re
from typing import Any, Mapping

import pytest

from translation_server_mcp.config import Settings

_ENV_VARS = (
    "ZOTERO_MCP_CONFIG",
    "TRANSLATION_SERVER_URL",
    "TRANSLATION_SERVER_TIMEOUT_MS",
    "ZOTERO_CONNECTOR_URL",
    "ZOTERO_REQUEST_TIMEOUT_MS",
    "ZOTERO_UPLOAD_TIMEOUT_MS",
    "ZOTERO_CONNECTOR_API_VERSION",
    "ZOTERO_CONNECTOR_CLIENT_VERSION",
    "ZOTERO_LOCAL_API_URL",
    "ZOTERO_LOCAL_API_KEY",
    "ZOTERO_LIBRARY_ID",
    "ZOTERO_LIBRARY_TYPE",
    "ZOTERO_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings()


def extract_json(msg: str) -> Any:
    m = re.search(r"```json\n(.*?)\n```", msg, flags=re.DOTALL)
    assert m, "Expected JSON result block"
    return json.loads(m.group(1))


class FakeConnector:
    """In-memory stand-in for ConnectorClient that records every call in order."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self.calls: list[tuple[str, Any]] = []
        self.submitted: dict[str, Any] | None = None
        self.submit_status = 201
        self.fail_submit: Exception | None = None
        self.fail_fetch: dict[str, Exception] = {}
        self.fail_upload: dict[str, Exception] = {}
        self.resolvable: set[str] = set()
        self.fail_resolver: dict[str, Exception] = {}
        self.fail_snapshot: Exception | None = None
        self.pages: dict[str, str] = {}
        self.fetch_headers: dict[str, dict[str, str]] = {}

    def submit_items(self, payload: dict[str, Any], headers: Mapping[str, str]) -> dict[str, Any]:
        self.calls.append(("submit", payload["sessionID"]))
        if self.fail_submit is not None:
            raise self.fail_submit
        self.submitted = payload
        self.headers = dict(headers)
        return {"statusCode": self.submit_status, "response": None}

    def fetch_resource(self, url: str, headers: Mapping[str, str] | None = None, binary: bool = True) -> bytes | str:
        self.calls.append(("fetch", url))
        self.fetch_headers[url] = dict(headers or {})
        if url in self.fail_fetch:
            raise self.fail_fetch[url]
        if binary:
            return b"%PDF-1.7 " + url.encode()
        return self.pages.get(url, "<html></html>")

    def upload_attachment(
        self,
        session_id: str,
        parent_id: str,
        title: str,
        mime_type: str,
        content: bytes,
        headers: Mapping[str, str],
        url: str | None = None,
        attachment_id: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append(("upload", (session_id, parent_id, title, mime_type, url)))
        if url in self.fail_upload:
            raise self.fail_upload[url]
        return {"statusCode": 201}

    def has_resolver(self, session_id: str, item_id: str, headers: Mapping[str, str]) -> bool:
        self.calls.append(("has_resolver", (session_id, item_id)))
        if item_id in self.fail_resolver:
            raise self.fail_resolver[item_id]
        return item_id in self.resolvable

    def trigger_resolver_save(self, session_id: str, item_id: str, headers: Mapping[str, str]) -> dict[str, Any]:
        self.calls.append(("resolver_save", (session_id, item_id)))
        return {"statusCode": 201}

    def submit_snapshot(
        self, session_id: str, item_id: str, url: str, title: str, html: str, headers: Mapping[str, str]
    ) -> dict[str, Any]:
        self.calls.append(("snapshot", (session_id, item_id, url, title, html)))
        if self.fail_snapshot is not None:
            raise self.fail_snapshot
        return {"statusCode": 201}


@pytest.fixture
def fake_connector(settings: Settings) -> FakeConnector:
    return FakeConnector(settings)


def counter_ids(prefix: str = "id"):
    n = {"i": 0}

    def factory() -> str:
        n["i"] += 1
        return f"{prefix}{n['i']}"

    return factory
