from __future__ import annotations

import json
import logging
import re as _re
from typing import Any
from urllib.parse import urljoin

import requests

from translation_server_mcp.config import Settings
from translation_server_mcp.errors import RemoteRejection, ValidationError

logger = logging.getLogger(__name__)


def parse_json_maybe(body: Any) -> Any:
    """Return parsed JSON for string bodies that hold JSON, otherwise the body unchanged."""
    if not isinstance(body, (str, bytes, bytearray)):
        return body
    try:
        return json.loads(body)
    except ValueError:
        return body if isinstance(body, str) else bytes(body).decode("utf-8", errors="replace")


def ensure_ok(response: requests.Response, label: str) -> None:
    if response.status_code >= 400:
        raise RemoteRejection(label, response.status_code, parse_json_maybe(response.text))


class TranslationClient:
    """Client for a Zotero translation-server (``/web``, ``/search``, ``/import``, ``/export``)."""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()

    def _url(self, path_or_url: str) -> str:
        if _re.match(r"^https?://", path_or_url, flags=_re.IGNORECASE):
            return path_or_url
        return urljoin(self.settings.translation_server_url.rstrip("/") + "/", path_or_url.lstrip("/"))

    def _post_text(
        self,
        path: str,
        body: str,
        content_type: str = "text/plain",
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        return self.session.post(
            self._url(path),
            data=body.encode("utf-8"),
            params=params,
            headers={"Content-Type": content_type},
            timeout=self.settings.translation_timeout,
        )

    def _post_json(self, path: str, payload: Any) -> requests.Response:
        return self.session.post(
            self._url(path),
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=self.settings.translation_timeout,
        )

    def translate_web(self, url: str) -> dict[str, Any]:
        if not url:
            raise ValidationError("translate_web requires a url")
        resp = self._post_text("/web", url)
        if resp.status_code == 300:
            data = parse_json_maybe(resp.text) or {}
            if not isinstance(data, dict):
                data = {}
            logger.debug("translate_web: multiple choices for %s", url)
            return {
                "status": "multiple_choices",
                "url": data.get("url") or url,
                "session": data.get("session"),
                "items": data.get("items"),
            }
        ensure_ok(resp, "translate_web")
        return {"status": "ok", "items": parse_json_maybe(resp.text)}

    def translate_web_select(self, session: str, items: dict[str, Any], url: str | None = None) -> dict[str, Any]:
        if not session or not items:
            raise ValidationError("translate_web_select requires session and items")
        payload: dict[str, Any] = {"session": session, "items": items}
        if url:
            payload["url"] = url
        resp = self._post_json("/web", payload)
        ensure_ok(resp, "translate_web_select")
        return {"status": "ok", "items": parse_json_maybe(resp.text)}

    def translate_search(self, identifier: str) -> dict[str, Any]:
        if not identifier:
            raise ValidationError("translate_search requires an identifier")
        resp = self._post_text("/search", identifier)
        ensure_ok(resp, "translate_search")
        return {"status": "ok", "items": parse_json_maybe(resp.text)}

    def translate_import(self, data: str, mime_type: str | None = None) -> dict[str, Any]:
        if not isinstance(data, str):
            raise ValidationError("translate_import requires data (string)")
        resp = self._post_text("/import", data, content_type=mime_type or "text/plain")
        ensure_ok(resp, "translate_import")
        return {"status": "ok", "items": parse_json_maybe(resp.text)}

    def export_items(self, items: Any, format: str) -> dict[str, Any]:
        if not format:
            raise ValidationError("export_items requires format")
        body = json.dumps(items if items is not None else [], ensure_ascii=False)
        resp = self._post_text("/export", body, content_type="application/json", params={"format": format})
        ensure_ok(resp, "export_items")
        return {"status": "ok", "output": resp.text}

    def ping(self) -> bool:
        # translation-server has no ping route; any HTTP answer means it is up
        try:
            self.session.get(self._url("/"), timeout=self.settings.translation_timeout)
        except requests.RequestException:
            return False
        return True
