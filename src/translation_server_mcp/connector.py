"""HTTP client for the Zotero Desktop connector endpoints.

Covers the primary ``saveItems`` submit and the side channels used after it:
attachment fetch and upload, attachment resolvers and single-file snapshots.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping
from urllib.parse import urljoin

import requests

from translation_server_mcp.config import Settings
from translation_server_mcp.errors import RemoteFetchError, RemoteRejection
from translation_server_mcp.items import IdFactory, new_id, next_id

logger = logging.getLogger(__name__)

# Bytes that may appear unescaped inside an RFC 2047 "Q" encoded word
_Q_SAFE = frozenset(range(33, 127)) - {ord("="), ord("?"), ord("_")}


def encode_rfc2047(title: str) -> str:
    """Make a title safe for an HTTP header value.

    ASCII-only titles pass through unchanged. Anything else becomes a UTF-8
    "Q" encoded word, e.g. ``café`` -> ``=?UTF-8?Q?caf=C3=A9?=``.
    """
    if title.isascii():
        return title
    parts: list[str] = []
    for byte in title.encode("utf-8"):
        if byte == 0x20:
            parts.append("_")
        elif byte in _Q_SAFE:
            parts.append(chr(byte))
        else:
            parts.append(f"={byte:02X}")
    return "=?UTF-8?Q?" + "".join(parts) + "?="


def resolve_session_id(session_id: str | None = None, id_factory: IdFactory = new_id) -> str:
    return session_id or next_id(id_factory)


def build_headers(settings: Settings, client_version: str | None = None) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Zotero-Connector-API-Version": str(settings.connector_api_version),
        "X-Zotero-Version": client_version or settings.client_version,
    }


def build_payload(
    items: list[dict[str, Any]],
    session_id: str,
    uri: str | None = None,
    cookie: str | None = None,
    detailed_cookies: str | None = None,
    proxy: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"sessionID": session_id, "items": items}
    if uri:
        payload["uri"] = uri
    if cookie:
        payload["cookie"] = cookie
    if detailed_cookies:
        payload["detailedCookies"] = detailed_cookies
    if proxy:
        payload["proxy"] = proxy
    return payload


def _body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ConnectorClient:
    """Thin wrapper over ``requests`` for ``/connector/*`` endpoints."""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return urljoin(self.settings.connector_url.rstrip("/") + "/", path.lstrip("/"))

    def _post_json(self, path: str, payload: Any, headers: Mapping[str, str]) -> requests.Response:
        return self.session.post(
            self._url(path),
            json=payload,
            headers=dict(headers),
            timeout=self.settings.request_timeout,
        )

    def submit_items(self, payload: dict[str, Any], headers: Mapping[str, str]) -> dict[str, Any]:
        resp = self._post_json("/connector/saveItems", payload, headers)
        if resp.status_code >= 400:
            raise RemoteRejection("zotero connector save", resp.status_code, _body(resp))
        logger.info("connector saveItems: %s item(s), status %s", len(payload.get("items", [])), resp.status_code)
        return {"statusCode": resp.status_code, "response": _body(resp)}

    def fetch_resource(self, url: str, headers: Mapping[str, str] | None = None, binary: bool = True) -> bytes | str:
        resp = self.session.get(url, headers=dict(headers or {}), timeout=self.settings.upload_timeout)
        if resp.status_code >= 400:
            raise RemoteFetchError(url, resp.status_code)
        return resp.content if binary else resp.text

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
        metadata: dict[str, Any] = {
            "url": url,
            "contentType": mime_type,
            "parentItemID": parent_id,
            "title": encode_rfc2047(title),
        }
        if attachment_id:
            metadata["id"] = attachment_id
        upload_headers = dict(headers)
        upload_headers["Content-Type"] = mime_type
        upload_headers["X-Metadata"] = json.dumps(metadata)
        target = self._url("/connector/saveAttachment")
        resp = self.session.post(
            target,
            params={"sessionID": session_id},
            data=content,
            headers=upload_headers,
            timeout=self.settings.upload_timeout,
        )
        if resp.status_code >= 400:
            raise RemoteFetchError(target, resp.status_code, f"saveAttachment failed ({resp.status_code}): {resp.text}")
        return {"statusCode": resp.status_code}

    def has_resolver(self, session_id: str, item_id: str, headers: Mapping[str, str]) -> bool:
        resp = self._post_json(
            "/connector/hasAttachmentResolvers", {"sessionID": session_id, "itemID": item_id}, headers
        )
        if resp.status_code >= 400:
            raise RemoteFetchError(self._url("/connector/hasAttachmentResolvers"), resp.status_code)
        return bool(_body(resp))

    def trigger_resolver_save(self, session_id: str, item_id: str, headers: Mapping[str, str]) -> dict[str, Any]:
        resp = self._post_json(
            "/connector/saveAttachmentFromResolver", {"sessionID": session_id, "itemID": item_id}, headers
        )
        if resp.status_code >= 400:
            raise RemoteFetchError(self._url("/connector/saveAttachmentFromResolver"), resp.status_code)
        return {"statusCode": resp.status_code}

    def submit_snapshot(
        self,
        session_id: str,
        item_id: str,
        url: str,
        title: str,
        html: str,
        headers: Mapping[str, str],
    ) -> dict[str, Any]:
        payload = {
            "sessionID": session_id,
            "url": url,
            "title": title,
            "parentItemID": item_id,
            "snapshotContent": html,
        }
        target = self._url("/connector/saveSingleFile")
        resp = self.session.post(target, json=payload, headers=dict(headers), timeout=self.settings.upload_timeout)
        if resp.status_code >= 400:
            raise RemoteFetchError(target, resp.status_code)
        return {"statusCode": resp.status_code}

    def ping(self) -> bool:
        try:
            resp = self.session.get(self._url("/connector/ping"), timeout=self.settings.request_timeout)
        except requests.RequestException:
            return False
        return resp.status_code < 400
