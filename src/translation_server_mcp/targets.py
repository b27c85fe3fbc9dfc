"""Save targets other than the connector: the local Zotero API and the Zotero Web API."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import requests

from translation_server_mcp.client import get_zotero_client
from translation_server_mcp.config import Settings
from translation_server_mcp.errors import RemoteRejection, ValidationError
from translation_server_mcp.items import normalize_items

logger = logging.getLogger(__name__)

# Zotero Web API accepts at most 50 objects per write request
WEB_BATCH_SIZE = 50


def apply_collection(items: Sequence[Mapping[str, Any]], collection_key: str | None) -> list[dict[str, Any]]:
    if not collection_key:
        return [dict(it) for it in items]
    out: list[dict[str, Any]] = []
    for it in items:
        updated = dict(it)
        collections = list(it.get("collections") or [])
        if collection_key not in collections:
            collections.append(collection_key)
        updated["collections"] = collections
        out.append(updated)
    return out


def save_local(
    items: Any,
    settings: Settings,
    library_type: str | None = None,
    library_id: str | None = None,
    collection_key: str | None = None,
    session: requests.Session | None = None,
) -> dict[str, Any]:
    if not settings.local_api_key:
        raise ValidationError("ZOTERO_LOCAL_API_KEY is required for Zotero local API")
    body = apply_collection(normalize_items(items), collection_key)
    lib_type = library_type or "users"
    lib_id = library_id or "0"
    url = f"{settings.local_api_url.rstrip('/')}/{lib_type}/{lib_id}/items"
    http = session or requests.Session()
    resp = http.post(
        url,
        json=body,
        headers={
            "Zotero-API-Key": settings.local_api_key,
            "Zotero-API-Version": "3",
            "Content-Type": "application/json",
        },
        timeout=settings.request_timeout,
    )
    try:
        payload: Any = resp.json()
    except ValueError:
        payload = resp.text
    if resp.status_code >= 400:
        raise RemoteRejection("zotero local save", resp.status_code, payload)
    logger.info("local API save: %s item(s) to %s/%s", len(body), lib_type, lib_id)
    return {"statusCode": resp.status_code, "response": payload}


def save_web(
    items: Any,
    settings: Settings,
    library_type: str | None = None,
    library_id: str | None = None,
    collection_key: str | None = None,
) -> dict[str, Any]:
    body = apply_collection(normalize_items(items), collection_key)
    zot = get_zotero_client(settings, library_id=library_id, library_type=library_type)
    merged: dict[str, dict[str, Any]] = {"success": {}, "unchanged": {}, "failed": {}}
    for start in range(0, len(body), WEB_BATCH_SIZE):
        batch = body[start : start + WEB_BATCH_SIZE]
        resp: Any = zot.create_items(batch)
        # pyzotero keys results by position within the batch
        for bucket in merged:
            for idx, value in (resp.get(bucket) or {}).items():
                merged[bucket][str(start + int(idx))] = value
    logger.info(
        "web API save: %s ok, %s unchanged, %s failed",
        len(merged["success"]),
        len(merged["unchanged"]),
        len(merged["failed"]),
    )
    return merged
