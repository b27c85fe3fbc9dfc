"""Connector save orchestration.

One ``save`` call walks a fixed sequence of states. Only the primary submit can
abort it; attachment, resolver and snapshot steps record their failures on the
result and the sequence carries on.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from translation_server_mcp.connector import build_headers, build_payload, resolve_session_id
from translation_server_mcp.errors import EnrichmentFailure
from translation_server_mcp.items import (
    IdFactory,
    Record,
    assign_identities,
    merge_notes,
    new_id,
    normalize_items,
)

logger = logging.getLogger(__name__)


class SaveState(enum.Enum):
    NEW = "new"
    NORMALIZED = "normalized"
    LINKED = "linked"
    NOTES_MERGED = "notes_merged"
    SUBMITTED = "submitted"
    ATTACHMENTS_PROCESSED = "attachments_processed"
    SNAPSHOT_PROCESSED = "snapshot_processed"
    DONE = "done"


class ConnectorLike(Protocol):
    settings: Any

    def submit_items(self, payload: dict[str, Any], headers: Mapping[str, str]) -> dict[str, Any]: ...

    def fetch_resource(self, url: str, headers: Mapping[str, str] | None = None, binary: bool = True) -> bytes | str: ...

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
    ) -> dict[str, Any]: ...

    def has_resolver(self, session_id: str, item_id: str, headers: Mapping[str, str]) -> bool: ...

    def trigger_resolver_save(self, session_id: str, item_id: str, headers: Mapping[str, str]) -> dict[str, Any]: ...

    def submit_snapshot(
        self, session_id: str, item_id: str, url: str, title: str, html: str, headers: Mapping[str, str]
    ) -> dict[str, Any]: ...


@dataclass
class SaveOptions:
    session_id: str | None = None
    save_attachments: bool = True
    use_attachment_resolvers: bool | None = None
    save_snapshot: bool = False
    snapshot_url: str | None = None
    snapshot_title: str | None = None
    user_agent: str | None = None
    cookie: str | None = None
    attachment_urls: list[str] = field(default_factory=list)
    attachment_titles: list[str] = field(default_factory=list)
    attachment_mime_type: str | None = None
    attachment_item_index: int | None = None
    note_parent_index: int | None = None
    uri: str | None = None
    detailed_cookies: str | None = None
    proxy: str | None = None
    client_version: str | None = None

    @property
    def resolvers_enabled(self) -> bool:
        if self.use_attachment_resolvers is None:
            return not self.attachment_urls
        return bool(self.use_attachment_resolvers)

    @classmethod
    def from_mapping(cls, args: Mapping[str, Any]) -> "SaveOptions":
        """Build options from camelCase tool arguments; unknown keys are ignored."""

        def flag(name: str, default: bool) -> bool:
            value = args.get(name)
            return default if value is None else bool(value)

        resolvers = args.get("useAttachmentResolvers")
        return cls(
            session_id=args.get("sessionID"),
            save_attachments=flag("saveAttachments", True),
            use_attachment_resolvers=None if resolvers is None else bool(resolvers),
            save_snapshot=flag("saveSnapshot", False),
            snapshot_url=args.get("snapshotUrl"),
            snapshot_title=args.get("snapshotTitle"),
            user_agent=args.get("userAgent"),
            cookie=args.get("cookie"),
            attachment_urls=list(args.get("attachmentUrls") or []),
            attachment_titles=list(args.get("attachmentTitles") or []),
            attachment_mime_type=args.get("attachmentMimeType"),
            attachment_item_index=args.get("attachmentItemIndex"),
            note_parent_index=args.get("noteParentIndex"),
            uri=args.get("uri"),
            detailed_cookies=args.get("detailedCookies"),
            proxy=args.get("proxy"),
            client_version=args.get("clientVersion"),
        )


@dataclass
class SaveResult:
    status_code: int
    session_id: str
    attachments_saved: int = 0
    resolver_attempts: int = 0
    snapshot: dict[str, Any] | None = None
    attachment_errors: list[dict[str, str]] = field(default_factory=list)
    resolver_errors: list[dict[str, str]] = field(default_factory=list)
    response: Any = None
    items: list[Record] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when every enrichment step succeeded."""
        return not (
            self.attachment_errors
            or self.resolver_errors
            or (self.snapshot is not None and "error" in self.snapshot)
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "sessionID": self.session_id,
            "attachmentsSaved": self.attachments_saved,
            "resolverAttempts": self.resolver_attempts,
            "snapshot": self.snapshot,
            "attachmentErrors": list(self.attachment_errors),
            "resolverErrors": list(self.resolver_errors),
            "response": self.response,
            "items": self.items,
        }


def is_fetchable_attachment(att: Mapping[str, Any]) -> bool:
    """Attachment has a URL, is not excluded from snapshotting, and is a PDF or EPUB."""
    if not att.get("url") or att.get("snapshot") is False:
        return False
    mime = str(att.get("mimeType") or "").lower()
    return "pdf" in mime or "epub" in mime


class SaveOrchestrator:
    def __init__(self, connector: ConnectorLike, id_factory: IdFactory = new_id) -> None:
        self.connector = connector
        self.id_factory = id_factory
        self.state = SaveState.NEW

    def _advance(self, state: SaveState) -> None:
        logger.debug("save state: %s -> %s", self.state.value, state.value)
        self.state = state

    def save(self, records: Any, options: SaveOptions | None = None) -> SaveResult:
        opts = options or SaveOptions()
        self.state = SaveState.NEW

        items = normalize_items(
            records,
            attachment_urls=opts.attachment_urls,
            attachment_titles=opts.attachment_titles,
            attachment_mime_type=opts.attachment_mime_type,
            attachment_item_index=opts.attachment_item_index,
        )
        self._advance(SaveState.NORMALIZED)
        assign_identities(items, self.id_factory)
        self._advance(SaveState.LINKED)
        items = merge_notes(items, opts.note_parent_index)
        self._advance(SaveState.NOTES_MERGED)

        session_id = resolve_session_id(opts.session_id, self.id_factory)
        headers = build_headers(self.connector.settings, opts.client_version)
        payload = build_payload(
            items,
            session_id,
            uri=opts.uri,
            cookie=opts.cookie,
            detailed_cookies=opts.detailed_cookies,
            proxy=opts.proxy,
        )
        ack = self.connector.submit_items(payload, headers)
        self._advance(SaveState.SUBMITTED)

        result = SaveResult(
            status_code=ack.get("statusCode", 0),
            session_id=session_id,
            response=ack.get("response"),
            items=items,
        )
        fetch_headers = self._fetch_headers(opts)
        if opts.save_attachments:
            self._save_attachments(items, session_id, headers, fetch_headers, result)
            if opts.resolvers_enabled:
                self._run_resolvers(items, session_id, headers, result)
        self._advance(SaveState.ATTACHMENTS_PROCESSED)

        if opts.save_snapshot:
            result.snapshot = self._save_snapshot(items, session_id, headers, fetch_headers, opts)
        self._advance(SaveState.SNAPSHOT_PROCESSED)
        self._advance(SaveState.DONE)
        return result

    @staticmethod
    def _fetch_headers(opts: SaveOptions) -> dict[str, str]:
        out: dict[str, str] = {}
        if opts.user_agent:
            out["User-Agent"] = opts.user_agent
        if opts.cookie:
            out["Cookie"] = opts.cookie
        return out

    def _save_attachments(
        self,
        items: Sequence[Record],
        session_id: str,
        headers: Mapping[str, str],
        fetch_headers: Mapping[str, str],
        result: SaveResult,
    ) -> None:
        for item in items:
            for att in item.get("attachments") or []:
                if not isinstance(att, Mapping) or not is_fetchable_attachment(att):
                    continue
                url = att["url"]
                try:
                    content = self.connector.fetch_resource(url, fetch_headers, binary=True)
                    if isinstance(content, str):
                        content = content.encode("utf-8")
                    self.connector.upload_attachment(
                        session_id,
                        att.get("parentItem") or item["id"],
                        att.get("title") or url,
                        att.get("mimeType") or "application/pdf",
                        content,
                        headers,
                        url=url,
                        attachment_id=att.get("id"),
                    )
                    result.attachments_saved += 1
                except Exception as e:  # noqa: BLE001
                    failure = EnrichmentFailure("attachment", url, str(e))
                    logger.warning("%s", failure)
                    result.attachment_errors.append({"url": url, "message": failure.message})

    def _run_resolvers(
        self,
        items: Sequence[Record],
        session_id: str,
        headers: Mapping[str, str],
        result: SaveResult,
    ) -> None:
        for item in items:
            item_id = item["id"]
            try:
                if not self.connector.has_resolver(session_id, item_id, headers):
                    continue
                result.resolver_attempts += 1
                self.connector.trigger_resolver_save(session_id, item_id, headers)
            except Exception as e:  # noqa: BLE001
                failure = EnrichmentFailure("resolver", item_id, str(e))
                logger.warning("%s", failure)
                result.resolver_errors.append({"itemId": item_id, "message": failure.message})

    def _save_snapshot(
        self,
        items: Sequence[Record],
        session_id: str,
        headers: Mapping[str, str],
        fetch_headers: Mapping[str, str],
        opts: SaveOptions,
    ) -> dict[str, Any]:
        first = items[0]
        url = opts.snapshot_url or first.get("url")
        if not url:
            return {"skipped": True, "reason": "no_url"}
        title = opts.snapshot_title or first.get("title") or url
        try:
            html = self.connector.fetch_resource(url, fetch_headers, binary=False)
            if isinstance(html, bytes):
                html = html.decode("utf-8", errors="replace")
            self.connector.submit_snapshot(session_id, first["id"], url, title, html, headers)
        except Exception as e:  # noqa: BLE001
            failure = EnrichmentFailure("snapshot", url, str(e))
            logger.warning("%s", failure)
            return {"error": failure.message}
        return {"saved": True, "url": url, "title": title}
