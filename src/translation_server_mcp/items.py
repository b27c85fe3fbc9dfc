"""Item shaping ahead of a connector save.

Three pure stages run in order: normalize (independent copies plus explicit
attachment overrides), assign identities (ids and attachment back-references),
and merge notes (flat note records folded into their parent's ``notes``).
"""

from __future__ import annotations

import logging
import secrets
import uuid
from typing import Any, Callable, Iterable, Mapping, Sequence

from translation_server_mcp.errors import ValidationError

logger = logging.getLogger(__name__)

Record = dict[str, Any]
IdFactory = Callable[[], str]

DEFAULT_ATTACHMENT_MIME_TYPE = "application/pdf"


def new_id() -> str:
    """Return a 128-bit random identifier as 32 hex characters."""
    return uuid.uuid4().hex


def next_id(id_factory: IdFactory) -> str:
    value = id_factory()
    return str(value) if value else secrets.token_hex(16)


def _copy_record(record: Mapping[str, Any]) -> Record:
    out = dict(record)
    if isinstance(out.get("attachments"), list):
        out["attachments"] = [dict(a) if isinstance(a, Mapping) else a for a in out["attachments"]]
    if isinstance(out.get("notes"), list):
        out["notes"] = list(out["notes"])
    return out


def normalize_items(
    records: Mapping[str, Any] | Sequence[Mapping[str, Any]] | None,
    attachment_urls: Iterable[str] | None = None,
    attachment_titles: Sequence[str] | None = None,
    attachment_mime_type: str | None = None,
    attachment_item_index: int | None = None,
) -> list[Record]:
    """Copy the input records and apply explicit attachment overrides.

    The input is never mutated. When ``attachment_urls`` is non-empty one
    attachment per URL is appended to the record at ``attachment_item_index``
    (default 0); titles pair positionally and fall back to the URL.
    """
    if records is None:
        raise ValidationError("items are required")
    raw = [records] if isinstance(records, Mapping) else list(records)
    if not raw:
        raise ValidationError("items must contain at least one record")
    out: list[Record] = []
    for i, rec in enumerate(raw):
        if not isinstance(rec, Mapping):
            raise ValidationError(f"item at index {i} is not an object")
        out.append(_copy_record(rec))

    urls = [u for u in (attachment_urls or []) if u]
    if not urls:
        return out
    index = attachment_item_index if attachment_item_index is not None else 0
    if not 0 <= index < len(out):
        logger.debug("attachment override skipped: no item at index %s", index)
        return out
    titles = list(attachment_titles or [])
    target = out[index]
    attachments = target.get("attachments")
    if not isinstance(attachments, list):
        attachments = []
        target["attachments"] = attachments
    for pos, url in enumerate(urls):
        title = titles[pos] if pos < len(titles) and titles[pos] else url
        attachments.append(
            {
                "url": url,
                "title": title,
                "mimeType": attachment_mime_type or DEFAULT_ATTACHMENT_MIME_TYPE,
            }
        )
    return out


def assign_identities(records: list[Record], id_factory: IdFactory = new_id) -> list[Record]:
    """Give every record an ``id`` and link its attachments back to it.

    Pre-existing ids are kept. Attachments without ``parentItem`` point at the
    owning record; attachments without an ``id`` get one as well.
    """
    for rec in records:
        if not rec.get("id"):
            rec["id"] = next_id(id_factory)
        for att in rec.get("attachments") or []:
            if not isinstance(att, dict):
                continue
            if not att.get("parentItem"):
                att["parentItem"] = rec["id"]
            if not att.get("id"):
                att["id"] = next_id(id_factory)
    return records


def is_note(record: Mapping[str, Any]) -> bool:
    return record.get("itemType") == "note"


def _find_parent(ref: Any, candidates: list[Record]) -> Record | None:
    # ids take precedence over natural keys
    for rec in candidates:
        if rec.get("id") == ref:
            return rec
    for rec in candidates:
        if rec.get("key") and rec.get("key") == ref:
            return rec
    return None


def _note_entry(note: Mapping[str, Any]) -> dict[str, Any]:
    entry: dict[str, Any] = {"note": note.get("note") or note.get("noteContent") or ""}
    if "tags" in note:
        entry["tags"] = note["tags"]
    return entry


def merge_notes(records: list[Record], note_parent_index: int | None = None) -> list[Record]:
    """Fold note-typed records into the ``notes`` of a parent record.

    Parent resolution: a note with its own ``parentItem`` goes to the record
    it names (matched by id, then key), or to the first non-note record when
    nothing matches. A note without linkage goes to ``note_parent_index`` into
    the non-note records, else the first one. Notes stay standalone only when
    there is no non-note record at all. Attachments carried by a folded note
    move to its parent.
    """
    parents = [r for r in records if not is_note(r)]
    if not parents:
        return list(records)
    explicit: Record | None = None
    if note_parent_index is not None and 0 <= note_parent_index < len(parents):
        explicit = parents[note_parent_index]

    for note in (r for r in records if is_note(r)):
        if note.get("parentItem"):
            parent = _find_parent(note["parentItem"], parents)
            if parent is None:
                logger.debug("note parent %r not found; using first item", note["parentItem"])
                parent = parents[0]
        else:
            parent = explicit or parents[0]
        notes = parent.get("notes")
        if not isinstance(notes, list):
            notes = []
            parent["notes"] = notes
        notes.append(_note_entry(note))
        _move_attachments(note, parent)
    return parents


def _move_attachments(note: Record, parent: Record) -> None:
    moved = note.get("attachments")
    if not isinstance(moved, list) or not moved:
        return
    attachments = parent.get("attachments")
    if not isinstance(attachments, list):
        attachments = []
        parent["attachments"] = attachments
    for att in moved:
        if isinstance(att, dict) and parent.get("id") and att.get("parentItem") in (None, "", note.get("id")):
            att["parentItem"] = parent["id"]
        attachments.append(att)
