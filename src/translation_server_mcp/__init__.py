import os
import re as _re
import time
import logging
from typing import Any, Literal

import bibtexparser

# Structured logger
logger = logging.getLogger("translation_server_mcp")
if not logger.handlers:
    h = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] translation_server_mcp: %(message)s", "%Y-%m-%dT%H:%M:%SZ"
    )
    h.setFormatter(formatter)
    logger.addHandler(h)
    # Allow LOG_LEVEL env to control verbosity; default INFO
    _lvl = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, _lvl, logging.INFO))
    # Ensure UTC timestamps
    for handler in logger.handlers:
        if handler.formatter is not None:
            handler.formatter.converter = time.gmtime  # type: ignore[attr-defined]

from mcp.server.fastmcp import FastMCP

from translation_server_mcp.config import Settings
from translation_server_mcp.connector import ConnectorClient
from translation_server_mcp.errors import (
    ConfigError,
    RemoteFetchError,
    RemoteRejection,
    TranslationMCPError,
    ValidationError,
)
from translation_server_mcp.saving import SaveOptions, SaveOrchestrator, SaveResult
from translation_server_mcp.targets import save_local, save_web
from translation_server_mcp.translation import TranslationClient

__all__ = [
    "mcp",
    "logger",
    "Settings",
    "SaveOptions",
    "SaveOrchestrator",
    "SaveResult",
    "TranslationMCPError",
    "ValidationError",
    "RemoteRejection",
    "RemoteFetchError",
    "ConfigError",
    "translate_web",
    "translate_web_select",
    "translate_search",
    "translate_import",
    "export_items",
    "save_to_zotero",
    "translation_health",
]


def get_settings() -> Settings:
    return Settings.from_env()


def get_translation_client(settings: Settings) -> TranslationClient:
    return TranslationClient(settings)


def get_connector(settings: Settings) -> ConnectorClient:
    return ConnectorClient(settings)


def _compact_json_block(label: str, obj: Any) -> str:
    import json as _json

    try:
        text = _json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return ""
    return f"\n\n### {label}\n```json\n{text}\n```"


def _format_error(prefix: str, e: Exception) -> str:
    """Map common HTTP failures to friendly messages when possible."""
    code = getattr(e, "status_code", None)
    if code is None:
        resp = getattr(e, "response", None)
        code = getattr(resp, "status_code", None)

    helper = ""
    if isinstance(e, ValidationError):
        helper = "Check the tool arguments; nothing was sent."
    elif isinstance(e, ConfigError):
        helper = "Fix the file named by ZOTERO_MCP_CONFIG or unset it."
    elif code == 400:
        helper = "Invalid request body. Check item JSON and field names for the item type."
    elif code == 403:
        helper = "Forbidden. Check API key scopes, or enable the local API in Zotero settings."
    elif code == 404:
        helper = "Endpoint not found. Check the configured base URL and Zotero version."
    elif code == 409:
        helper = "Library is locked. Retry after a short delay."
    elif code == 412:
        helper = "Version mismatch: fetch the latest item and retry with its current version."
    elif code == 413:
        helper = "Request too large or storage quota exceeded (attachments)."
    elif code == 429:
        helper = "Rate limited. Reduce request rate and retry later."
    elif isinstance(code, int) and code >= 500:
        helper = "Server error on the remote side. Is Zotero / translation-server running and healthy?"
    elif code is None and "Connection" in type(e).__name__:
        helper = "Could not connect. Is Zotero / translation-server running?"

    suffix = f"\nHint: {helper}" if helper else ""
    if code:
        return f"{prefix}: HTTP {code}: {e}{suffix}"
    return f"{prefix}: {e}{suffix}"


def _count_entries(output: str, format: str) -> tuple[int, list[str]]:
    """Estimate how many records an export contains."""
    import json as _json

    warnings: list[str] = []
    fmt = format.lower()
    if fmt in {"bibtex", "biblatex"}:
        try:
            return len(bibtexparser.loads(output).entries), warnings
        except Exception as e:  # noqa: BLE001
            warnings.append(f"COUNT_UNAVAILABLE: BibTeX could not be parsed ({e})")
            return 0, warnings
    if fmt == "ris":
        warnings.append("COUNT_HEURISTIC: RIS entry count estimated by 'TY -' lines")
        return len(_re.findall(r"(?m)^TY\s*-", output)), warnings
    if fmt in {"csljson", "csl-json", "json"}:
        try:
            parsed = _json.loads(output)
        except ValueError:
            warnings.append("COUNT_UNAVAILABLE: output is not JSON")
            return 0, warnings
        if isinstance(parsed, list):
            return len(parsed), warnings
        if isinstance(parsed, dict) and isinstance(parsed.get("items"), list):
            return len(parsed["items"]), warnings
        return 1, warnings
    return (1 if output.strip() else 0), warnings


# Create an MCP server
mcp = FastMCP("translation-server-mcp")


def _items_summary(items: Any) -> list[dict[str, Any]]:
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        return []
    out = []
    for it in items:
        if isinstance(it, dict):
            out.append({"itemType": it.get("itemType"), "title": it.get("title")})
    return out


@mcp.tool(
    name="translate_web",
    description="Translate a web page URL to Zotero items using the translation server.",
)
def translate_web(url: str) -> str:
    try:
        res = get_translation_client(get_settings()).translate_web(url)
    except Exception as e:  # noqa: BLE001
        return _format_error("Error translating web page", e)
    if res["status"] == "multiple_choices":
        choices = res.get("items") or {}
        header = (
            f"## Multiple choices\nURL: {res['url']}\nChoices: {len(choices)}\n"
            "Remove unwanted entries from items and call translate_web_select with the session."
        )
        return header + _compact_json_block("result", res)
    header = f"## Translated\nURL: {url}\nItems: {len(_items_summary(res.get('items')))}"
    return header + _compact_json_block("result", res)


@mcp.tool(
    name="translate_web_select",
    description="Complete a multi-choice web translation by posting the selected items map.",
)
def translate_web_select(session: str, items: dict[str, Any], url: str | None = None) -> str:
    try:
        res = get_translation_client(get_settings()).translate_web_select(session, items, url)
    except Exception as e:  # noqa: BLE001
        return _format_error("Error completing web selection", e)
    header = f"## Translated selection\nItems: {len(_items_summary(res.get('items')))}"
    return header + _compact_json_block("result", res)


@mcp.tool(
    name="translate_search",
    description="Translate an identifier (DOI, ISBN, PMID, arXiv) to Zotero items.",
)
def translate_search(identifier: str) -> str:
    try:
        res = get_translation_client(get_settings()).translate_search(identifier.strip())
    except Exception as e:  # noqa: BLE001
        return _format_error("Error translating identifier", e)
    header = f"## Translated\nIdentifier: `{identifier.strip()}`\nItems: {len(_items_summary(res.get('items')))}"
    return header + _compact_json_block("result", res)


@mcp.tool(
    name="translate_import",
    description="Import citation data (RIS/BibTeX/etc.) into Zotero item JSON.",
)
def translate_import(data: str, mimeType: str | None = None) -> str:
    try:
        res = get_translation_client(get_settings()).translate_import(data, mimeType)
    except Exception as e:  # noqa: BLE001
        return _format_error("Error importing citation data", e)
    header = f"## Imported\nItems: {len(_items_summary(res.get('items')))}"
    return header + _compact_json_block("result", res)


@mcp.tool(
    name="export_items",
    description="Export Zotero item JSON to a bibliographic format (RIS, BibTeX, etc.).",
)
def export_items(items: list[dict[str, Any]] | dict[str, Any], format: str) -> str:
    try:
        res = get_translation_client(get_settings()).export_items(items, format)
    except Exception as e:  # noqa: BLE001
        return _format_error("Error exporting items", e)
    output = res["output"]
    count, warnings = _count_entries(output, format)
    header = [
        "# Export",
        f"Format: {format}",
        f"Items: {count}",
    ]
    summary = _compact_json_block("result", {"format": format, "count": count, "warnings": warnings})
    return "\n".join(header) + summary + f"\n\n### Exported content\n```\n{output}\n```"


def _save_result_text(result: SaveResult) -> str:
    data = result.as_dict()
    lines = [
        "## Saved to Zotero (connector)" if result.ok else "## Saved to Zotero (connector) with warnings",
        f"Session: `{result.session_id}`",
        f"Items: {len(result.items)}",
        f"Attachments saved: {result.attachments_saved}",
    ]
    if result.resolver_attempts:
        lines.append(f"Resolver attempts: {result.resolver_attempts}")
    if result.attachment_errors:
        lines.append(f"Attachment errors: {len(result.attachment_errors)}")
    if result.resolver_errors:
        lines.append(f"Resolver errors: {len(result.resolver_errors)}")
    if result.snapshot is not None:
        if "error" in result.snapshot:
            lines.append(f"Snapshot: failed ({result.snapshot['error']})")
        elif result.snapshot.get("skipped"):
            lines.append(f"Snapshot: skipped ({result.snapshot.get('reason')})")
        else:
            lines.append("Snapshot: saved")
    return "\n".join(lines) + _compact_json_block("result", data)


@mcp.tool(
    name="save_to_zotero",
    description=(
        "Save Zotero item JSON to Zotero Desktop (connector/local) or Zotero Web. "
        "The connector target also uploads PDF/EPUB attachments, asks Zotero's attachment resolvers, "
        "folds loose note items into their parent and can store an HTML snapshot."
    ),
)
def save_to_zotero(
    items: list[dict[str, Any]] | dict[str, Any],
    target: Literal["connector", "local", "web"] | None = "connector",
    libraryType: str | None = None,
    libraryId: str | None = None,
    collectionKey: str | None = None,
    sessionID: str | None = None,
    uri: str | None = None,
    cookie: str | None = None,
    detailedCookies: str | None = None,
    proxy: str | None = None,
    clientVersion: str | None = None,
    userAgent: str | None = None,
    saveAttachments: bool | None = None,
    useAttachmentResolvers: bool | None = None,
    saveSnapshot: bool | None = None,
    snapshotUrl: str | None = None,
    snapshotTitle: str | None = None,
    attachmentUrls: list[str] | None = None,
    attachmentTitles: list[str] | None = None,
    attachmentMimeType: str | None = None,
    attachmentItemIndex: int | None = None,
    noteParentIndex: int | None = None,
) -> str:
    """Save items to the chosen Zotero target."""
    args = dict(locals())
    target = target or "connector"
    try:
        settings = get_settings()
        if target == "connector":
            result = SaveOrchestrator(get_connector(settings)).save(items, SaveOptions.from_mapping(args))
            return _save_result_text(result)
        if target == "local":
            res = save_local(items, settings, libraryType, libraryId, collectionKey)
            return "## Saved to Zotero (local API)" + _compact_json_block("result", res)
        if target == "web":
            res = save_web(items, settings, libraryType, libraryId, collectionKey)
            header = (
                f"## Saved to Zotero (web)\nCreated: {len(res['success'])}\n"
                f"Unchanged: {len(res['unchanged'])}\nFailed: {len(res['failed'])}"
            )
            return header + _compact_json_block("result", res)
    except Exception as e:  # noqa: BLE001
        return _format_error(f"Error saving to Zotero ({target})", e)
    return f"Unknown Zotero target: {target}"


@mcp.tool(
    name="translation_health",
    description="Report server health: configuration, translation-server and Zotero connector reachability.",
)
def translation_health() -> str:
    """Return a compact health summary for quick diagnostics."""
    _t0 = time.perf_counter()
    info: dict[str, Any] = {}
    try:
        settings = get_settings()
    except ConfigError as e:
        return _format_error("Health check failed", e)
    info["config"] = settings.describe()
    info["translationServer"] = "ok" if get_translation_client(settings).ping() else "unreachable"
    info["connector"] = "ok" if get_connector(settings).ping() else "unreachable"
    info["logLevel"] = logging.getLevelName(logger.level)
    info["now"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    info["latencyMs"] = round((time.perf_counter() - _t0) * 1000, 1)
    logger.debug(f"health: {info}")
    return "# Health" + _compact_json_block("result", info)
