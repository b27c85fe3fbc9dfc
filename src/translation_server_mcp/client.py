from __future__ import annotations

from pyzotero import zotero

from translation_server_mcp.config import Settings
from translation_server_mcp.errors import ValidationError


def get_zotero_client(
    settings: Settings,
    library_id: str | None = None,
    library_type: str | None = None,
) -> zotero.Zotero:
    """Build a pyzotero Web API client from settings, with per-call overrides."""
    lib_id = library_id or settings.library_id
    if not (lib_id and settings.api_key):
        raise ValidationError(
            "Missing credentials for web saves. Set ZOTERO_LIBRARY_ID and ZOTERO_API_KEY (Web API)."
        )
    # pyzotero expects the singular form
    lib_type = (library_type or settings.library_type or "user").rstrip("s")
    return zotero.Zotero(lib_id, lib_type, settings.api_key)
