"""Runtime configuration.

Settings are resolved once (environment, optionally layered over a YAML file
named by ``ZOTERO_MCP_CONFIG``) and handed to every collaborator explicitly.

Environment variables supported:
- TRANSLATION_SERVER_URL / TRANSLATION_SERVER_TIMEOUT_MS
- ZOTERO_CONNECTOR_URL / ZOTERO_CONNECTOR_API_VERSION / ZOTERO_CONNECTOR_CLIENT_VERSION
- ZOTERO_REQUEST_TIMEOUT_MS (metadata calls) / ZOTERO_UPLOAD_TIMEOUT_MS (binary fetch and upload)
- ZOTERO_LOCAL_API_URL / ZOTERO_LOCAL_API_KEY
- ZOTERO_LIBRARY_ID / ZOTERO_LIBRARY_TYPE / ZOTERO_API_KEY (Web API)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from translation_server_mcp.errors import ConfigError

DEFAULT_TRANSLATION_SERVER_URL = "http://127.0.0.1:1969"
DEFAULT_CONNECTOR_URL = "http://127.0.0.1:23119"
DEFAULT_LOCAL_API_URL = "http://127.0.0.1:23119/api"
DEFAULT_CLIENT_VERSION = "translation-server-mcp"
DEFAULT_TIMEOUT_MS = 15000
DEFAULT_UPLOAD_TIMEOUT_MS = 60000


@dataclass(frozen=True)
class Settings:
    translation_server_url: str = DEFAULT_TRANSLATION_SERVER_URL
    translation_timeout: float = DEFAULT_TIMEOUT_MS / 1000
    connector_url: str = DEFAULT_CONNECTOR_URL
    request_timeout: float = DEFAULT_TIMEOUT_MS / 1000
    upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT_MS / 1000
    connector_api_version: int = 3
    client_version: str = DEFAULT_CLIENT_VERSION
    local_api_url: str = DEFAULT_LOCAL_API_URL
    local_api_key: str | None = None
    library_id: str | None = None
    library_type: str = "user"
    api_key: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        base: dict[str, Any] = {}
        cfg_path = env.get("ZOTERO_MCP_CONFIG")
        if cfg_path:
            base = _load_yaml(Path(cfg_path))

        def pick(field: str, var: str) -> Any:
            value = env.get(var)
            if value:
                return value
            return base.get(field)

        return cls(
            translation_server_url=pick("translation_server_url", "TRANSLATION_SERVER_URL")
            or DEFAULT_TRANSLATION_SERVER_URL,
            translation_timeout=_ms_to_seconds(
                env.get("TRANSLATION_SERVER_TIMEOUT_MS"), base.get("translation_timeout"), DEFAULT_TIMEOUT_MS
            ),
            connector_url=pick("connector_url", "ZOTERO_CONNECTOR_URL") or DEFAULT_CONNECTOR_URL,
            request_timeout=_ms_to_seconds(
                env.get("ZOTERO_REQUEST_TIMEOUT_MS"), base.get("request_timeout"), DEFAULT_TIMEOUT_MS
            ),
            upload_timeout=_ms_to_seconds(
                env.get("ZOTERO_UPLOAD_TIMEOUT_MS"), base.get("upload_timeout"), DEFAULT_UPLOAD_TIMEOUT_MS
            ),
            connector_api_version=_as_int(pick("connector_api_version", "ZOTERO_CONNECTOR_API_VERSION"), 3),
            client_version=pick("client_version", "ZOTERO_CONNECTOR_CLIENT_VERSION") or DEFAULT_CLIENT_VERSION,
            local_api_url=pick("local_api_url", "ZOTERO_LOCAL_API_URL") or DEFAULT_LOCAL_API_URL,
            local_api_key=pick("local_api_key", "ZOTERO_LOCAL_API_KEY") or None,
            library_id=_as_str(pick("library_id", "ZOTERO_LIBRARY_ID")),
            library_type=pick("library_type", "ZOTERO_LIBRARY_TYPE") or "user",
            api_key=pick("api_key", "ZOTERO_API_KEY") or None,
        )

    def describe(self) -> dict[str, Any]:
        """Config summary for health output; secrets are masked."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in {"local_api_key", "api_key"}:
                value = "(set)" if value else "(unset)"
            out[f.name] = value
        return out


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def _ms_to_seconds(env_ms: str | None, file_seconds: Any, default_ms: int) -> float:
    # env values are milliseconds, file values are seconds
    try:
        v = float(env_ms or "")
        if v > 0:
            return v / 1000
    except ValueError:
        pass
    try:
        v = float(file_seconds)
        if v > 0:
            return v
    except (TypeError, ValueError):
        pass
    return default_ms / 1000


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
