from __future__ import annotations

import json
from typing import Any


class TranslationMCPError(RuntimeError):
    """Base class for errors raised by translation_server_mcp."""


class ConfigError(TranslationMCPError):
    """Raised when the configuration file cannot be read or parsed."""


class ValidationError(TranslationMCPError, ValueError):
    """Raised when required input is missing or malformed. No network call is attempted."""


class RemoteRejection(TranslationMCPError):
    """A primary remote call answered with an error status."""

    def __init__(self, label: str, status_code: int, body: Any = None) -> None:
        self.label = label
        self.status_code = status_code
        self.body = body
        detail = body if isinstance(body, str) else _dump(body)
        super().__init__(f"{label} failed ({status_code}): {detail}")


class RemoteFetchError(TranslationMCPError):
    """A side-channel fetch or upload answered with an error status."""

    def __init__(self, url: str, status_code: int, message: str | None = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code} for {url}")


class EnrichmentFailure(TranslationMCPError):
    """Non-fatal failure of an attachment, resolver or snapshot step."""

    def __init__(self, stage: str, target: str, message: str) -> None:
        self.stage = stage
        self.target = target
        self.message = message
        super().__init__(f"{stage} failed for {target}: {message}")


def _dump(body: Any) -> str:
    try:
        return json.dumps(body, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(body)
