"""Error envelope helpers shared by HTTP handlers and SSE error events."""

from __future__ import annotations

from typing import Any


def http_status_to_code(status_code: int) -> str:
    """Map an HTTP status to the envelope error code (404 -> E4040)."""
    return f"E{status_code}0"


def build_error_envelope(
    *,
    code: str,
    message: str,
    request_id: str | None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the ``{"error": {...}}`` payload returned on failures."""
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "request_id": request_id,
        }
    }
    if extra:
        payload.update(extra)
    return payload
