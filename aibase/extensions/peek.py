"""Paged access to stored outputs."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Dict, Optional

from aibase.core.exceptions import OutputNotFoundError
from aibase.extensions.output_storage import OutputStorage, get_output_storage

SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_bytes(size: int) -> str:
    """Human readable size (``1536`` -> ``1.5 KB``)."""
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    i = 0
    while value >= 1024 and i < len(SIZE_UNITS) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {SIZE_UNITS[i]}"


def peek(
    output_id: str,
    offset: int = 0,
    limit: int = 100,
    storage: Optional[OutputStorage] = None,
) -> Dict[str, Any]:
    """Return ``limit`` items of a stored output starting at ``offset``.

    Arrays and strings are sliced, objects are paged by key, other values
    are returned whole.
    """
    if offset < 0:
        raise ValueError("Offset must be non-negative")
    if limit <= 0:
        raise ValueError("Limit must be positive")

    storage = storage or get_output_storage()
    meta = storage.get_output_metadata(output_id)
    if meta is None:
        raise OutputNotFoundError(f"Output not found: {output_id}")
    full = storage.retrieve_output(output_id)
    if isinstance(full, tuple):
        full = list(full)

    if isinstance(full, (list, str)):
        end = min(offset + limit, len(full))
        data = full[offset:end]
        returned = len(data)
        has_more = end < len(full)
    elif isinstance(full, dict):
        keys = list(full.keys())
        end = min(offset + limit, len(keys))
        data = {k: full[k] for k in keys[offset:end]}
        returned = len(data)
        has_more = end < len(keys)
    else:
        data = full
        returned = 1
        has_more = False

    return {
        "output_id": output_id,
        "data": data,
        "metadata": {
            "total_size": meta.size,
            "data_type": meta.data_type,
            "row_count": meta.row_count,
            "requested_offset": offset,
            "requested_limit": limit,
            "actual_returned": returned,
            "has_more": has_more,
        },
    }


def peek_info(output_id: str, storage: Optional[OutputStorage] = None) -> Dict[str, Any]:
    """Summary of a stored output without reading its data."""
    storage = storage or get_output_storage()
    meta = storage.get_output_metadata(output_id)
    if meta is None:
        raise OutputNotFoundError(f"Output not found: {output_id}")

    return {
        "output_id": meta.id,
        "total_size": meta.size,
        "size_formatted": format_bytes(meta.size),
        "data_type": meta.data_type,
        "row_count": meta.row_count,
        "storage_type": meta.type,
        "stored_at": datetime.fromtimestamp(meta.stored_at, UTC).isoformat(),
    }
