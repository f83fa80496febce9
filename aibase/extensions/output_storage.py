"""Storage for large script outputs.

Results too large to hand back to the model are kept here and read back in
pages with ``peek``. Small outputs stay in memory, outputs above the file
threshold are written to ``output/storage/{outputId}.json``. Everything
expires after the configured TTL.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from aibase.config.paths import get_data_paths
from aibase.config.settings import get_settings
from aibase.core.exceptions import OutputNotFoundError
from aibase.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StoredOutputMetadata:
    id: str
    conv_id: str
    tool_call_id: str
    size: int
    type: str  # "memory" | "file"
    stored_at: float
    data_type: str
    row_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def data_type_of(value: Any) -> str:
    """JSON type name of a value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    return "object"


def json_size(value: Any) -> int:
    """Size of the JSON encoding of ``value`` in UTF-8 bytes."""
    return len(json.dumps(value, default=str, ensure_ascii=False).encode("utf-8"))


class OutputStorage:
    """Memory/file store for large outputs with a TTL."""

    def __init__(self, storage_dir: Path, file_threshold: int, ttl_seconds: float):
        self.storage_dir = Path(storage_dir)
        self.file_threshold = file_threshold
        self.ttl_seconds = ttl_seconds
        self._memory: Dict[str, Any] = {}
        self._metadata: Dict[str, StoredOutputMetadata] = {}

    def _file_path(self, output_id: str) -> Path:
        return self.storage_dir / f"{output_id}.json"

    def _is_expired(self, meta: StoredOutputMetadata, now: Optional[float] = None) -> bool:
        return ((now or time.time()) - meta.stored_at) > self.ttl_seconds

    def store_output(self, output: Any, conv_id: str, tool_call_id: str) -> StoredOutputMetadata:
        """Store ``output`` and return its metadata."""
        if isinstance(output, tuple):
            output = list(output)
        output_id = f"{conv_id}-{tool_call_id}-{int(time.time() * 1000)}"
        serialized = json.dumps(output, default=str, ensure_ascii=False)
        size = len(serialized.encode("utf-8"))

        meta = StoredOutputMetadata(
            id=output_id,
            conv_id=conv_id,
            tool_call_id=tool_call_id,
            size=size,
            type="file" if size > self.file_threshold else "memory",
            stored_at=time.time(),
            data_type=data_type_of(output),
            row_count=len(output) if isinstance(output, (list, tuple)) else None,
        )

        if meta.type == "file":
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            self._file_path(output_id).write_text(serialized, encoding="utf-8")
        else:
            self._memory[output_id] = output

        self._metadata[output_id] = meta
        logger.info(
            f"Stored output {output_id}",
            data={"size": size, "type": meta.type, "data_type": meta.data_type},
        )
        return meta

    def get_output_metadata(self, output_id: str) -> Optional[StoredOutputMetadata]:
        meta = self._metadata.get(output_id)
        if meta is not None and self._is_expired(meta):
            self._cleanup_output(output_id)
            return None
        return meta

    def retrieve_output(self, output_id: str) -> Any:
        meta = self.get_output_metadata(output_id)
        if meta is None:
            raise OutputNotFoundError(f"Output not found: {output_id}")

        if meta.type == "memory":
            if output_id not in self._memory:
                raise OutputNotFoundError(f"Output expired: {output_id}")
            return self._memory[output_id]

        path = self._file_path(output_id)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise OutputNotFoundError(f"Output file not found: {output_id}") from exc

    def _cleanup_output(self, output_id: str) -> None:
        meta = self._metadata.pop(output_id, None)
        if meta is None:
            return
        if meta.type == "file":
            self._file_path(output_id).unlink(missing_ok=True)
        else:
            self._memory.pop(output_id, None)

    def clear_conversation_outputs(self, conv_id: str) -> int:
        ids = [m.id for m in self._metadata.values() if m.conv_id == conv_id]
        for output_id in ids:
            self._cleanup_output(output_id)
        return len(ids)

    def clear_expired_outputs(self) -> int:
        now = time.time()
        expired: List[str] = [m.id for m in self._metadata.values() if self._is_expired(m, now)]
        for output_id in expired:
            self._cleanup_output(output_id)
        if expired:
            logger.info(f"Cleared {len(expired)} expired outputs")
        return len(expired)

    async def run_cleanup_loop(self, interval_seconds: float) -> None:
        """Sweep expired outputs forever; cancelled on shutdown."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.clear_expired_outputs()
            except OSError as exc:
                logger.error("Output cleanup failed", data={"error": str(exc)})

    def __len__(self) -> int:
        return len(self._metadata)


_output_storage: Optional[OutputStorage] = None


def get_output_storage() -> OutputStorage:
    """Process-wide output storage built from settings."""
    global _output_storage
    if _output_storage is None:
        settings = get_settings()
        _output_storage = OutputStorage(
            get_data_paths().output_storage_dir,
            file_threshold=settings.output_file_threshold_bytes,
            ttl_seconds=settings.output_ttl_seconds,
        )
    return _output_storage


def reset_output_storage() -> None:
    global _output_storage
    _output_storage = None
