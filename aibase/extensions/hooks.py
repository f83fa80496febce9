"""Extension hook system.

Extensions register callbacks for platform events while they are evaluated.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from aibase.core.logging import get_logger

logger = get_logger(__name__)


class HookType(str, Enum):
    """Hook types."""
    AFTER_FILE_UPLOAD = "after_file_upload"


@dataclass
class FileUploadContext:
    """Payload passed to ``after_file_upload`` hooks."""
    conv_id: str
    project_id: str
    file_name: str
    file_path: str
    file_type: str
    file_size: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExtensionHookRegistry:
    """Registry of extension callbacks keyed by hook type."""

    def __init__(self) -> None:
        self._hooks: Dict[HookType, List[Tuple[str, Callable]]] = {}

    def register_hook(self, hook_type: HookType | str, extension_id: str, callback: Callable) -> None:
        """Register a hook; one callback per extension and hook type."""
        hook_type = HookType(hook_type)
        hooks = self._hooks.setdefault(hook_type, [])

        if any(ext_id == extension_id for ext_id, _ in hooks):
            logger.debug(
                "Extension hook already registered, skipping",
                data={"type": hook_type.value, "extension_id": extension_id},
            )
            return

        hooks.append((extension_id, callback))
        logger.info(
            "Extension hook registered",
            data={"type": hook_type.value, "extension_id": extension_id},
        )

    def unregister_extension_hooks(self, extension_id: str) -> None:
        for hook_type, hooks in self._hooks.items():
            kept = [(ext_id, cb) for ext_id, cb in hooks if ext_id != extension_id]
            if len(kept) != len(hooks):
                logger.info(
                    "Extension hook unregistered",
                    data={"type": hook_type.value, "extension_id": extension_id},
                )
            hooks[:] = kept

    def hook_count(self, hook_type: HookType | str) -> int:
        return len(self._hooks.get(HookType(hook_type), []))

    def has_hook(self, hook_type: HookType | str, extension_id: str) -> bool:
        return any(ext_id == extension_id for ext_id, _ in self._hooks.get(HookType(hook_type), []))

    async def _run_one(self, hook_type: HookType, extension_id: str, callback: Callable, context: Any) -> Optional[Dict[str, Any]]:
        try:
            if inspect.iscoroutinefunction(callback):
                result = await callback(context)
            else:
                result = await asyncio.to_thread(callback, context)
                if inspect.isawaitable(result):
                    result = await result
        except Exception as exc:
            logger.error(
                "Hook execution failed",
                data={"type": hook_type.value, "extension_id": extension_id, "error": str(exc)},
            )
            return None

        if result:
            logger.debug("Hook executed", data={"type": hook_type.value, "extension_id": extension_id})
            return result
        return None

    async def execute_hook(
        self,
        hook_type: HookType | str,
        context: Any,
        extension_ids: Optional[Iterable[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Run every callback of ``hook_type`` concurrently.

        When ``extension_ids`` is given only those extensions' callbacks run.
        Failures are logged per hook. Returns the first non-empty dict result,
        or None.
        """
        hook_type = HookType(hook_type)
        hooks = list(self._hooks.get(hook_type, []))
        if extension_ids is not None:
            selected = set(extension_ids)
            hooks = [(ext_id, cb) for ext_id, cb in hooks if ext_id in selected]
        if not hooks:
            return None

        logger.debug("Executing extension hooks", data={"type": hook_type.value, "hook_count": len(hooks)})
        results = await asyncio.gather(
            *(self._run_one(hook_type, ext_id, cb, context) for ext_id, cb in hooks)
        )
        for result in results:
            if isinstance(result, dict) and result:
                return result
        return None

    def clear_all(self) -> None:
        self._hooks.clear()


extension_hook_registry = ExtensionHookRegistry()
