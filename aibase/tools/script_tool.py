"""Script Tool.

Runs Python script bodies through ``ScriptRuntime`` with the project's
extensions loaded. Failures are reported to the caller as an error result
instead of being raised.
"""

from __future__ import annotations

import inspect
import json
from typing import Any, Dict, Optional

from aibase.config.settings import get_settings
from aibase.core.exceptions import AIBaseException, ToolError
from aibase.core.logging import get_logger
from aibase.extensions.loader import ExtensionLoader
from aibase.extensions.output_storage import OutputStorage, data_type_of, get_output_storage
from aibase.extensions.peek import format_bytes
from aibase.extensions.runtime import Broadcast, ScriptContext, ScriptRuntime, context_text
from aibase.tools.base import Tool, ToolContext

logger = get_logger(__name__)


def fix_escape_sequences(code: str) -> str:
    """Turn literal ``\\n``/``\\t``/``\\r`` sequences into real characters."""
    return code.replace("\\n", "\n").replace("\\t", "\t").replace("\\r", "\r")


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, AIBaseException):
        return exc.message
    if isinstance(exc, SyntaxError):
        return f"SyntaxError: {exc.msg} (line {exc.lineno})"
    return str(exc) or type(exc).__name__


class ScriptTool(Tool):
    name = "script"
    description = (
        "Execute Python code with programmatic access to other tools. "
        "Use for batch operations, complex workflows, data transformations, SQL queries and web requests. "
        "Available functions: progress(message, data=None), memory.read(category, key), fetch(url), "
        "peek(output_id, offset, limit), peek_info(output_id), project extension functions, "
        "and all registered tools as async functions.\n"
        "SECURITY REQUIREMENT: NEVER hardcode credentials in script code. Store them with the memory "
        "tool and read them with memory.read(category, key).\n"
        "Context variables: conv_id, project_id, tenant_id, CURRENT_UID (empty string when unauthenticated)."
    )
    parameters = {
        "type": "object",
        "properties": {
            "purpose": {
                "type": "string",
                "description": "A one-sentence description of what this script does.",
            },
            "code": {
                "type": "string",
                "description": (
                    "Python code executed as the body of an async function. Use real newlines, "
                    "never \\n escape sequences. Use `await` for tools and extension functions and "
                    "`return` the result."
                ),
            },
        },
        "required": ["purpose", "code"],
    }

    def __init__(
        self,
        context: ToolContext,
        loader: ExtensionLoader,
        output_storage: Optional[OutputStorage] = None,
    ):
        super().__init__(context)
        self.loader = loader
        self.output_storage = output_storage
        self.settings = get_settings()
        self.tools: Dict[str, Tool] = {}
        self.broadcast: Optional[Broadcast] = None
        self.tool_call_id: Optional[str] = None

    def configure(
        self,
        tools: Optional[Dict[str, Tool]] = None,
        broadcast: Optional[Broadcast] = None,
        tool_call_id: Optional[str] = None,
    ) -> "ScriptTool":
        if tools is not None:
            self.tools = tools
        if broadcast is not None:
            self.broadcast = broadcast
        if tool_call_id is not None:
            self.tool_call_id = tool_call_id
        return self

    @staticmethod
    def context_text() -> str:
        return context_text()

    async def _emit(self, status: str, args: Dict[str, Any], result: Any) -> None:
        outcome = self.broadcast(
            "tool_call",
            {
                "tool_call_id": self.tool_call_id,
                "tool_name": self.name,
                "args": args,
                "status": status,
                "result": result,
            },
        )
        if inspect.isawaitable(outcome):
            await outcome

    def handle_large_result(self, result: Any) -> Any:
        """Store results over the size limit and return a truncated view."""
        if result is None:
            return result
        if isinstance(result, tuple):
            result = list(result)
        max_size = self.settings.script_max_result_bytes

        try:
            serialized = json.dumps(result, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.warning(f"Could not serialize result for size check: {exc}")
            return result

        size = len(serialized.encode("utf-8"))
        if size <= max_size:
            return result

        logger.info(f"Result too large ({size} bytes > {max_size} bytes), storing and truncating")
        storage = self.output_storage or get_output_storage()
        meta = storage.store_output(result, self.context.conv_id, self.tool_call_id)

        if isinstance(result, list):
            shown = int(max_size // (size / len(result))) if result else 0
            data: Any = result[:shown]
            summary = f"[Array truncated: showing {shown} of {len(result)} items]"
        elif isinstance(result, str):
            shown = max_size // 2
            data = result[:shown] + "..."
            summary = f"[String truncated: showing {shown} of {len(result)} characters]"
        elif isinstance(result, dict):
            keys = list(result)[:5]
            data = {k: result[k] for k in keys}
            summary = f"[Object truncated: showing {len(keys)} of {len(result)} keys]"
        else:
            data = result
            summary = ""

        return {
            "_truncated": True,
            "_output_id": meta.id,
            "_total_size": size,
            "_total_size_formatted": format_bytes(size),
            "_data_type": data_type_of(result),
            "_row_count": meta.row_count,
            "_summary": summary,
            "_message": (
                f"Output was too large ({format_bytes(size)}) and has been stored. "
                f"Use peek('{meta.id}', offset, limit) in a new script to retrieve specific portions of the data."
            ),
            "data": data,
        }

    def _runtime(self, args: Dict[str, Any], code: str, extensions: Dict[str, Any]) -> ScriptRuntime:
        return ScriptRuntime(
            ScriptContext(
                conv_id=self.context.conv_id,
                project_id=self.context.project_id,
                tenant_id=self.context.tenant_id,
                user_id=self.context.user_id,
                tools=self.tools,
                broadcast=self.broadcast,
                tool_call_id=self.tool_call_id,
                purpose=args.get("purpose", ""),
                code=code,
                extensions=extensions,
            )
        )

    async def execute(self, args: Dict[str, Any]) -> Any:
        if self.broadcast is None or not self.tool_call_id:
            raise ToolError("Script tool not properly configured. Missing broadcast or tool_call_id.", tool=self.name)

        code = args.get("code") or ""
        purpose = args.get("purpose", "")
        await self._emit("executing", args, {"purpose": purpose, "code": code})

        try:
            extensions = await self.loader.load_extensions(
                self.context.project_id,
                self.context.tenant_id,
                use_defaults=self.settings.use_default_extensions,
            )

            try:
                result = await self._runtime(args, code, extensions).execute(code)
            except SyntaxError:
                if "\\n" not in code:
                    raise
                logger.warning(
                    "Script failed to compile and contains literal \\n, retrying with escape sequences fixed",
                    data={"code_head": code[:200]},
                )
                fixed = fix_escape_sequences(code)
                result = await self._runtime(args, fixed, extensions).execute(fixed)

            if isinstance(result, dict) and result.get("error"):
                raise ToolError(str(result["error"]), tool=self.name)

            result = self.handle_large_result(result)
            await self._emit("complete", args, result)
            return result
        except Exception as exc:
            logger.warning(
                "Script execution failed",
                data={"tool_call_id": self.tool_call_id, "error": _error_message(exc)},
            )
            error_result = {"__error": True, "error": _error_message(exc), "purpose": purpose}
            await self._emit("error", args, error_result)
            return error_result
