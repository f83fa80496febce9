"""Script runtime.

Runs an LLM-authored Python script body with registered tools, helper
functions and extension namespaces injected into its scope. The body is
compiled as ``async def __script__()`` so top-level ``await`` and
``return`` work.

Extension code reaches the active run through ``broadcast_inspection`` and
``register_visualization``, which resolve the runtime from a context
variable.
"""

from __future__ import annotations

import ast
import asyncio
import inspect
import json
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

import httpx

from aibase.config.paths import TenantId
from aibase.config.settings import get_settings
from aibase.core.exceptions import ScriptExecutionError, ToolError
from aibase.core.logging import get_logger
from aibase.extensions.peek import format_bytes, peek, peek_info

if TYPE_CHECKING:
    from aibase.tools.base import Tool

logger = get_logger(__name__)
script_logger = get_logger("aibase.script")

Broadcast = Callable[[str, Dict[str, Any]], Any]

# Tools that are not exposed as plain functions inside scripts.
EXCLUDED_TOOLS = {"script", "memory"}

_SCRIPT_TEMPLATE = "async def __script__():\n    pass\n"

current_runtime: ContextVar[Optional["ScriptRuntime"]] = ContextVar("current_runtime", default=None)


@dataclass
class ScriptContext:
    """Everything a script run needs to know about its caller."""
    conv_id: str
    project_id: str
    tenant_id: TenantId = "default"
    user_id: Union[int, str, None] = ""
    tools: Dict[str, Tool] = field(default_factory=dict)
    broadcast: Optional[Broadcast] = None
    tool_call_id: str = ""
    purpose: str = ""
    code: str = ""
    extensions: Dict[str, Any] = field(default_factory=dict)


def compile_script(code: str):
    """Compile a script body into a module defining ``async def __script__()``."""
    body = ast.parse(code, filename="<script>", mode="exec").body
    module = ast.parse(_SCRIPT_TEMPLATE, filename="<script>", mode="exec")
    func = module.body[0]
    func.body = body or [ast.Pass()]
    ast.fix_missing_locations(module)
    return compile(module, "<script>", "exec")


def summarize_data(data: Any, size: int) -> str:
    if isinstance(data, (list, tuple)):
        return f"[Array with {len(data)} items, {format_bytes(size)}]"
    if isinstance(data, str):
        return f"[String with {len(data)} characters, {format_bytes(size)}]"
    if isinstance(data, dict):
        return f"[Object with {len(data)} keys, {format_bytes(size)}]"
    return f"[{type(data).__name__}, {format_bytes(size)}]"


def make_visualization(viz_type: str, args: Any, tool_call_id: Optional[str] = None) -> Dict[str, Any]:
    stamp = int(time.time() * 1000)
    return {
        "type": viz_type,
        "tool_call_id": f"{tool_call_id}_{viz_type}_{stamp}" if tool_call_id else f"call_{stamp}_{viz_type}",
        "args": args,
    }


def extract_visualizations(result: Any) -> List[Dict[str, Any]]:
    """Visualizations carried by a script result."""
    if not isinstance(result, dict):
        return []
    if result.get("__visualizations"):
        found = result["__visualizations"]
        return list(found) if isinstance(found, (list, tuple)) else [found]
    if result.get("__visualization"):
        return [result["__visualization"]]
    return []


class _MemoryAccessor:
    """``memory`` inside scripts: awaitable tool call plus synchronous ``read``."""

    def __init__(self, runtime: "ScriptRuntime", tool: Optional[Tool]):
        self._runtime = runtime
        self._tool = tool

    async def __call__(self, args: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        if self._tool is None:
            raise ToolError("Memory tool not available", tool="memory")
        return await self._runtime.create_tool_function("memory", self._tool)(args, **kwargs)

    def read(self, category: str, key: str) -> Any:
        if self._tool is None:
            raise ToolError("Memory tool not available", tool="memory")
        return self._tool.read(category, key)


class ScriptRuntime:
    """Execute script bodies with a controlled scope."""

    def __init__(self, context: ScriptContext):
        self.context = context
        self.settings = get_settings()
        self.collected_visualizations: List[Dict[str, Any]] = []
        self._http: Optional[httpx.AsyncClient] = None
        self._pending: List[asyncio.Future] = []

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------

    def _broadcast(self, kind: str, data: Dict[str, Any]) -> None:
        if self.context.broadcast is None:
            return
        outcome = self.context.broadcast(kind, data)
        if inspect.isawaitable(outcome):
            # Async broadcasters are awaited before execute() returns.
            self._pending.append(asyncio.ensure_future(outcome))

    async def flush_broadcasts(self) -> None:
        """Wait for scheduled async broadcasts, logging the ones that failed."""
        pending, self._pending = self._pending, []
        if not pending:
            return
        for outcome in await asyncio.gather(*pending, return_exceptions=True):
            if isinstance(outcome, BaseException):
                logger.warning("Broadcast failed", data={"error": str(outcome)})

    def _script_event(self, status: str, result: Any) -> Dict[str, Any]:
        return {
            "tool_call_id": self.context.tool_call_id,
            "tool_name": "script",
            "args": {"purpose": self.context.purpose, "code": self.context.code},
            "status": status,
            "result": result,
        }

    def progress(self, message: str, data: Any = None) -> None:
        """Send a progress update; payloads over the limit are summarized."""
        limit = self.settings.script_progress_max_bytes
        payload_data = data
        size = 0
        try:
            size = len(json.dumps({"message": message, "data": data}).encode("utf-8"))
        except (TypeError, ValueError) as exc:
            logger.warning("Could not serialize progress data, sending message only", data={"error": str(exc)})
            payload_data = None

        if payload_data is not None and size > limit:
            logger.warning(f"Progress data too large ({size} bytes > {limit} bytes), truncating data")
            payload_data = {
                "_truncated": True,
                "_original_size": size,
                "_summary": summarize_data(data, size),
            }

        self._broadcast("tool_call", self._script_event("progress", {"message": message, "data": payload_data}))

    def broadcast_inspection(self, extension_id: str, data: Any) -> None:
        self._broadcast(
            "tool_call",
            self._script_event("inspection", {"__inspection_data": {"extension_id": extension_id, "data": data}}),
        )

    def register_visualization(self, viz_type: str, args: Any) -> Dict[str, Any]:
        visualization = make_visualization(viz_type, args, self.context.tool_call_id)
        self.record_visualization(visualization)
        return {"__visualization": visualization}

    def record_visualization(self, visualization: Dict[str, Any]) -> None:
        """Add an already built visualization (e.g. one made in a worker process)."""
        self.collected_visualizations.append(visualization)
        logger.debug(
            f"Registered visualization: type={visualization.get('type')}",
            data={"total": len(self.collected_visualizations)},
        )

    # ------------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------------

    def create_tool_function(self, name: str, tool: Tool):
        async def call_tool(args: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
            call_args = dict(args or {}, **kwargs)
            sub_id = f"{self.context.tool_call_id}-{name}-{int(time.time() * 1000)}"
            self._broadcast("tool_call", {"tool_call_id": sub_id, "tool_name": name, "args": call_args, "status": "start"})
            try:
                result = await tool.execute(call_args)
            except Exception as exc:
                self._broadcast(
                    "tool_call",
                    {"tool_call_id": sub_id, "tool_name": name, "args": call_args, "status": "error", "error": str(exc)},
                )
                raise
            self._broadcast("tool_result", {"tool_call_id": sub_id, "result": result})
            return result

        call_tool.__name__ = name
        return call_tool

    async def fetch(self, url: str, method: str = "GET", **kwargs) -> httpx.Response:
        """HTTP request to a web URL (http/https only)."""
        scheme = urlparse(url).scheme.lower()
        if scheme not in ("http", "https"):
            raise ValueError(f"fetch only supports http(s) URLs, got: {url!r}")
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.http_timeout_seconds, follow_redirects=True)
        return await self._http.request(method.upper(), url, **kwargs)

    def build_scope(self) -> Dict[str, Any]:
        ctx = self.context
        scope: Dict[str, Any] = {
            "__builtins__": __builtins__,
            "__name__": "__script__",
            "conv_id": ctx.conv_id,
            "project_id": ctx.project_id,
            "tenant_id": ctx.tenant_id,
            "CURRENT_UID": "" if ctx.user_id is None else str(ctx.user_id),
            "logger": script_logger,
            "fetch": self.fetch,
            "progress": self.progress,
            "memory": _MemoryAccessor(self, ctx.tools.get("memory")),
            "peek": peek,
            "peek_info": peek_info,
            "__broadcast_inspection": self.broadcast_inspection,
            "__register_visualization": self.register_visualization,
        }

        for name, tool in ctx.tools.items():
            if name in EXCLUDED_TOOLS:
                continue
            scope[name] = self.create_tool_function(name, tool)

        if ctx.extensions:
            scope.update(ctx.extensions)
            logger.debug(f"Loaded {len(ctx.extensions)} extension namespaces into script scope")
        return scope

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, code: str) -> Any:
        """Run ``code`` and return its value, with visualizations merged in."""
        self.collected_visualizations = []
        compiled = compile_script(code)
        scope = self.build_scope()
        exec(compiled, scope)
        script = scope["__script__"]

        token = current_runtime.set(self)
        try:
            logger.info("Executing script", data={"tool_call_id": self.context.tool_call_id})
            try:
                result = await asyncio.wait_for(script(), timeout=self.settings.script_timeout_seconds)
            except asyncio.TimeoutError as exc:
                raise ScriptExecutionError(
                    f"Script timed out after {self.settings.script_timeout_seconds:g}s"
                ) from exc
        finally:
            current_runtime.reset(token)
            if self._http is not None:
                await self._http.aclose()
                self._http = None
            await self.flush_broadcasts()

        seen = {v.get("tool_call_id") for v in self.collected_visualizations}
        visualizations = self.collected_visualizations + [
            v for v in extract_visualizations(result)
            if not (isinstance(v, dict) and v.get("tool_call_id") in seen)
        ]
        if not visualizations:
            return result
        if not isinstance(result, dict):
            result = {"result": result}
        return {**result, "__visualizations": visualizations}


def broadcast_inspection(extension_id: str, data: Any) -> None:
    """Send inspection data for the active script run, if any."""
    runtime = current_runtime.get()
    if runtime is not None:
        runtime.broadcast_inspection(extension_id, data)


def register_visualization(viz_type: str, args: Any) -> Dict[str, Any]:
    """Register a visualization with the active script run."""
    runtime = current_runtime.get()
    if runtime is not None:
        return runtime.register_visualization(viz_type, args)
    return {"__visualization": make_visualization(viz_type, args)}


def current_context() -> Optional[ScriptContext]:
    runtime = current_runtime.get()
    return runtime.context if runtime is not None else None


def context_text() -> str:
    """Guidance for the model on writing scripts."""
    return """## SCRIPT TOOL - Execute Python with fetch, tools, and context

Use for: API calls, batch operations, complex workflows, data transformations.

**Code runs as the BODY of an async function:**
- CORRECT: `return {"result": data}`
- CORRECT: `res = await fetch(url); return res.json()`
- WRONG: defining a module with `if __name__ == "__main__":`

Always use real newlines between statements, never `\\n` escape sequences.

### Examples

```python
progress("Fetching...")
res = await fetch("https://wttr.in/Cirebon?format=j1")
curr = res.json()["current_condition"][0]
return {"temp": curr["temp_C"] + "C", "humidity": curr["humidity"] + "%"}
```

```python
await memory({"action": "set", "category": "api", "key": "openai", "value": "sk-..."})
key = memory.read("api", "openai")
await todo({"action": "add", "texts": ["Task 1", "Task 2"]})
```

**Available built-ins:**
- `fetch(url, method="GET", **kwargs)` - HTTP(S) request, returns an httpx response (`.json()`, `.text`, `.status_code`)
- `progress(message, data=None)` - status update for the UI (data over 3KB is summarized)
- `memory.read(category, key)` - read stored values (credentials, URLs)
- `memory({action, category, key, value})` - set/remove values
- `todo({action, ...})` - manage the conversation todo list
- `peek(output_id, offset, limit)` - read large stored results in pages; results over 50KB come back as `{"_truncated": True, "_output_id": ...}`
- `peek_info(output_id)` - size/row count of a stored result
- `conv_id`, `project_id`, `tenant_id`, `CURRENT_UID` - context values
- `logger` - server-side logs only, not visible to you

Project extension functions are available too (see "Project Extensions").

**SECURITY:** never hardcode credentials in script code. Store them with `memory` and read them with `memory.read(category, key)`."""
