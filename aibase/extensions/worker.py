"""Isolated extension workers.

Each extension may run inside its own worker process. The parent talks to
the child over a ``multiprocessing`` pipe with small dict messages:

    request:  {id, type: "evaluate" | "call" | "hook" | "shutdown", extension_id,
               fingerprint?, code?, dependencies?, metadata?,
               function?, args?, kwargs?, tool_call_id?, hook_type?, context?}
    response: {id, type: "result" | "error", result?, error?}

An ``evaluate`` result is ``{exports, hooks}``: the export manifest and the
hook types the extension registered, which the parent registers as proxies.

A ``call`` result is ``{value, visualizations, inspections}``: whatever the
export registered through ``register_visualization`` or
``broadcast_inspection`` is carried back and replayed into the active
script run in the parent.

Every evaluated source is identified by a fingerprint of its code and
dependencies. Calls name the fingerprint they were created for; when the
process holds a different source (another evaluation, or a fresh process
after a timeout) that source is evaluated again before the call runs.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
import multiprocessing
import time
import uuid
from collections import OrderedDict
from multiprocessing.connection import Connection
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from aibase.config.settings import get_settings
from aibase.core.exceptions import ExtensionTimeoutError, ExtensionWorkerError
from aibase.core.logging import get_logger
from aibase.extensions.bundler import DependencyRequest, import_distribution
from aibase.extensions.evaluation import (
    collect_exports,
    describe_exports,
    execute_source,
    to_jsonable,
)
from aibase.extensions.hooks import HookType
from aibase.extensions.runtime import current_runtime, make_visualization

logger = get_logger(__name__)

_mp = multiprocessing.get_context("spawn")

# Evaluated sources remembered per worker for re-evaluation.
MAX_SOURCES = 8


def source_fingerprint(code: str, dependencies: Optional[Dict[str, str]] = None) -> str:
    """Stable identifier of an extension source and its declared dependencies."""
    payload = json.dumps({"code": code, "dependencies": dependencies or {}}, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Child side
# ---------------------------------------------------------------------------


class _CallRecorder:
    """Collects what an export reports to the script run while it runs in the worker."""

    def __init__(self, tool_call_id: Optional[str]):
        self.tool_call_id = tool_call_id or None
        self.visualizations: List[Dict[str, Any]] = []
        self.inspections: List[Dict[str, Any]] = []

    def register_visualization(self, viz_type: str, args: Any) -> Dict[str, Any]:
        visualization = make_visualization(viz_type, to_jsonable(args), self.tool_call_id)
        self.visualizations.append(visualization)
        return {"__visualization": visualization}

    def broadcast_inspection(self, extension_id: str, data: Any) -> None:
        self.inspections.append({"extension_id": extension_id, "data": to_jsonable(data)})


class _RecordingHookRegistry:
    """Keeps the hooks an extension registers inside the worker."""

    def __init__(self) -> None:
        self.hooks: Dict[str, Callable] = {}

    def register_hook(self, hook_type, callback, extension_id: Optional[str] = None) -> None:
        self.hooks.setdefault(HookType(hook_type).value, callback)

    def unregister_extension_hooks(self, extension_id: Optional[str] = None) -> None:
        self.hooks.clear()


class _WorkerState:
    def __init__(self) -> None:
        self.dependency_cache: Dict[str, Any] = {}
        self.exports: Dict[str, Any] = {}
        self.hooks: Dict[str, Callable] = {}
        self.loop = asyncio.new_event_loop()

    def load_dependencies(self, dependencies: Dict[str, str]) -> Dict[str, Any]:
        loaded: Dict[str, Any] = {}
        for name, version in (dependencies or {}).items():
            req = DependencyRequest(name, version)
            if req.cache_key not in self.dependency_cache:
                try:
                    _, _, module = import_distribution(req)
                except (LookupError, ImportError) as exc:
                    raise RuntimeError(f"Failed to load dependency {name}@{version}: {exc}") from exc
                self.dependency_cache[req.cache_key] = module
            loaded[name] = self.dependency_cache[req.cache_key]
        return loaded

    def evaluate(self, message: Dict[str, Any]) -> Dict[str, Any]:
        code = message.get("code")
        if not code:
            raise ValueError("No code provided for evaluation")
        deps = self.load_dependencies(message.get("dependencies") or {})
        hooks = _RecordingHookRegistry()
        module_globals = execute_source(code, message.get("extension_id") or "unknown", deps, hook_registry=hooks)
        self.exports = collect_exports(module_globals)
        self.hooks = hooks.hooks

        manifest = describe_exports(self.exports)
        for name, entry in manifest.items():
            if not entry["callable"]:
                entry["value"] = to_jsonable(self.exports[name])
        return {"exports": manifest, "hooks": sorted(self.hooks)}

    def _await(self, result: Any) -> Any:
        if inspect.isawaitable(result):
            return self.loop.run_until_complete(result)
        return result

    def hook(self, message: Dict[str, Any]) -> Any:
        callback = self.hooks.get(message.get("hook_type"))
        if callback is None:
            return None
        return to_jsonable(self._await(callback(message.get("context"))))

    def call(self, message: Dict[str, Any]) -> Dict[str, Any]:
        name = message.get("function")
        fn = self.exports.get(name)
        if not callable(fn):
            raise ValueError(f"Extension has no callable export '{name}'")

        recorder = _CallRecorder(message.get("tool_call_id"))
        token = current_runtime.set(recorder)
        try:
            result = self._await(fn(*(message.get("args") or ()), **(message.get("kwargs") or {})))
        finally:
            current_runtime.reset(token)
        return {
            "value": to_jsonable(result),
            "visualizations": recorder.visualizations,
            "inspections": recorder.inspections,
        }


def worker_main(conn: Connection) -> None:
    """Entry point of a worker process."""
    state = _WorkerState()
    try:
        while True:
            try:
                message = conn.recv()
            except EOFError:
                break

            response: Dict[str, Any] = {"id": message.get("id"), "type": "result"}
            kind = message.get("type")
            if kind == "shutdown":
                conn.send(response)
                break
            try:
                if kind == "evaluate":
                    response["result"] = state.evaluate(message)
                elif kind == "call":
                    response["result"] = state.call(message)
                elif kind == "hook":
                    response["result"] = state.hook(message)
                else:
                    raise ValueError(f"Unknown message type: {kind}")
            except Exception as exc:
                response = {"id": message.get("id"), "type": "error", "error": f"{type(exc).__name__}: {exc}"}
            conn.send(response)
    finally:
        state.loop.close()
        conn.close()


# ---------------------------------------------------------------------------
# Parent side
# ---------------------------------------------------------------------------


class ExtensionWorker:
    """Parent-side handle for one extension's worker process."""

    def __init__(self, extension_id: str, timeout: float = 30.0):
        self.extension_id = extension_id
        self.timeout = timeout
        self._process: Optional[multiprocessing.process.BaseProcess] = None
        self._conn: Optional[Connection] = None
        self._lock = asyncio.Lock()
        self._sources: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._latest: Optional[str] = None
        # Fingerprint of the source evaluated in the live process.
        self._loaded: Optional[str] = None

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def _spawn(self) -> None:
        self._kill()
        parent_conn, child_conn = _mp.Pipe()
        process = _mp.Process(
            target=worker_main,
            args=(child_conn,),
            name=f"aibase-ext-{self.extension_id}",
            daemon=True,
        )
        process.start()
        child_conn.close()
        self._process = process
        self._conn = parent_conn
        logger.info(f"Spawned worker for extension '{self.extension_id}'", data={"pid": process.pid})

    def _interrupt(self) -> None:
        """Stop the process without touching the pipe a request thread may be reading."""
        if self._process is not None and self._process.is_alive():
            self._process.terminate()

    def _kill(self) -> None:
        if self._process is not None and self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=5)
        if self._conn is not None:
            self._conn.close()
        self._process = None
        self._conn = None
        self._loaded = None

    def _remember(self, fingerprint: str, message: Dict[str, Any]) -> None:
        self._sources[fingerprint] = message
        self._sources.move_to_end(fingerprint)
        while len(self._sources) > MAX_SOURCES:
            self._sources.popitem(last=False)
        self._latest = fingerprint

    def _load(self, fingerprint: Optional[str]) -> Optional[Dict[str, Any]]:
        """Evaluate ``fingerprint``'s source unless the process already holds it.

        Returns the error response when evaluation fails.
        """
        if fingerprint is None:
            raise ExtensionWorkerError(f"Extension '{self.extension_id}' has not been evaluated")
        if self._loaded == fingerprint:
            return None
        source = self._sources.get(fingerprint)
        if source is None:
            raise ExtensionWorkerError(f"Source of extension '{self.extension_id}' is no longer loaded")
        response = self._exchange(dict(source, id=uuid.uuid4().hex))
        if response.get("type") == "error":
            return response
        self._loaded = fingerprint
        return None

    def _roundtrip(self, message: Dict[str, Any]) -> Dict[str, Any]:
        if not self.is_alive:
            self._spawn()

        kind = message.get("type")
        if kind == "evaluate":
            response = self._exchange(message)
            if response.get("type") != "error":
                fingerprint = message["fingerprint"]
                self._remember(fingerprint, {k: v for k, v in message.items() if k != "id"})
                self._loaded = fingerprint
            return response

        if kind in ("call", "hook"):
            failed = self._load(message.get("fingerprint") or self._latest)
            if failed is not None:
                return failed
        return self._exchange(message)

    def _exchange(self, message: Dict[str, Any]) -> Dict[str, Any]:
        if self._conn is None:
            raise ExtensionWorkerError(f"Worker for '{self.extension_id}' is not running")
        self._conn.send(message)
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not self._conn.poll(remaining):
                self._kill()
                raise ExtensionTimeoutError(f"Execution timeout after {int(self.timeout * 1000)}ms")
            try:
                response = self._conn.recv()
            except EOFError as exc:
                self._kill()
                raise ExtensionWorkerError(f"Worker for '{self.extension_id}' exited unexpectedly") from exc
            if response.get("id") == message.get("id"):
                return response
            logger.warning(
                f"Discarding stale response from worker '{self.extension_id}'",
                data={"expected": message.get("id"), "received": response.get("id")},
            )

    async def request(self, message: Dict[str, Any]) -> Any:
        """Send one request and return the ``result`` of the response."""
        message = dict(message, extension_id=self.extension_id)
        message.setdefault("id", uuid.uuid4().hex)
        async with self._lock:
            task = asyncio.ensure_future(asyncio.to_thread(self._roundtrip, message))
            try:
                response = await asyncio.shield(task)
            except asyncio.CancelledError:
                # The pipe stays locked until the request thread has returned.
                self._interrupt()
                await asyncio.wait({task})
                if task.exception() is not None:
                    logger.debug(
                        f"Cancelled request to worker '{self.extension_id}'",
                        data={"error": str(task.exception())},
                    )
                raise
        if response.get("type") == "error":
            raise ExtensionWorkerError(response.get("error") or "Unknown worker error")
        return response.get("result")

    async def evaluate(
        self,
        code: str,
        dependencies: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Dict[str, Any]]:
        return await self.request(
            {
                "type": "evaluate",
                "fingerprint": source_fingerprint(code, dependencies),
                "code": code,
                "dependencies": dependencies or {},
                "metadata": metadata or {},
            }
        )

    async def invoke(
        self,
        function: str,
        args: Sequence[Any] = (),
        kwargs: Optional[Dict[str, Any]] = None,
        fingerprint: Optional[str] = None,
    ) -> Any:
        """Call an export of the source identified by ``fingerprint`` (latest when omitted)."""
        runtime = current_runtime.get()
        payload = await self.request(
            {
                "type": "call",
                "fingerprint": fingerprint,
                "function": function,
                "args": list(args),
                "kwargs": kwargs or {},
                "tool_call_id": runtime.context.tool_call_id if runtime is not None else "",
            }
        )
        if runtime is not None:
            for visualization in payload.get("visualizations") or ():
                runtime.record_visualization(visualization)
            for item in payload.get("inspections") or ():
                runtime.broadcast_inspection(item["extension_id"], item["data"])
        return payload.get("value")

    async def call(self, function: str, *args, **kwargs) -> Any:
        return await self.invoke(function, args, kwargs)

    async def run_hook(self, hook_type: str, context: Any, fingerprint: Optional[str] = None) -> Any:
        """Run the hook the extension registered for ``hook_type`` in the worker."""
        payload = context.to_dict() if hasattr(context, "to_dict") else context
        return await self.request(
            {
                "type": "hook",
                "fingerprint": fingerprint,
                "hook_type": HookType(hook_type).value,
                "context": to_jsonable(payload),
            }
        )

    def shutdown(self) -> None:
        if self.is_alive and self._conn is not None:
            try:
                self._conn.send({"id": uuid.uuid4().hex, "type": "shutdown"})
                self._conn.poll(1.0)
            except OSError as exc:
                logger.debug(f"Worker for '{self.extension_id}' already gone", data={"error": str(exc)})
        self._kill()
        logger.info(f"Worker for extension '{self.extension_id}' stopped")


class ExtensionWorkerPool:
    """One worker per owner (tenant and project) and extension id."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._workers: Dict[Tuple[str, str], ExtensionWorker] = {}

    def get(self, extension_id: str, owner: str = "") -> ExtensionWorker:
        key = (owner, extension_id)
        worker = self._workers.get(key)
        if worker is None:
            worker = ExtensionWorker(extension_id, timeout=self.timeout)
            self._workers[key] = worker
        return worker

    def __len__(self) -> int:
        return len(self._workers)

    def shutdown_all(self) -> None:
        for worker in self._workers.values():
            worker.shutdown()
        self._workers.clear()


_worker_pool: Optional[ExtensionWorkerPool] = None


def get_worker_pool() -> ExtensionWorkerPool:
    """Process-wide worker pool using the configured evaluation timeout."""
    global _worker_pool
    if _worker_pool is None:
        _worker_pool = ExtensionWorkerPool(timeout=get_settings().extension_eval_timeout_seconds)
    return _worker_pool


def shutdown_worker_pool() -> None:
    global _worker_pool
    if _worker_pool is not None:
        _worker_pool.shutdown_all()
        _worker_pool = None
