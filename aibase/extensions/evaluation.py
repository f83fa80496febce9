"""Evaluation of extension source into an export namespace.

Shared by the in-process loader and the isolated worker processes.
"""

from __future__ import annotations

import inspect
import json
import re
from types import ModuleType, SimpleNamespace
from typing import Any, Dict, Mapping, Optional

MODULE_PREFIX = "aibase_extension_"


def namespace_for(extension_id: str) -> str:
    """Python identifier for an extension id (``web-search`` -> ``web_search``)."""
    name = re.sub(r"[^0-9a-zA-Z_]", "_", extension_id.strip())
    if not name or name[0].isdigit():
        name = f"ext_{name}"
    return name


class ExtensionNamespace(SimpleNamespace):
    """Attribute view over an extension's exports.

    Calling the namespace calls the export that shares its name, so
    ``web_search("query")`` and ``web_search.image_search("query")`` both work.
    """

    def __init__(self, name: str, exports: Mapping[str, Any]):
        super().__init__(**exports)
        object.__setattr__(self, "__extension_name__", name)

    def __call__(self, *args, **kwargs):
        target = self.__dict__.get(self.__extension_name__)
        if not callable(target):
            raise TypeError(f"extension '{self.__extension_name__}' is not callable; use one of its functions")
        return target(*args, **kwargs)

    def exports(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if k != "__extension_name__"}


class NoopHookRegistry:
    """Hook registry used where hooks cannot be delivered (worker processes)."""

    def register_hook(self, *args, **kwargs) -> None:
        return None

    def unregister_extension_hooks(self, *args, **kwargs) -> None:
        return None


def execute_source(
    code: str,
    extension_id: str,
    deps: Optional[Mapping[str, ModuleType]] = None,
    hook_registry: Any = None,
) -> Dict[str, Any]:
    """Execute extension source in a fresh module namespace and return it."""
    module_name = MODULE_PREFIX + namespace_for(extension_id)
    module_globals: Dict[str, Any] = {
        "__name__": module_name,
        "__file__": f"<extension:{extension_id}>",
        "__builtins__": __builtins__,
        "extension_id": extension_id,
        "deps": dict(deps or {}),
        "hook_registry": hook_registry if hook_registry is not None else NoopHookRegistry(),
    }
    compiled = compile(code, f"<extension:{extension_id}>", "exec")
    exec(compiled, module_globals)
    return module_globals


def collect_exports(module_globals: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve what an evaluated extension exposes.

    ``exports`` (dict or object) wins, then ``__all__``, then every public
    callable defined by the module itself.
    """
    explicit = module_globals.get("exports")
    if isinstance(explicit, Mapping):
        return dict(explicit)
    if explicit is not None and not callable(explicit):
        return {
            name: getattr(explicit, name)
            for name in dir(explicit)
            if not name.startswith("_")
        }

    names = module_globals.get("__all__")
    if names:
        return {name: module_globals[name] for name in names}

    module_name = module_globals.get("__name__")
    return {
        name: value
        for name, value in module_globals.items()
        if not name.startswith("_")
        and callable(value)
        and getattr(value, "__module__", None) == module_name
    }


def build_namespace(namespace: str, exports: Dict[str, Any]) -> Any:
    """Value placed in the script scope for one extension."""
    if len(exports) == 1:
        (name, value), = exports.items()
        if name == namespace and callable(value):
            return value
    return ExtensionNamespace(namespace, exports)


def describe_exports(exports: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Export manifest sent back by worker processes."""
    manifest: Dict[str, Dict[str, Any]] = {}
    for name, value in exports.items():
        signature = ""
        if callable(value):
            try:
                signature = str(inspect.signature(value))
            except (TypeError, ValueError):
                signature = "(...)"
        manifest[name] = {
            "callable": callable(value),
            "is_async": inspect.iscoroutinefunction(value),
            "signature": signature,
        }
    return manifest


def to_jsonable(value: Any) -> Any:
    """Coerce a value into plain JSON types (unknown objects become strings)."""
    return json.loads(json.dumps(value, default=str))

