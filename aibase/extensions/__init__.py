"""Extension loading, evaluation and the script runtime."""

from aibase.extensions.evaluation import ExtensionNamespace, namespace_for
from aibase.extensions.hooks import ExtensionHookRegistry, FileUploadContext, HookType, extension_hook_registry
from aibase.extensions.loader import ExtensionLoader, build_extension_loader
from aibase.extensions.runtime import ScriptContext, ScriptRuntime, broadcast_inspection, register_visualization

__all__ = [
    "ExtensionHookRegistry",
    "ExtensionLoader",
    "ExtensionNamespace",
    "FileUploadContext",
    "HookType",
    "ScriptContext",
    "ScriptRuntime",
    "broadcast_inspection",
    "build_extension_loader",
    "extension_hook_registry",
    "namespace_for",
    "register_visualization",
]
