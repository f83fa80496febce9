"""Function-calling tools available to conversations and scripts."""

from typing import Dict, Optional

from aibase.config.paths import DataPaths
from aibase.extensions.loader import ExtensionLoader, build_extension_loader
from aibase.extensions.output_storage import OutputStorage
from aibase.tools.base import Tool, ToolContext, validate_json_schema
from aibase.tools.memory_tool import MemoryTool
from aibase.tools.script_tool import ScriptTool
from aibase.tools.todo_tool import TodoTool


def build_tool_registry(
    context: ToolContext,
    paths: DataPaths,
    loader: Optional[ExtensionLoader] = None,
    output_storage: Optional[OutputStorage] = None,
) -> Dict[str, Tool]:
    """Tools for one conversation, keyed by name.

    The script tool is handed the registry itself so scripts can call the
    other tools.
    """
    script = ScriptTool(context, loader or build_extension_loader(paths), output_storage=output_storage)
    tools: Dict[str, Tool] = {
        MemoryTool.name: MemoryTool(context, paths),
        TodoTool.name: TodoTool(context, paths),
        ScriptTool.name: script,
    }
    script.configure(tools=tools)
    return tools


__all__ = [
    "MemoryTool",
    "ScriptTool",
    "TodoTool",
    "Tool",
    "ToolContext",
    "build_tool_registry",
    "validate_json_schema",
]
