"""Todo Tool.

Per-conversation todo list stored in
``data/projects/{tenantId}/{projectId}/conversations/{convId}/todos.json``.
Actions: list, add, check, uncheck, remove, clear, finish. add/check/
uncheck/remove accept batches (``texts`` / ``ids``).
"""

from __future__ import annotations

import secrets
import time
from pathlib import Path
from typing import Any, Dict, List

from aibase.config.paths import DataPaths
from aibase.core.exceptions import ToolError
from aibase.core.logging import get_logger
from aibase.core.time import utcnow
from aibase.storage.json_files import read_json, write_json
from aibase.tools.base import Tool, ToolContext

logger = get_logger(__name__)

ACTIONS = ["list", "add", "check", "uncheck", "remove", "clear", "finish"]


def _now_iso() -> str:
    return utcnow().isoformat()


def _new_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(5)}"


class TodoTool(Tool):
    name = "todo"
    description = (
        "Manage todo items: add new tasks, list all tasks, check/uncheck items, remove items, "
        "clear all, or finish (remove completed items). Todos are stored per conversation. "
        "Supports batch operations for add/check/uncheck/remove."
    )
    parameters = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ACTIONS, "description": "The action to perform"},
            "text": {"type": "string", "description": "Todo text (single add)"},
            "texts": {"type": "array", "items": {"type": "string"}, "description": "Todo texts (batch add)"},
            "id": {"type": "string", "description": "Todo ID (single check, uncheck, remove)"},
            "ids": {"type": "array", "items": {"type": "string"}, "description": "Todo IDs (batch check, uncheck, remove)"},
        },
        "required": ["action"],
    }

    def __init__(self, context: ToolContext, paths: DataPaths):
        super().__init__(context)
        self.paths = paths

    @property
    def todos_file(self) -> Path:
        return self.paths.todos_file(self.context.project_id, self.context.conv_id, self.context.tenant_id)

    def load(self) -> Dict[str, Any]:
        return read_json(self.todos_file, lambda: {"items": [], "updated_at": _now_iso()})

    def save(self, todo_list: Dict[str, Any]) -> None:
        todo_list["updated_at"] = _now_iso()
        write_json(self.todos_file, todo_list)

    @staticmethod
    def format(todo_list: Dict[str, Any]) -> Dict[str, Any]:
        items = todo_list.get("items", [])
        completed = sum(1 for item in items if item.get("checked"))
        return {
            "summary": {"total": len(items), "completed": completed, "pending": len(items) - completed},
            "items": items,
            "updated_at": todo_list.get("updated_at"),
        }

    def _add(self, todo_list: Dict[str, Any], args: Dict[str, Any]) -> Dict[str, Any]:
        texts: List[str] = args.get("texts") or []
        if not texts:
            if not args.get("text"):
                raise ValueError("text or texts is required for add action")
            texts = [args["text"]]
        now = _now_iso()
        for text in texts:
            todo_list["items"].append(
                {"id": _new_id(), "text": text, "checked": False, "created_at": now, "updated_at": now}
            )
        self.save(todo_list)
        return self.format(todo_list)

    def _set_checked(self, todo_list: Dict[str, Any], args: Dict[str, Any], checked: bool) -> Dict[str, Any]:
        action = "check" if checked else "uncheck"
        by_id = {item["id"]: item for item in todo_list["items"]}
        ids = args.get("ids") or []

        if ids:
            count = 0
            not_found = []
            for todo_id in ids:
                item = by_id.get(todo_id)
                if item is None:
                    not_found.append(todo_id)
                    continue
                item["checked"] = checked
                item["updated_at"] = _now_iso()
                count += 1
            self.save(todo_list)
            result = self.format(todo_list)
            result["batch_result"] = {f"{action}ed_count": count}
            if not_found:
                result["batch_result"]["not_found"] = not_found
            return result

        todo_id = args.get("id")
        if not todo_id:
            raise ValueError(f"id or ids is required for {action} action")
        item = by_id.get(todo_id)
        if item is None:
            raise ValueError(f"Todo item not found: {todo_id}")
        item["checked"] = checked
        item["updated_at"] = _now_iso()
        self.save(todo_list)
        return self.format(todo_list)

    def _remove(self, todo_list: Dict[str, Any], args: Dict[str, Any]) -> Dict[str, Any]:
        ids = args.get("ids") or []
        if ids:
            existing = {item["id"] for item in todo_list["items"]}
            not_found = [todo_id for todo_id in ids if todo_id not in existing]
            wanted = set(ids)
            before = len(todo_list["items"])
            todo_list["items"] = [item for item in todo_list["items"] if item["id"] not in wanted]
            self.save(todo_list)
            result = self.format(todo_list)
            result["batch_result"] = {"removed_count": before - len(todo_list["items"])}
            if not_found:
                result["batch_result"]["not_found"] = not_found
            return result

        todo_id = args.get("id")
        if not todo_id:
            raise ValueError("id or ids is required for remove action")
        remaining = [item for item in todo_list["items"] if item["id"] != todo_id]
        if len(remaining) == len(todo_list["items"]):
            raise ValueError(f"Todo item not found: {todo_id}")
        todo_list["items"] = remaining
        self.save(todo_list)
        return self.format(todo_list)

    def _finish(self, todo_list: Dict[str, Any]) -> Dict[str, Any]:
        before = len(todo_list["items"])
        todo_list["items"] = [item for item in todo_list["items"] if not item.get("checked")]
        removed = before - len(todo_list["items"])
        self.save(todo_list)
        result = self.format(todo_list)
        result["finish_result"] = {
            "removed_count": removed,
            "message": f"Removed {removed} completed item(s)",
        }
        return result

    async def execute(self, args: Dict[str, Any]) -> Dict[str, Any]:
        action = args.get("action")
        try:
            todo_list = self.load()
            if action == "list":
                return self.format(todo_list)
            if action == "add":
                return self._add(todo_list, args)
            if action in ("check", "uncheck"):
                return self._set_checked(todo_list, args, checked=action == "check")
            if action == "remove":
                return self._remove(todo_list, args)
            if action == "clear":
                todo_list["items"] = []
                self.save(todo_list)
                return self.format(todo_list)
            if action == "finish":
                return self._finish(todo_list)
            raise ValueError(f"Unknown action: {action}")
        except (ValueError, OSError) as exc:
            logger.warning(f"Todo {action} failed", data={"conv_id": self.context.conv_id, "error": str(exc)})
            raise ToolError(f"Todo operation failed: {exc}", tool=self.name) from exc
