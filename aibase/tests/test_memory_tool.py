"""Tests for MemoryTool."""

import json

import pytest

from aibase.core.exceptions import ToolError
from aibase.tools.base import ToolContext
from aibase.tools.memory_tool import MemoryTool


@pytest.fixture
def tool(paths):
    return MemoryTool(ToolContext(project_id="p1", tenant_id="t1"), paths)


@pytest.mark.asyncio
async def test_set_creates_then_updates(tool):
    created = await tool.execute({"action": "set", "category": "database", "key": "url", "value": "postgresql://a"})
    assert created == {"action": "created", "category": "database", "key": "url", "value": "postgresql://a"}

    updated = await tool.execute({"action": "set", "category": "database", "key": "url", "value": "postgresql://b"})
    assert updated["action"] == "updated"
    assert updated["old_value"] == "postgresql://a"

    stored = json.loads(tool.memory_file.read_text())
    assert stored == {"database": {"url": "postgresql://b"}}


@pytest.mark.asyncio
async def test_set_accepts_structured_values(tool):
    await tool.execute({"action": "set", "category": "prefs", "key": "limits", "value": {"rows": 10}})
    assert tool.read("prefs", "limits") == {"rows": 10}


@pytest.mark.asyncio
async def test_remove_key_drops_empty_category(tool):
    await tool.execute({"action": "set", "category": "api_keys", "key": "brave", "value": "k"})
    result = await tool.execute({"action": "remove", "category": "api_keys", "key": "brave"})

    assert result["removed_value"] == "k"
    assert tool.load() == {}


@pytest.mark.asyncio
async def test_remove_whole_category(tool):
    await tool.execute({"action": "set", "category": "api_keys", "key": "a", "value": 1})
    await tool.execute({"action": "set", "category": "api_keys", "key": "b", "value": 2})
    result = await tool.execute({"action": "remove", "category": "api_keys"})

    assert result["keys_removed"] == 2
    assert result["removed_data"] == {"a": 1, "b": 2}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "args, message",
    [
        ({"action": "set", "category": "c", "value": 1}, "key is required"),
        ({"action": "set", "category": "c", "key": "k"}, "value is required"),
        ({"action": "remove", "category": "missing"}, "Category 'missing' not found"),
        ({"action": "explode", "category": "c"}, "Unknown action"),
        ({"action": "set"}, "category is required"),
    ],
)
async def test_invalid_operations(tool, args, message):
    with pytest.raises(ToolError) as exc_info:
        await tool.execute(args)
    assert message in exc_info.value.message


@pytest.mark.asyncio
async def test_read_reports_missing_entries(tool):
    with pytest.raises(ToolError, match="No memory stored"):
        tool.read("database", "url")

    await tool.execute({"action": "set", "category": "database", "key": "url", "value": "x"})
    with pytest.raises(ToolError, match="Available categories: database"):
        tool.read("other", "url")
    with pytest.raises(ToolError, match="Available keys: url"):
        tool.read("database", "password")


def test_schema_validation(tool):
    assert tool.validate({"action": "set", "category": "c", "key": "k", "value": 1}) == []
    errors = tool.validate({"action": "drop"})
    assert any("category" in e for e in errors)
    assert any(e.startswith("action:") for e in errors)


def test_definition(tool):
    definition = tool.definition()
    assert definition["function"]["name"] == "memory"
    assert definition["function"]["parameters"]["required"] == ["action", "category"]
