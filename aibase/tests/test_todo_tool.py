"""Tests for TodoTool."""

import pytest

from aibase.core.exceptions import ToolError
from aibase.tools.base import ToolContext
from aibase.tools.todo_tool import TodoTool


@pytest.fixture
def tool(paths):
    return TodoTool(ToolContext(project_id="p1", tenant_id="t1", conv_id="c1"), paths)


@pytest.mark.asyncio
async def test_empty_list(tool):
    result = await tool.execute({"action": "list"})
    assert result["summary"] == {"total": 0, "completed": 0, "pending": 0}


@pytest.mark.asyncio
async def test_add_single_and_batch(tool):
    await tool.execute({"action": "add", "text": "one"})
    result = await tool.execute({"action": "add", "texts": ["two", "three"]})

    assert [item["text"] for item in result["items"]] == ["one", "two", "three"]
    assert len({item["id"] for item in result["items"]}) == 3
    assert tool.todos_file.exists()


@pytest.mark.asyncio
async def test_check_uncheck_and_finish(tool):
    added = await tool.execute({"action": "add", "texts": ["a", "b", "c"]})
    ids = [item["id"] for item in added["items"]]

    checked = await tool.execute({"action": "check", "ids": ids[:2] + ["ghost"]})
    assert checked["summary"]["completed"] == 2
    assert checked["batch_result"] == {"checked_count": 2, "not_found": ["ghost"]}

    unchecked = await tool.execute({"action": "uncheck", "id": ids[0]})
    assert unchecked["summary"]["completed"] == 1

    finished = await tool.execute({"action": "finish"})
    assert finished["finish_result"]["removed_count"] == 1
    assert [item["text"] for item in finished["items"]] == ["a", "c"]


@pytest.mark.asyncio
async def test_remove_and_clear(tool):
    added = await tool.execute({"action": "add", "texts": ["a", "b", "c"]})
    ids = [item["id"] for item in added["items"]]

    removed = await tool.execute({"action": "remove", "id": ids[0]})
    assert removed["summary"]["total"] == 2

    batch = await tool.execute({"action": "remove", "ids": ids[1:]})
    assert batch["batch_result"] == {"removed_count": 2}

    await tool.execute({"action": "add", "text": "again"})
    cleared = await tool.execute({"action": "clear"})
    assert cleared["items"] == []


@pytest.mark.asyncio
async def test_conversations_are_separate(tool, paths):
    await tool.execute({"action": "add", "text": "mine"})
    other = TodoTool(ToolContext(project_id="p1", tenant_id="t1", conv_id="c2"), paths)
    assert (await other.execute({"action": "list"}))["items"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "args, message",
    [
        ({"action": "add"}, "text or texts is required"),
        ({"action": "check"}, "id or ids is required"),
        ({"action": "remove", "id": "ghost"}, "Todo item not found"),
        ({"action": "archive"}, "Unknown action"),
    ],
)
async def test_invalid_operations(tool, args, message):
    with pytest.raises(ToolError) as exc_info:
        await tool.execute(args)
    assert message in exc_info.value.message
