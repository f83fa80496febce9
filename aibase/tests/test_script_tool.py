"""Tests for ScriptTool: loading, error results, escape retry and large results."""

import asyncio

import pytest

from aibase.core.exceptions import ToolError
from aibase.extensions.hooks import ExtensionHookRegistry
from aibase.extensions.loader import ExtensionLoader
from aibase.extensions.output_storage import OutputStorage
from aibase.extensions.peek import peek
from aibase.storage.category_storage import CategoryStorage
from aibase.storage.extension_storage import ExtensionStorage
from aibase.tools import build_tool_registry
from aibase.tools.base import ToolContext
from aibase.tools.script_tool import ScriptTool, fix_escape_sequences


@pytest.fixture
def events():
    return []


@pytest.fixture
def output_storage(tmp_path):
    return OutputStorage(tmp_path / "outputs", file_threshold=10 * 1024 * 1024, ttl_seconds=3600)


@pytest.fixture
def loader(paths):
    return ExtensionLoader(ExtensionStorage(paths), CategoryStorage(paths), hook_registry=ExtensionHookRegistry())


@pytest.fixture
def script(paths, loader, output_storage, events):
    tools = build_tool_registry(
        ToolContext(project_id="p1", tenant_id="t1", conv_id="c1"),
        paths,
        loader=loader,
        output_storage=output_storage,
    )
    return tools["script"].configure(
        broadcast=lambda kind, data: events.append((kind, data)),
        tool_call_id="call_1",
    )


def test_fix_escape_sequences():
    assert fix_escape_sequences("a = 1\\nb = '\\t'") == "a = 1\nb = '\t'"


@pytest.mark.asyncio
async def test_requires_configuration(paths, loader):
    tool = ScriptTool(ToolContext(project_id="p1"), loader)
    with pytest.raises(ToolError, match="not properly configured"):
        await tool.execute({"purpose": "x", "code": "return 1"})


@pytest.mark.asyncio
async def test_success_emits_executing_and_complete(script, events):
    result = await script.execute({"purpose": "add", "code": "return 1 + 1"})

    assert result == 2
    statuses = [data["status"] for kind, data in events if data.get("tool_call_id") == "call_1"]
    assert statuses[0] == "executing"
    assert statuses[-1] == "complete"
    assert events[-1][1]["result"] == 2
    assert events[-1][1]["tool_name"] == "script"


@pytest.mark.asyncio
async def test_default_extensions_available(script):
    result = await script.execute(
        {"purpose": "table", "code": "return await show_table(title='T', columns=[{'key': 'a'}], data=[{'a': 1}])"}
    )
    (viz,) = result["__visualizations"]
    assert viz["type"] == "show-table"
    assert viz["args"]["title"] == "T"


@pytest.mark.asyncio
async def test_registered_tools_callable(script):
    code = "await todo({'action': 'add', 'text': 'from script'})\nreturn (await todo({'action': 'list'}))['summary']"
    assert await script.execute({"purpose": "todos", "code": code}) == {"total": 1, "completed": 0, "pending": 1}


@pytest.mark.asyncio
async def test_failure_returns_error_result(script, events):
    result = await script.execute({"purpose": "boom", "code": "raise RuntimeError('exploded')"})

    assert result == {"__error": True, "error": "exploded", "purpose": "boom"}
    assert events[-1][1]["status"] == "error"


@pytest.mark.asyncio
async def test_error_key_in_result_is_failure(script):
    result = await script.execute({"purpose": "p", "code": "return {'error': 'upstream failed'}"})
    assert result["__error"] is True
    assert result["error"] == "upstream failed"


@pytest.mark.asyncio
async def test_syntax_error_reported(script):
    result = await script.execute({"purpose": "p", "code": "return (("})
    assert result["__error"] is True
    assert result["error"].startswith("SyntaxError")


@pytest.mark.asyncio
async def test_literal_newlines_retried(script):
    result = await script.execute({"purpose": "p", "code": "x = 20\\ny = 22\\nreturn x + y"})
    assert result == 42


class TestLargeResults:
    @pytest.mark.asyncio
    async def test_large_array_truncated_and_stored(self, script, output_storage):
        result = await script.execute(
            {"purpose": "rows", "code": "return [{'id': i, 'name': 'row %d' % i} for i in range(5000)]"}
        )

        assert result["_truncated"] is True
        assert result["_data_type"] == "array"
        assert result["_row_count"] == 5000
        assert result["_total_size"] > 50000
        assert 0 < len(result["data"]) < 5000
        assert result["_summary"] == f"[Array truncated: showing {len(result['data'])} of 5000 items]"
        assert f"peek('{result['_output_id']}'" in result["_message"]

        page = peek(result["_output_id"], offset=4990, limit=100, storage=output_storage)
        assert page["data"][0] == {"id": 4990, "name": "row 4990"}

    def test_large_tuple_truncated_like_array(self, script, output_storage):
        result = script.handle_large_result(tuple(range(20000)))

        assert result["_data_type"] == "array"
        assert result["_row_count"] == 20000
        assert 0 < len(result["data"]) < 20000
        assert result["_summary"].startswith("[Array truncated: showing ")

        page = peek(result["_output_id"], offset=19990, limit=100, storage=output_storage)
        assert page["data"] == list(range(19990, 20000))
        assert page["metadata"]["actual_returned"] == 10

    @pytest.mark.asyncio
    async def test_large_string_truncated(self, script):
        result = await script.execute({"purpose": "s", "code": "return 'x' * 60000"})
        assert result["_data_type"] == "string"
        assert len(result["data"]) == 25000 + 3
        assert result["data"].endswith("...")

    @pytest.mark.asyncio
    async def test_large_object_keeps_first_keys(self, script):
        result = await script.execute({"purpose": "o", "code": "return {f'k{i}': 'v' * 1000 for i in range(100)}"})
        assert list(result["data"]) == ["k0", "k1", "k2", "k3", "k4"]
        assert result["_summary"] == "[Object truncated: showing 5 of 100 keys]"

    def test_small_results_untouched(self, script):
        assert script.handle_large_result({"a": 1}) == {"a": 1}
        assert script.handle_large_result(None) is None

    def test_unserializable_results_untouched(self, script):
        marker = object()
        assert script.handle_large_result(marker) is marker


def test_context_text_mentions_helpers():
    text = ScriptTool.context_text()
    assert "peek(output_id" in text
    assert "memory.read" in text


@pytest.mark.asyncio
async def test_async_broadcast_receives_every_event(script):
    received = []

    async def broadcast(kind, data):
        await asyncio.sleep(0)
        received.append(data.get("status"))

    script.configure(broadcast=broadcast)
    result = await script.execute({"purpose": "p", "code": "progress('half way')\nreturn 1"})

    assert result == 1
    assert received == ["executing", "progress", "complete"]


@pytest.mark.asyncio
async def test_async_broadcast_receives_error_event(script):
    received = []

    async def broadcast(kind, data):
        received.append(data.get("status"))

    script.configure(broadcast=broadcast)
    result = await script.execute({"purpose": "p", "code": "raise ValueError('nope')"})

    assert result["__error"] is True
    assert received == ["executing", "error"]
