"""v1 script endpoints.

Runs a script the way a conversation's script tool call would, either
returning the collected broadcast events or streaming them as SSE.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from aibase.auth.dependencies import Identity, get_identity
from aibase.config import get_data_paths
from aibase.core.logging import get_logger
from aibase.extensions.evaluation import to_jsonable
from aibase.streaming.sse import format_sse_event
from aibase.tools import ScriptTool, ToolContext, build_tool_registry

logger = get_logger(__name__)

router = APIRouter(prefix="/projects/{project_id}/scripts", tags=["v1-scripts"])


class ScriptRequest(BaseModel):
    """Script execution request."""
    purpose: str = Field(default="", max_length=500)
    code: str = Field(min_length=1)
    conv_id: str = Field(default="default", min_length=1, max_length=100)
    tool_call_id: Optional[str] = Field(default=None, max_length=100)


def _script_tool(project_id: str, body: ScriptRequest, identity: Identity) -> ScriptTool:
    context = ToolContext(
        project_id=project_id,
        tenant_id=identity.tenant_id,
        conv_id=body.conv_id,
        user_id=identity.user_id or None,
    )
    tools = build_tool_registry(context, get_data_paths())
    return tools[ScriptTool.name]


def _tool_call_id(body: ScriptRequest) -> str:
    return body.tool_call_id or f"call_{uuid.uuid4().hex[:16]}"


@router.post("/execute")
async def execute_script(
    project_id: str,
    body: ScriptRequest,
    identity: Identity = Depends(get_identity),
) -> Dict[str, Any]:
    """Run a script and return its result with every broadcast event."""
    events: List[Dict[str, Any]] = []
    tool_call_id = _tool_call_id(body)

    def broadcast(kind: str, data: Dict[str, Any]) -> None:
        events.append({"type": kind, "data": data})

    script = _script_tool(project_id, body, identity).configure(broadcast=broadcast, tool_call_id=tool_call_id)
    result = await script.execute({"purpose": body.purpose, "code": body.code})
    return to_jsonable({"tool_call_id": tool_call_id, "result": result, "events": events})


@router.post("/stream")
async def stream_script(
    project_id: str,
    body: ScriptRequest,
    request: Request,
    identity: Identity = Depends(get_identity),
) -> StreamingResponse:
    """Run a script and stream broadcast events, ending with ``done``."""
    queue: asyncio.Queue = asyncio.Queue()
    tool_call_id = _tool_call_id(body)

    def broadcast(kind: str, data: Dict[str, Any]) -> None:
        queue.put_nowait((kind, data))

    script = _script_tool(project_id, body, identity).configure(broadcast=broadcast, tool_call_id=tool_call_id)

    async def event_stream():
        task = asyncio.create_task(script.execute({"purpose": body.purpose, "code": body.code}))
        seq = 0
        try:
            while not (task.done() and queue.empty()):
                try:
                    kind, data = await asyncio.wait_for(queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        logger.info("Script stream client disconnected", data={"tool_call_id": tool_call_id})
                        return
                    continue
                seq += 1
                yield format_sse_event(seq, kind, to_jsonable(data))

            seq += 1
            yield format_sse_event(
                seq,
                "done",
                to_jsonable({"tool_call_id": tool_call_id, "result": task.result()}),
            )
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
