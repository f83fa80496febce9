"""Trino queries over the client REST protocol.

A query is POSTed to ``/v1/statement``; results arrive in pages that are
fetched by following ``nextUri`` until the server stops returning one.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import httpx

from aibase.core.exceptions import ToolError
from aibase.core.logging import get_logger
from aibase.extensions.runtime import broadcast_inspection

logger = get_logger(__name__)

DEFAULT_USER = "trino"
STATS_KEYS = (
    "state",
    "scheduled",
    "nodes",
    "totalSplits",
    "queuedSplits",
    "runningSplits",
    "completedSplits",
)


def _make_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout))


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return error.get("message") or str(error)
    return str(error)


def _stats(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    stats = payload.get("stats")
    if not isinstance(stats, dict):
        return None
    return {key: stats.get(key) for key in STATS_KEYS}


async def trino(
    query: str,
    server_url: str,
    catalog: Optional[str] = None,
    schema: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    format: str = "json",
    timeout: int = 30000,
) -> Dict[str, Any]:
    """Run a query on a Trino coordinator.

    Args:
        query: SQL to execute
        server_url: Coordinator URL, e.g. ``http://localhost:8080``
        catalog: Default catalog (``X-Trino-Catalog``)
        schema: Default schema (``X-Trino-Schema``)
        username: Trino user, ``trino`` when omitted
        password: Sent with basic auth
        format: "json" (rows as dicts) or "raw" (columns and row lists)
        timeout: Overall deadline in milliseconds
    """
    if not query:
        raise ToolError(
            "trino requires 'query'. Usage: await trino(query='SELECT 1', server_url='http://localhost:8080')",
            tool="trino",
        )
    if not server_url:
        raise ToolError("trino requires 'server_url', e.g. 'http://localhost:8080'", tool="trino")

    user = username or DEFAULT_USER
    headers = {"Content-Type": "text/plain", "X-Trino-User": user}
    if catalog:
        headers["X-Trino-Catalog"] = catalog
    if schema:
        headers["X-Trino-Schema"] = schema
    auth = httpx.BasicAuth(user, password) if password else None

    endpoint = server_url.rstrip("/") + "/v1/statement"
    columns: List[str] = []
    rows: List[List[Any]] = []
    start = time.perf_counter()
    deadline = start + timeout / 1000

    try:
        async with _make_client(timeout / 1000) as client:
            res = await client.post(endpoint, content=query.encode("utf-8"), headers=headers, auth=auth)
            while True:
                if res.status_code >= 400:
                    logger.warning("Trino request failed", data={"status": res.status_code})
                    raise ToolError(
                        f"Trino query failed with status {res.status_code}: {res.text.strip()}",
                        tool="trino",
                    )
                try:
                    payload = res.json()
                except ValueError as exc:
                    raise ToolError(f"Trino returned a non-JSON response: {res.text[:200]}", tool="trino") from exc
                if payload.get("error"):
                    raise ToolError(f"Trino query error: {_error_message(payload['error'])}", tool="trino")
                if payload.get("columns") and not columns:
                    columns = [column.get("name") for column in payload["columns"]]
                rows.extend(payload.get("data") or [])

                next_uri = payload.get("nextUri")
                if not next_uri:
                    break
                if time.perf_counter() > deadline:
                    raise ToolError(f"Query timeout after {timeout}ms", tool="trino")
                res = await client.get(next_uri, headers={"X-Trino-User": user}, auth=auth)
    except httpx.TimeoutException as exc:
        raise ToolError(f"Query timeout after {timeout}ms", tool="trino") from exc
    except httpx.HTTPError as exc:
        raise ToolError(
            f"Trino connection failed: Unable to connect to server at {server_url}. {exc}",
            tool="trino",
        ) from exc

    execution_time = int((time.perf_counter() - start) * 1000)
    stats = _stats(payload)

    if format == "raw":
        return {
            "columns": columns,
            "rows": rows,
            "row_count": len(rows),
            "execution_time": execution_time,
            "query": query,
            "stats": stats,
        }

    data = [dict(zip(columns, row)) for row in rows]
    result: Dict[str, Any] = {
        "data": data,
        "row_count": len(data),
        "execution_time": execution_time,
        "query": query,
    }
    if stats:
        result["stats"] = stats

    broadcast_inspection(
        "trino",
        {
            "query": query,
            "execution_time": execution_time,
            "row_count": len(data),
            "columns": columns,
            "sample_data": data[:3],
            "server_url": server_url,
            "catalog": catalog,
            "schema": schema,
            "stats": stats,
        },
    )
    return result


async def check_connection(
    server_url: str,
    catalog: Optional[str] = None,
    schema: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> Dict[str, Any]:
    """Run ``SELECT version()`` and report whether the server answered."""
    try:
        result = await trino(
            "SELECT version() AS version",
            server_url,
            catalog=catalog,
            schema=schema,
            username=username,
            password=password,
        )
    except ToolError as exc:
        return {"connected": False, "error": exc.message}
    version = result["data"][0].get("version") if result["data"] else None
    return {"connected": True, "version": version}
