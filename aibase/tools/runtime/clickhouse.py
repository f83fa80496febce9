"""ClickHouse queries over the HTTP interface."""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional

import httpx

from aibase.core.exceptions import ToolError
from aibase.core.logging import get_logger
from aibase.extensions.runtime import broadcast_inspection

logger = get_logger(__name__)

FORMATS = {"json": "JSONEachRow", "csv": "CSV", "tsv": "TSV"}


def _make_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout))


def _parse_rows(text: str) -> list:
    rows = []
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            rows.append(json.loads(line))
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable ClickHouse row", data={"line": line[:200]})
    return rows


def _parse_summary(header: Optional[str]) -> Optional[Dict[str, Any]]:
    if not header:
        return None
    try:
        summary = json.loads(header)
    except json.JSONDecodeError:
        return None
    return {
        "rows_read": summary.get("read_rows"),
        "bytes_read": summary.get("read_bytes"),
        "elapsed": summary.get("elapsed_ns") or summary.get("elapsed"),
    }


def _explain_error(message: str) -> str:
    if "401" in message or "403" in message or "Authentication failed" in message:
        return f"ClickHouse authentication failed: Invalid credentials. {message}"
    if "doesn't exist" in message or "Unknown table" in message or "Unknown database" in message:
        return f"ClickHouse query error: {message}. Check that database/tables/columns exist."
    if "Syntax error" in message or "Cannot parse" in message:
        return f"ClickHouse syntax error: {message}. Check your SQL query syntax."
    return f"ClickHouse query failed: {message}"


async def clickhouse(
    query: str,
    server_url: str,
    database: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    params: Optional[Dict[str, Any]] = None,
    format: str = "json",
    timeout: int = 30000,
) -> Dict[str, Any]:
    """Run a query through ClickHouse's HTTP interface.

    Args:
        query: SQL to execute; use ``{name:Type}`` placeholders with ``params``
        server_url: e.g. ``http://localhost:8123``
        database: Database name
        username: User (defaults to ``default`` when a password is given)
        password: Password
        params: Query parameter values
        format: "json", "csv", "tsv" or "raw"
        timeout: Request timeout in milliseconds
    """
    if not query:
        raise ToolError(
            "clickhouse requires 'query'. Usage: await clickhouse(query='SELECT 1', server_url='http://localhost:8123')",
            tool="clickhouse",
        )
    if not server_url:
        raise ToolError("clickhouse requires 'server_url', e.g. 'http://localhost:8123'", tool="clickhouse")

    url = server_url.rstrip("/") + "/"
    query_params: Dict[str, str] = {}
    if database:
        query_params["database"] = database
    if format in FORMATS:
        query_params["default_format"] = FORMATS[format]
    for key, value in (params or {}).items():
        query_params[f"param_{key}"] = str(value)

    auth = None
    if username or password:
        auth = httpx.BasicAuth(username or "default", password or "")

    start = time.perf_counter()
    try:
        async with _make_client(timeout / 1000) as client:
            res = await client.post(
                url,
                params=query_params,
                content=query.encode("utf-8"),
                headers={"Content-Type": "text/plain"},
                auth=auth,
            )
    except httpx.TimeoutException as exc:
        raise ToolError(f"Query timeout after {timeout}ms", tool="clickhouse") from exc
    except httpx.HTTPError as exc:
        raise ToolError(
            f"ClickHouse connection failed: Unable to connect to server at {server_url}. "
            f"Check your server URL and ensure ClickHouse is running. {exc}",
            tool="clickhouse",
        ) from exc

    if res.status_code >= 400:
        message = f"status {res.status_code}: {res.text.strip()}"
        logger.warning("ClickHouse query failed", data={"status": res.status_code})
        raise ToolError(_explain_error(message), tool="clickhouse")

    execution_time = int((time.perf_counter() - start) * 1000)
    if format == "json":
        rows = _parse_rows(res.text)
        result: Dict[str, Any] = {
            "data": rows,
            "row_count": len(rows),
            "execution_time": execution_time,
            "query": query,
        }
        stats = _parse_summary(res.headers.get("X-ClickHouse-Summary"))
        if stats:
            result["stats"] = stats
    else:
        raw = res.text
        result = {
            "raw": raw,
            "row_count": len([line for line in raw.splitlines() if line.strip()]),
            "execution_time": execution_time,
            "query": query,
        }

    broadcast_inspection("clickhouse", result)
    return result
