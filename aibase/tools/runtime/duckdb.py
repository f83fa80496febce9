"""DuckDB queries over local data files.

CSV, Parquet, JSON and Excel files are queried in place
(``SELECT * FROM 'sales.csv'``). Each call opens its own connection in a
worker thread and closes it afterwards.
"""

from __future__ import annotations

import asyncio
import csv
import io
import time
from typing import Any, Dict, List, Optional, Tuple

import duckdb as _duckdb

from aibase.core.exceptions import ToolError
from aibase.core.logging import get_logger
from aibase.extensions.evaluation import to_jsonable
from aibase.extensions.runtime import broadcast_inspection

logger = get_logger(__name__)

MEMORY_DATABASE = ":memory:"
FORMATS = ("json", "csv", "markdown")


def _run(query: str, database: str, readonly: bool) -> Tuple[List[str], List[tuple]]:
    # In-memory databases cannot be opened read-only.
    read_only = readonly and database != MEMORY_DATABASE
    connection = _duckdb.connect(database, read_only=read_only)
    try:
        cursor = connection.execute(query)
        if cursor.description is None:
            return [], []
        columns = [column[0] for column in cursor.description]
        return columns, cursor.fetchall()
    finally:
        connection.close()


def to_csv(columns: List[str], rows: List[tuple]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(columns)
    writer.writerows(rows)
    return buffer.getvalue()


def to_markdown(columns: List[str], rows: List[tuple]) -> str:
    if not columns:
        return ""
    lines = [
        "| " + " | ".join(columns) + " |",
        "| " + " | ".join("---" for _ in columns) + " |",
    ]
    for row in rows:
        lines.append("| " + " | ".join("" if value is None else str(value) for value in row) + " |")
    return "\n".join(lines)


async def duckdb(
    query: str,
    format: str = "json",
    readonly: bool = True,
    database: Optional[str] = None,
    timeout: int = 30000,
) -> Dict[str, Any]:
    """Run a DuckDB SQL query.

    Args:
        query: SQL, e.g. ``SELECT * FROM 'data.csv' LIMIT 10``
        format: "json" (row dicts), "csv" or "markdown" (text output)
        readonly: Open a database file read-only
        database: Database file, in-memory when omitted
        timeout: Query timeout in milliseconds
    """
    if not query:
        raise ToolError(
            "duckdb requires 'query'. Usage: await duckdb(query=\"SELECT * FROM 'data.csv'\")",
            tool="duckdb",
        )
    if format not in FORMATS:
        raise ToolError(f"duckdb format must be one of {', '.join(FORMATS)}", tool="duckdb")

    start = time.perf_counter()
    try:
        columns, rows = await asyncio.wait_for(
            asyncio.to_thread(_run, query.strip(), database or MEMORY_DATABASE, readonly),
            timeout=timeout / 1000,
        )
    except asyncio.TimeoutError as exc:
        raise ToolError(f"Query timeout after {timeout}ms", tool="duckdb") from exc
    except _duckdb.Error as exc:
        logger.warning("DuckDB query failed", data={"error": str(exc)})
        raise ToolError(f"DuckDB query failed: {exc}", tool="duckdb") from exc

    execution_time = int((time.perf_counter() - start) * 1000)
    if format == "csv":
        return {"output": to_csv(columns, rows), "row_count": len(rows), "execution_time": execution_time}
    if format == "markdown":
        return {"output": to_markdown(columns, rows), "row_count": len(rows), "execution_time": execution_time}

    result = {
        "data": to_jsonable([dict(zip(columns, row)) for row in rows]),
        "row_count": len(rows),
        "columns": columns,
        "execution_time": execution_time,
    }
    broadcast_inspection("duckdb", result)
    return result
