"""CSV file inspection for scripts and upload hooks."""

from __future__ import annotations

import asyncio
import csv
from pathlib import Path
from typing import Any, Dict, List, Optional

from aibase.core.exceptions import ToolError
from aibase.core.logging import get_logger

logger = get_logger(__name__)

CSV_MIME_TYPES = {"text/csv", "application/csv", "text/comma-separated-values"}


def is_csv(file_name: str, file_type: str = "") -> bool:
    return (file_type or "").lower() in CSV_MIME_TYPES or file_name.lower().endswith(".csv")


def read_structure(file_path: str, max_rows: int = 5) -> Dict[str, Any]:
    """Header, row count and the first ``max_rows`` rows of a CSV file."""
    path = Path(file_path)
    if not path.is_file():
        raise ToolError(f"CSV file not found: {file_path}", tool="csv_document")

    with path.open(newline="", encoding="utf-8-sig", errors="replace") as fh:
        sample = fh.read(64 * 1024)
        fh.seek(0)
        try:
            dialect = csv.Sniffer().sniff(sample) if sample else csv.excel
        except csv.Error:
            dialect = csv.excel
        reader = csv.reader(fh, dialect)
        columns: List[str] = next(reader, [])
        preview: List[Dict[str, str]] = []
        row_count = 0
        for row in reader:
            if not any(cell.strip() for cell in row):
                continue
            if row_count < max_rows:
                preview.append(dict(zip(columns, row)))
            row_count += 1

    return {
        "file_path": str(path),
        "columns": columns,
        "column_count": len(columns),
        "row_count": row_count,
        "delimiter": dialect.delimiter,
        "preview": preview,
    }


def describe(structure: Dict[str, Any], file_name: Optional[str] = None) -> str:
    """Markdown description of a CSV file for the model's context."""
    lines = ["## CSV File Structure"]
    if file_name:
        lines.append(f"**File:** {file_name}")
    lines.append(f"**Rows:** {structure['row_count']:,}")
    lines.append(f"**Columns:** {structure['column_count']}")
    if structure["columns"]:
        lines.append("**Column Names:**")
        lines.extend(f"  {idx}. `{name}`" for idx, name in enumerate(structure["columns"], start=1))
    if structure["preview"]:
        lines.append("")
        lines.append("## Preview")
        lines.append(" | ".join(structure["columns"]))
        for row in structure["preview"]:
            lines.append(" | ".join(str(row.get(col, "")) for col in structure["columns"]))
    lines.append("")
    lines.append("Use `csv_document.summarize(file_path)` in a script to inspect it again.")
    return "\n".join(lines)


async def summarize(file_path: str, max_rows: int = 5) -> Dict[str, Any]:
    """Structure and preview of a CSV file plus a markdown description."""
    if max_rows < 0:
        raise ToolError("max_rows must be non-negative", tool="csv_document")
    structure = await asyncio.to_thread(read_structure, file_path, max_rows)
    structure["description"] = describe(structure, Path(file_path).name)
    return structure


async def describe_upload(context: Any) -> Optional[Dict[str, Any]]:
    """``after_file_upload`` hook: describe uploaded CSV files."""
    fields = context if isinstance(context, dict) else vars(context)
    file_name = fields.get("file_name") or ""
    file_type = fields.get("file_type") or ""
    if not is_csv(file_name, file_type):
        return None
    structure = await asyncio.to_thread(read_structure, fields["file_path"], 5)
    logger.info(
        f"Described uploaded CSV {file_name}",
        data={"rows": structure["row_count"], "columns": structure["column_count"]},
    )
    return {"description": describe(structure, file_name)}
