"""PDF text extraction for scripts and upload hooks."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from aibase.core.exceptions import ToolError
from aibase.core.logging import get_logger

logger = get_logger(__name__)

PDF_MIME_TYPES = {"application/pdf", "application/x-pdf"}
PDF_MAGIC = b"%PDF-"

# Characters of extracted text included in an upload description.
PREVIEW_CHARS = 2000


def is_pdf(file_name: str, file_type: str = "") -> bool:
    return (file_type or "").lower() in PDF_MIME_TYPES or file_name.lower().endswith(".pdf")


def read_pdf(file_path: str, password: Optional[str] = None, max_pages: Optional[int] = None) -> Dict[str, Any]:
    """Text of a PDF file, page by page, up to ``max_pages`` pages."""
    path = Path(file_path)
    if not path.is_file():
        raise ToolError(f"PDF file not found: {file_path}", tool="pdf_document")
    try:
        with path.open("rb") as fh:
            if fh.read(len(PDF_MAGIC)) != PDF_MAGIC:
                raise ToolError(f"File is not a PDF document: {path.name}", tool="pdf_document")
            fh.seek(0)
            reader = PdfReader(fh, password=password)
            page_count = len(reader.pages)
            limit = page_count if max_pages is None else min(max_pages, page_count)
            pages = [(reader.pages[i].extract_text() or "").strip() for i in range(limit)]
    except PdfReadError as exc:
        raise ToolError(f"Could not read PDF {path.name}: {exc}", tool="pdf_document") from exc

    return {
        "file_name": path.name,
        "page_count": page_count,
        "pages_read": limit,
        "text": "\n\n".join(page for page in pages if page),
    }


async def extract(
    file_path: str,
    password: Optional[str] = None,
    max_pages: Optional[int] = None,
) -> Dict[str, Any]:
    """Extract text from a PDF; returns ``{text, page_count, pages_read, file_name}``."""
    if max_pages is not None and max_pages <= 0:
        raise ToolError("max_pages must be positive", tool="pdf_document")
    return await asyncio.to_thread(read_pdf, file_path, password, max_pages)


def describe(document: Dict[str, Any]) -> str:
    """Markdown description of an extracted PDF for the model's context."""
    text = document["text"]
    lines = [
        "## PDF Document",
        f"**File:** {document['file_name']}",
        f"**Pages:** {document['page_count']}",
        f"**Characters:** {len(text):,}",
    ]
    if text:
        lines.append("")
        lines.append("## Content")
        lines.append(text[:PREVIEW_CHARS] + ("..." if len(text) > PREVIEW_CHARS else ""))
    else:
        lines.append("")
        lines.append("No extractable text (the PDF may be scanned images).")
    lines.append("")
    lines.append("Use `pdf_document.extract(file_path)` in a script to read the full text.")
    return "\n".join(lines)


async def describe_upload(context: Any) -> Optional[Dict[str, Any]]:
    """``after_file_upload`` hook: describe uploaded PDF files."""
    fields = context if isinstance(context, dict) else vars(context)
    file_name = fields.get("file_name") or ""
    if not is_pdf(file_name, fields.get("file_type") or ""):
        return None
    document = await asyncio.to_thread(read_pdf, fields["file_path"])
    logger.info(f"Described uploaded PDF {file_name}", data={"pages": document["page_count"]})
    return {"description": describe(document)}
