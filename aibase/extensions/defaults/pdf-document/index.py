"""PDF text extraction.

Uploaded PDF files are described automatically through an
``after_file_upload`` hook.
"""

from aibase.tools.runtime import pdf_document


async def extract(file_path, password=None, max_pages=None):
    """Text, page count and file name of a PDF."""
    return await pdf_document.extract(file_path, password=password, max_pages=max_pages)


hook_registry.register_hook("after_file_upload", pdf_document.describe_upload)

__all__ = ["extract"]
