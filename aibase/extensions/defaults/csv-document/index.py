"""CSV inspection.

Registers an ``after_file_upload`` hook so uploaded CSV files get a
structured description.
"""

from aibase.tools.runtime import csv_document


async def summarize(file_path, max_rows=5):
    """Columns, row count, a preview of ``max_rows`` rows and a markdown description."""
    return await csv_document.summarize(file_path, max_rows=max_rows)


async def describe_upload(context):
    return await csv_document.describe_upload(context)


hook_registry.register_hook("after_file_upload", describe_upload)

__all__ = ["summarize"]
