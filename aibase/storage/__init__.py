"""File-backed storage for project extensions and categories."""

from aibase.storage.category_storage import Category, CategoryStorage
from aibase.storage.extension_storage import (
    ExampleEntry,
    Extension,
    ExtensionMetadata,
    ExtensionStorage,
)
from aibase.storage.json_files import read_json, write_json

__all__ = [
    "Category",
    "CategoryStorage",
    "ExampleEntry",
    "Extension",
    "ExtensionMetadata",
    "ExtensionStorage",
    "read_json",
    "write_json",
]
