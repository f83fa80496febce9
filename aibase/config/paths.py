"""Centralized path configuration for the data folder.

Layout::

    data/
    ├── projects/
    │   └── {tenantId}/{projectId}/
    │       ├── memory.json
    │       ├── categories.json
    │       ├── conversations/{convId}/todos.json
    │       └── extensions/{extensionId}/{metadata.json,index.py}
    ├── output/storage/       # large script outputs
    └── cache/extension-deps/ # dependency resolution manifests
"""

from pathlib import Path
from typing import Union

from aibase.config.settings import get_settings
from aibase.core.exceptions import InvalidPathError

TenantId = Union[int, str]


def _segment(value: TenantId, label: str) -> str:
    """Validate a single path segment taken from user-controlled ids."""
    text = str(value).strip()
    if not text or text in {".", ".."} or "/" in text or "\\" in text or "\x00" in text:
        raise InvalidPathError(f"Invalid {label}: {value!r}")
    return text


class DataPaths:
    """Resolve on-disk locations under a data directory."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_base = Path(data_dir)

    @property
    def projects_dir(self) -> Path:
        return self.data_base / "projects"

    @property
    def output_storage_dir(self) -> Path:
        return self.data_base / "output" / "storage"

    def tenant_dir(self, tenant_id: TenantId) -> Path:
        return self.projects_dir / _segment(tenant_id, "tenant id")

    def project_dir(self, project_id: str, tenant_id: TenantId) -> Path:
        return self.tenant_dir(tenant_id) / _segment(project_id, "project id")

    def conversation_dir(self, project_id: str, conv_id: str, tenant_id: TenantId) -> Path:
        return self.project_dir(project_id, tenant_id) / "conversations" / _segment(conv_id, "conversation id")

    def project_extensions_dir(self, project_id: str, tenant_id: TenantId) -> Path:
        return self.project_dir(project_id, tenant_id) / "extensions"

    def extension_dir(self, project_id: str, extension_id: str, tenant_id: TenantId) -> Path:
        return self.project_extensions_dir(project_id, tenant_id) / _segment(extension_id, "extension id")

    def memory_file(self, project_id: str, tenant_id: TenantId) -> Path:
        return self.project_dir(project_id, tenant_id) / "memory.json"

    def categories_file(self, project_id: str, tenant_id: TenantId) -> Path:
        return self.project_dir(project_id, tenant_id) / "categories.json"

    def todos_file(self, project_id: str, conv_id: str, tenant_id: TenantId) -> Path:
        return self.conversation_dir(project_id, conv_id, tenant_id) / "todos.json"


def get_data_paths() -> DataPaths:
    """Data paths for the configured data directory."""
    return DataPaths(get_settings().data_dir)
