"""Extension storage.

Project extensions live in
``data/projects/{tenantId}/{projectId}/extensions/{extensionId}/`` as a
``metadata.json`` document next to the ``index.py`` source.
"""

from __future__ import annotations

import json
import shutil
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from aibase.config.paths import DataPaths, TenantId
from aibase.core.exceptions import ExtensionError
from aibase.core.logging import get_logger
from aibase.core.time import now_ms
from aibase.storage.json_files import write_json

logger = get_logger(__name__)

METADATA_FILE = "metadata.json"
CODE_FILE = "index.py"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ExampleEntry(_CamelModel):
    title: str
    description: Optional[str] = None
    code: str
    result: Optional[str] = None


class FileExtractionConfig(_CamelModel):
    supported_types: List[str] = Field(default_factory=list, alias="supportedTypes")
    output_format: str = Field(default="markdown", alias="outputFormat")

    def supports(self, file_name: str, file_type: str = "") -> bool:
        """Whether a file matches by extension (``pdf``) or MIME type (``application/pdf``)."""
        supported = {entry.lower().lstrip(".") for entry in self.supported_types}
        suffix = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
        return bool(supported) and (suffix in supported or (file_type or "").lower() in supported)


class MessageUIConfig(_CamelModel):
    component_name: str = Field(alias="componentName")
    visualization_type: str = Field(alias="visualizationType")


class InspectionUIConfig(_CamelModel):
    tab_label: str = Field(alias="tabLabel")
    component_name: str = Field(alias="componentName")
    show_by_default: Optional[bool] = Field(default=None, alias="showByDefault")


class ExtensionMetadata(_CamelModel):
    """Metadata stored in ``metadata.json``."""

    id: str
    name: str
    description: str = ""
    author: Optional[str] = None
    version: str = "1.0.0"
    category: str = ""
    enabled: bool = True
    is_default: bool = Field(default=False, alias="isDefault")
    created_at: int = Field(default=0, alias="createdAt")
    updated_at: int = Field(default=0, alias="updatedAt")
    # Python distributions the extension needs: {"name": "version spec"}
    dependencies: Dict[str, str] = Field(default_factory=dict)
    examples: Optional[List[ExampleEntry]] = None
    file_extraction: Optional[FileExtractionConfig] = Field(default=None, alias="fileExtraction")
    message_ui: Optional[MessageUIConfig] = Field(default=None, alias="messageUI")
    inspection_ui: Optional[InspectionUIConfig] = Field(default=None, alias="inspectionUI")

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Extension(BaseModel):
    """Extension metadata plus its Python source."""

    metadata: ExtensionMetadata
    code: str

    def to_json(self) -> Dict[str, Any]:
        return {"metadata": self.metadata.to_json(), "code": self.code}


# Fields a caller may change through update(); id/timestamps/is_default are managed here.
UPDATABLE_FIELDS = (
    "name",
    "description",
    "author",
    "version",
    "category",
    "enabled",
    "dependencies",
    "examples",
    "file_extraction",
    "message_ui",
    "inspection_ui",
)


class ExtensionStorage:
    """File-backed store for project extensions."""

    def __init__(self, paths: DataPaths):
        self.paths = paths

    def _metadata_path(self, project_id: str, extension_id: str, tenant_id: TenantId) -> Path:
        return self.paths.extension_dir(project_id, extension_id, tenant_id) / METADATA_FILE

    def _code_path(self, project_id: str, extension_id: str, tenant_id: TenantId) -> Path:
        return self.paths.extension_dir(project_id, extension_id, tenant_id) / CODE_FILE

    def ensure_extensions_dir(self, project_id: str, tenant_id: TenantId) -> None:
        self.paths.project_extensions_dir(project_id, tenant_id).mkdir(parents=True, exist_ok=True)

    def create(
        self,
        project_id: str,
        tenant_id: TenantId,
        data: Dict[str, Any],
    ) -> Extension:
        """Create a new extension from ``data`` (metadata fields plus ``code``)."""
        extension_id = data["id"]
        extension_dir = self.paths.extension_dir(project_id, extension_id, tenant_id)
        if extension_dir.exists():
            raise ExtensionError(f"Extension '{extension_id}' already exists", status_code=409)

        now = now_ms()
        fields = {k: v for k, v in data.items() if k != "code" and v is not None}
        fields.update(createdAt=now, updatedAt=now)
        fields.pop("created_at", None)
        fields.pop("updated_at", None)
        metadata = ExtensionMetadata.model_validate(fields)
        code = data.get("code") or ""

        extension_dir.mkdir(parents=True, exist_ok=True)
        write_json(extension_dir / METADATA_FILE, metadata.to_json())
        (extension_dir / CODE_FILE).write_text(code, encoding="utf-8")

        logger.info(f"Created extension '{extension_id}' for project {project_id}")
        return Extension(metadata=metadata, code=code)

    def get_by_id(self, project_id: str, extension_id: str, tenant_id: TenantId) -> Optional[Extension]:
        """Get extension by ID, None when it does not exist."""
        try:
            raw = self._metadata_path(project_id, extension_id, tenant_id).read_text(encoding="utf-8")
            code = self._code_path(project_id, extension_id, tenant_id).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return Extension(metadata=ExtensionMetadata.model_validate(json.loads(raw)), code=code)

    def get_all(self, project_id: str, tenant_id: TenantId) -> List[Extension]:
        """All project extensions, newest first."""
        ext_dir = self.paths.project_extensions_dir(project_id, tenant_id)
        if not ext_dir.is_dir():
            return []

        extensions: List[Extension] = []
        for entry in sorted(ext_dir.iterdir()):
            if not entry.is_dir():
                continue
            try:
                ext = self.get_by_id(project_id, entry.name, tenant_id)
            except (ValueError, OSError) as exc:
                logger.warning(f"Failed to load extension '{entry.name}'", data={"error": str(exc)})
                continue
            if ext:
                extensions.append(ext)

        extensions.sort(key=lambda e: e.metadata.created_at, reverse=True)
        return extensions

    def get_enabled(self, project_id: str, tenant_id: TenantId) -> List[Extension]:
        return [ext for ext in self.get_all(project_id, tenant_id) if ext.metadata.enabled]

    def update(
        self,
        project_id: str,
        extension_id: str,
        tenant_id: TenantId,
        updates: Dict[str, Any],
    ) -> Optional[Extension]:
        """Apply a partial update; None when the extension does not exist."""
        existing = self.get_by_id(project_id, extension_id, tenant_id)
        if not existing:
            return None

        merged = existing.metadata.model_dump()
        for field in UPDATABLE_FIELDS:
            if field in updates and updates[field] is not None:
                merged[field] = updates[field]
        merged["updated_at"] = now_ms()
        metadata = ExtensionMetadata.model_validate(merged)

        write_json(self._metadata_path(project_id, extension_id, tenant_id), metadata.to_json())

        code = existing.code
        if updates.get("code") is not None:
            code = updates["code"]
            self._code_path(project_id, extension_id, tenant_id).write_text(code, encoding="utf-8")

        logger.info(f"Updated extension '{extension_id}' for project {project_id}")
        return Extension(metadata=metadata, code=code)

    def delete(self, project_id: str, extension_id: str, tenant_id: TenantId) -> bool:
        extension_dir = self.paths.extension_dir(project_id, extension_id, tenant_id)
        if not extension_dir.exists():
            return False
        shutil.rmtree(extension_dir)
        logger.info(f"Deleted extension '{extension_id}' for project {project_id}")
        return True

    def toggle(self, project_id: str, extension_id: str, tenant_id: TenantId) -> Optional[Extension]:
        existing = self.get_by_id(project_id, extension_id, tenant_id)
        if not existing:
            return None
        return self.update(project_id, extension_id, tenant_id, {"enabled": not existing.metadata.enabled})

    def exists(self, project_id: str, extension_id: str, tenant_id: TenantId) -> bool:
        return self.paths.extension_dir(project_id, extension_id, tenant_id).exists()

    def get_by_category(self, project_id: str, category: str, tenant_id: TenantId) -> List[Extension]:
        return [ext for ext in self.get_all(project_id, tenant_id) if ext.metadata.category == category]

    def get_categories(self, project_id: str, tenant_id: TenantId) -> List[str]:
        return sorted({ext.metadata.category for ext in self.get_all(project_id, tenant_id)})

    def get_by_category_grouped(self, project_id: str, tenant_id: TenantId) -> Dict[str, List[Extension]]:
        """Extensions grouped by category id, sorted by name within each group."""
        grouped: Dict[str, List[Extension]] = defaultdict(list)
        for ext in self.get_all(project_id, tenant_id):
            grouped[ext.metadata.category].append(ext)
        for exts in grouped.values():
            exts.sort(key=lambda e: e.metadata.name.lower())
        return dict(grouped)

    def uncategorize_by_category(self, project_id: str, category_id: str, tenant_id: TenantId) -> None:
        """Clear the category of every extension in a deleted category."""
        for ext in self.get_by_category(project_id, category_id, tenant_id):
            self.update(project_id, ext.metadata.id, tenant_id, {"category": ""})
            logger.info(f"Uncategorized extension '{ext.metadata.id}' from deleted category '{category_id}'")
