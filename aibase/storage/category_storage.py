"""Project categories used to group extensions.

Stored in ``data/projects/{tenantId}/{projectId}/categories.json``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from aibase.config.paths import DataPaths, TenantId
from aibase.core.logging import get_logger
from aibase.core.time import now_ms
from aibase.storage.json_files import read_json, write_json

logger = get_logger(__name__)

DEFAULT_CATEGORIES = (
    ("database-tools", "Database Tools", "Query and manipulate databases"),
    ("web-tools", "Web Tools", "Web scraping, APIs, and data fetching"),
    ("document-tools", "Document Tools", "Document processing and conversion"),
    ("visualization-tools", "Visualization Tools", "Charts, tables, and diagrams"),
    ("utility-tools", "Utility Tools", "Helper functions and utilities"),
)


class Category(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    created_at: int = Field(default=0, alias="createdAt")
    updated_at: int = Field(default=0, alias="updatedAt")

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def default_categories() -> List[Category]:
    now = now_ms()
    return [
        Category(id=cid, name=name, description=desc, created_at=now, updated_at=now)
        for cid, name, desc in DEFAULT_CATEGORIES
    ]


class CategoryStorage:
    """File-backed store for project categories."""

    def __init__(self, paths: DataPaths):
        self.paths = paths

    def _write(self, project_id: str, tenant_id: TenantId, categories: List[Category]) -> None:
        write_json(
            self.paths.categories_file(project_id, tenant_id),
            [c.to_json() for c in categories],
        )

    def get_all(self, project_id: str, tenant_id: TenantId) -> List[Category]:
        """All categories sorted by name; the defaults are written on first access."""
        path = self.paths.categories_file(project_id, tenant_id)
        if not path.exists():
            categories = default_categories()
            self._write(project_id, tenant_id, categories)
            logger.info(f"Created default categories for project {project_id}")
        else:
            categories = [Category.model_validate(c) for c in read_json(path, list)]
        return sorted(categories, key=lambda c: c.name.lower())

    def get_by_id(self, project_id: str, category_id: str, tenant_id: TenantId) -> Optional[Category]:
        for category in self.get_all(project_id, tenant_id):
            if category.id == category_id:
                return category
        return None

    def reset_to_defaults(self, project_id: str, tenant_id: TenantId) -> List[Category]:
        categories = default_categories()
        self._write(project_id, tenant_id, categories)
        logger.info(f"Reset categories to defaults for project {project_id}")
        return categories
