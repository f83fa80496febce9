"""v1 extension dependency endpoints.

Inspect and manage the backend dependency cache used when extensions
declare ``dependencies`` in their metadata.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from aibase.core.logging import get_logger
from aibase.extensions.bundler import get_dependency_bundler

logger = get_logger(__name__)

router = APIRouter(prefix="/extensions/dependencies", tags=["v1-dependencies"])


class ResolveRequest(BaseModel):
    """Dependencies to resolve, ``{name: version spec}``."""
    dependencies: Dict[str, str] = Field(min_length=1)


@router.get("/stats")
async def dependency_cache_stats() -> Dict[str, Any]:
    return get_dependency_bundler().get_cache_stats()


@router.post("/resolve")
async def resolve_dependencies(body: ResolveRequest) -> Dict[str, Any]:
    """Resolve dependencies and return their manifest."""
    return await get_dependency_bundler().create_manifest(body.dependencies)


@router.delete("/cache")
async def clear_dependency_cache(name: Optional[str] = None, version: Optional[str] = None) -> Dict[str, Any]:
    """Clear one cached package (``name``/``version``) or the whole cache."""
    bundler = get_dependency_bundler()
    bundler.clear_cache(name, version)
    logger.info("Dependency cache cleared", data={"name": name, "version": version})
    return {"cleared": True, "name": name, "version": version}
