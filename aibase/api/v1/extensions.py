"""v1 extension endpoints.

Project extension management plus the generated extension context.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from aibase.auth.dependencies import Identity, get_identity
from aibase.config import get_data_paths, get_settings
from aibase.core.exceptions import NotFoundError, ValidationFailedError
from aibase.core.logging import get_logger
from aibase.extensions.context import generate_extensions_context
from aibase.extensions.hooks import extension_hook_registry
from aibase.extensions.loader import ExtensionLoader, build_extension_loader
from aibase.storage.extension_storage import ExtensionStorage

logger = get_logger(__name__)

router = APIRouter(prefix="/projects/{project_id}/extensions", tags=["v1-extensions"])

EXTENSION_ID_PATTERN = r"^[a-z0-9][a-z0-9_-]*$"


class ExtensionCreateRequest(BaseModel):
    """Create extension request."""
    id: str = Field(min_length=1, max_length=100, pattern=EXTENSION_ID_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    author: Optional[str] = None
    version: str = "1.0.0"
    category: str = ""
    enabled: bool = True
    dependencies: Dict[str, str] = Field(default_factory=dict)
    examples: Optional[List[Dict[str, Any]]] = None
    code: str


class ExtensionUpdateRequest(BaseModel):
    """Partial extension update."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None
    category: Optional[str] = None
    enabled: Optional[bool] = None
    dependencies: Optional[Dict[str, str]] = None
    examples: Optional[List[Dict[str, Any]]] = None
    code: Optional[str] = None


def _storage() -> ExtensionStorage:
    return ExtensionStorage(get_data_paths())


def _loader() -> ExtensionLoader:
    return build_extension_loader(get_data_paths())


def _check_code(code: str) -> None:
    try:
        compile(code, "<extension>", "exec")
    except SyntaxError as exc:
        raise ValidationFailedError(
            "Extension code does not compile",
            errors=[f"line {exc.lineno}: {exc.msg}"],
        ) from exc


@router.get("")
async def list_extensions(
    project_id: str,
    identity: Identity = Depends(get_identity),
) -> List[Dict[str, Any]]:
    """List the project's extensions, newest first."""
    return [ext.to_json() for ext in _storage().get_all(project_id, identity.tenant_id)]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_extension(
    project_id: str,
    body: ExtensionCreateRequest,
    identity: Identity = Depends(get_identity),
) -> Dict[str, Any]:
    """Create a project extension."""
    _check_code(body.code)
    extension = _storage().create(project_id, identity.tenant_id, body.model_dump(exclude_none=True))
    return extension.to_json()


@router.get("/context")
async def get_extensions_context(
    project_id: str,
    identity: Identity = Depends(get_identity),
) -> Dict[str, str]:
    """Markdown describing the enabled extensions, as given to the model."""
    paths = get_data_paths()
    extensions = None
    if get_settings().use_default_extensions:
        extensions = _loader().load_defaults()
    return {"context": generate_extensions_context(project_id, identity.tenant_id, paths=paths, extensions=extensions)}


@router.post("/reset")
async def reset_extensions(
    project_id: str,
    identity: Identity = Depends(get_identity),
) -> List[Dict[str, Any]]:
    """Replace all project extensions with the bundled defaults."""
    loader = _loader()
    loader.reset_to_defaults(project_id, identity.tenant_id)
    return [ext.to_json() for ext in loader.storage.get_all(project_id, identity.tenant_id)]


@router.get("/{extension_id}")
async def get_extension(
    project_id: str,
    extension_id: str,
    identity: Identity = Depends(get_identity),
) -> Dict[str, Any]:
    extension = _storage().get_by_id(project_id, extension_id, identity.tenant_id)
    if not extension:
        raise NotFoundError(f"Extension '{extension_id}' not found")
    return extension.to_json()


@router.patch("/{extension_id}")
async def update_extension(
    project_id: str,
    extension_id: str,
    body: ExtensionUpdateRequest,
    identity: Identity = Depends(get_identity),
) -> Dict[str, Any]:
    """Update metadata and/or code; hooks are re-registered on next load."""
    updates = body.model_dump(exclude_none=True)
    if "code" in updates:
        _check_code(updates["code"])
    extension = _storage().update(project_id, extension_id, identity.tenant_id, updates)
    if not extension:
        raise NotFoundError(f"Extension '{extension_id}' not found")
    extension_hook_registry.unregister_extension_hooks(extension_id)
    return extension.to_json()


@router.delete("/{extension_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_extension(
    project_id: str,
    extension_id: str,
    identity: Identity = Depends(get_identity),
) -> None:
    if not _storage().delete(project_id, extension_id, identity.tenant_id):
        raise NotFoundError(f"Extension '{extension_id}' not found")
    extension_hook_registry.unregister_extension_hooks(extension_id)


@router.post("/{extension_id}/toggle")
async def toggle_extension(
    project_id: str,
    extension_id: str,
    identity: Identity = Depends(get_identity),
) -> Dict[str, Any]:
    extension = _storage().toggle(project_id, extension_id, identity.tenant_id)
    if not extension:
        raise NotFoundError(f"Extension '{extension_id}' not found")
    if not extension.metadata.enabled:
        extension_hook_registry.unregister_extension_hooks(extension_id)
    logger.info(f"Extension '{extension_id}' {'enabled' if extension.metadata.enabled else 'disabled'}")
    return extension.to_json()
