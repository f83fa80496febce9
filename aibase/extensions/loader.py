"""Extension Loader.

Loads extensions (bundled defaults or a project's own), evaluates their
Python source and builds the namespaces injected into the script scope.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from aibase.config.paths import DataPaths, TenantId, get_data_paths
from aibase.config.settings import get_settings
from aibase.core.exceptions import AIBaseException, ExtensionEvaluationError
from aibase.core.logging import get_logger
from aibase.extensions.bundler import DependencyBundler, get_dependency_bundler
from aibase.extensions.evaluation import (
    build_namespace,
    collect_exports,
    execute_source,
    namespace_for,
)
from aibase.extensions.hooks import (
    ExtensionHookRegistry,
    FileUploadContext,
    HookType,
    extension_hook_registry,
)
from aibase.extensions.worker import (
    ExtensionWorker,
    ExtensionWorkerPool,
    get_worker_pool,
    source_fingerprint,
)
from aibase.storage.category_storage import CategoryStorage
from aibase.storage.extension_storage import (
    CODE_FILE,
    METADATA_FILE,
    Extension,
    ExtensionMetadata,
    ExtensionStorage,
)

logger = get_logger(__name__)

DEFAULTS_PATH = Path(__file__).parent / "defaults"


def _worker_proxy(worker: ExtensionWorker, function: str, fingerprint: str):
    async def proxy(*args, **kwargs):
        return await worker.invoke(function, args, kwargs, fingerprint=fingerprint)

    proxy.__name__ = function
    proxy.__qualname__ = function
    return proxy


def _worker_hook(worker: ExtensionWorker, hook_type: str, fingerprint: str):
    async def hook(context):
        return await worker.run_hook(hook_type, context, fingerprint=fingerprint)

    return hook


class ExtensionLoader:
    """Loader for project and default extensions."""

    def __init__(
        self,
        storage: ExtensionStorage,
        category_storage: CategoryStorage,
        defaults_path: Optional[Path] = None,
        hook_registry: Optional[ExtensionHookRegistry] = None,
        bundler: Optional[DependencyBundler] = None,
        worker_pool: Optional[ExtensionWorkerPool] = None,
        isolation: bool = False,
    ):
        """Initialize the loader.

        Args:
            storage: Project extension storage
            category_storage: Project category storage (used on reset)
            defaults_path: Directory with the bundled default extensions
            hook_registry: Registry extensions register hooks into
            bundler: Dependency resolver for ``metadata.dependencies``
            worker_pool: Worker pool used when ``isolation`` is on
            isolation: Run extension functions in worker processes
        """
        self.storage = storage
        self.category_storage = category_storage
        self.defaults_path = Path(defaults_path) if defaults_path else DEFAULTS_PATH
        self.hook_registry = hook_registry or extension_hook_registry
        self.bundler = bundler
        self.isolation = isolation
        self.worker_pool = worker_pool
        if isolation and worker_pool is None:
            self.worker_pool = ExtensionWorkerPool()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _read_default(self, directory: Path) -> Extension:
        metadata = json.loads((directory / METADATA_FILE).read_text(encoding="utf-8"))
        code = (directory / CODE_FILE).read_text(encoding="utf-8")
        return Extension(metadata=ExtensionMetadata.model_validate(metadata), code=code)

    def load_defaults(self, include_disabled: bool = False) -> List[Extension]:
        """Read the bundled default extensions."""
        if not self.defaults_path.is_dir():
            logger.warning(f"Defaults directory not found: {self.defaults_path}")
            return []

        extensions: List[Extension] = []
        for directory in sorted(self.defaults_path.iterdir()):
            if not directory.is_dir() or directory.name.startswith(("_", ".")):
                continue
            try:
                extension = self._read_default(directory)
            except (OSError, ValueError) as exc:
                logger.warning(f"Failed to load default extension {directory.name}", data={"error": str(exc)})
                continue
            if not extension.metadata.enabled and not include_disabled:
                continue
            extensions.append(extension)
        return extensions

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def _resolve_dependencies(self, extension: Extension) -> Dict[str, Any]:
        declared = extension.metadata.dependencies
        if not declared or self.bundler is None:
            return {}
        return await self.bundler.resolve_declared(declared)

    async def evaluate_extension(self, extension: Extension, owner: str = "") -> Dict[str, Any]:
        """Evaluate an extension's source and return its exports.

        ``owner`` selects the worker process when isolation is on, so
        projects never share one.
        """
        metadata = extension.metadata
        try:
            if self.isolation:
                return await self._evaluate_isolated(extension, owner)

            deps = await self._resolve_dependencies(extension)
            module_globals = execute_source(
                extension.code,
                metadata.id,
                deps=deps,
                hook_registry=_ScopedHookRegistry(self.hook_registry, metadata.id),
            )
            return collect_exports(module_globals)
        except AIBaseException:
            raise
        except Exception as exc:
            logger.error(f"Failed to evaluate extension '{metadata.name}'", data={"error": str(exc)})
            raise ExtensionEvaluationError(f"Extension evaluation failed: {exc}") from exc

    async def _evaluate_isolated(self, extension: Extension, owner: str) -> Dict[str, Any]:
        worker = self.worker_pool.get(extension.metadata.id, owner=owner)
        fingerprint = source_fingerprint(extension.code, extension.metadata.dependencies)
        evaluated = await worker.evaluate(
            extension.code,
            dependencies=extension.metadata.dependencies,
            metadata=extension.metadata.to_json(),
        )
        for hook_type in evaluated.get("hooks") or ():
            self.hook_registry.register_hook(
                hook_type, extension.metadata.id, _worker_hook(worker, hook_type, fingerprint)
            )

        exports: Dict[str, Any] = {}
        for name, entry in evaluated["exports"].items():
            exports[name] = _worker_proxy(worker, name, fingerprint) if entry.get("callable") else entry.get("value")
        return exports

    def enabled_extensions(
        self,
        project_id: str,
        tenant_id: TenantId,
        use_defaults: bool = True,
    ) -> List[Extension]:
        """Bundled defaults, or the project's enabled extensions (seeded on first use)."""
        if use_defaults:
            logger.info("Loading extensions from defaults directory")
            return self.load_defaults()
        logger.info(f"Loading project-specific extensions for {project_id}")
        self.initialize_project(project_id, tenant_id)
        return self.storage.get_enabled(project_id, tenant_id)

    async def load_extensions(
        self,
        project_id: str,
        tenant_id: TenantId,
        use_defaults: bool = True,
    ) -> Dict[str, Any]:
        """Load enabled extensions and return ``{namespace: exports}``."""
        extensions = self.enabled_extensions(project_id, tenant_id, use_defaults)
        if not extensions:
            logger.info(f"No enabled extensions for project {project_id}")
            return {}

        scope: Dict[str, Any] = {}
        for extension in extensions:
            try:
                exports = await self.evaluate_extension(extension, owner=f"{tenant_id}/{project_id}")
            except AIBaseException as exc:
                logger.error(
                    f"Failed to load extension '{extension.metadata.name}'",
                    data={"error": exc.message},
                )
                continue

            namespace = namespace_for(extension.metadata.id)
            scope[namespace] = build_namespace(namespace, exports)
            logger.info(
                f"Loaded extension '{extension.metadata.name}' as {namespace} with {len(exports)} exports"
            )
        return scope

    async def process_file_upload(
        self,
        upload: FileUploadContext,
        tenant_id: TenantId,
        use_defaults: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """Run the upload hooks of extensions whose ``fileExtraction`` covers the file.

        Returns the first non-empty hook result (e.g. ``{"description": ...}``)
        or None when no extension handles the file type.
        """
        owner = f"{tenant_id}/{upload.project_id}"
        handlers: List[str] = []
        for extension in self.enabled_extensions(upload.project_id, tenant_id, use_defaults):
            extraction = extension.metadata.file_extraction
            if extraction is None or not extraction.supports(upload.file_name, upload.file_type):
                continue
            extension_id = extension.metadata.id
            if not self.hook_registry.has_hook(HookType.AFTER_FILE_UPLOAD, extension_id):
                try:
                    await self.evaluate_extension(extension, owner=owner)
                except AIBaseException as exc:
                    logger.error(
                        f"Failed to load extension '{extension.metadata.name}' for upload",
                        data={"error": exc.message},
                    )
                    continue
            handlers.append(extension_id)

        if not handlers:
            logger.debug(
                "No extension handles uploaded file",
                data={"file_name": upload.file_name, "file_type": upload.file_type},
            )
            return None
        return await self.hook_registry.execute_hook(
            HookType.AFTER_FILE_UPLOAD, upload, extension_ids=handlers
        )

    # ------------------------------------------------------------------
    # Project seeding
    # ------------------------------------------------------------------

    def copy_default_extensions(self, project_id: str, tenant_id: TenantId) -> int:
        """Copy every bundled default into the project folder."""
        copied = 0
        for extension in self.load_defaults(include_disabled=True):
            data = extension.metadata.model_dump(by_alias=True, exclude_none=True)
            data.update(code=extension.code, isDefault=True)
            try:
                self.storage.create(project_id, tenant_id, data)
            except AIBaseException as exc:
                logger.warning(
                    f"Failed to copy default extension {extension.metadata.id}",
                    data={"error": exc.message},
                )
                continue
            copied += 1
        logger.info(f"Copied {copied} default extensions to project {project_id}")
        return copied

    def initialize_project(self, project_id: str, tenant_id: TenantId) -> None:
        """Seed the project folder with the defaults when it has no extensions."""
        if self.storage.get_all(project_id, tenant_id):
            return
        self.storage.ensure_extensions_dir(project_id, tenant_id)
        self.copy_default_extensions(project_id, tenant_id)

    def reset_to_defaults(self, project_id: str, tenant_id: TenantId) -> None:
        """Delete all project extensions, reset categories and copy the defaults again."""
        for extension in self.storage.get_all(project_id, tenant_id):
            self.storage.delete(project_id, extension.metadata.id, tenant_id)
            self.hook_registry.unregister_extension_hooks(extension.metadata.id)
        self.category_storage.reset_to_defaults(project_id, tenant_id)
        self.copy_default_extensions(project_id, tenant_id)
        logger.info(f"Reset extensions to defaults for project {project_id}")


class _ScopedHookRegistry:
    """Hook registry view handed to extension code; binds the extension id."""

    def __init__(self, registry: ExtensionHookRegistry, extension_id: str):
        self._registry = registry
        self._extension_id = extension_id

    def register_hook(self, hook_type, callback, extension_id: Optional[str] = None) -> None:
        self._registry.register_hook(hook_type, extension_id or self._extension_id, callback)

    def unregister_extension_hooks(self, extension_id: Optional[str] = None) -> None:
        self._registry.unregister_extension_hooks(extension_id or self._extension_id)


def build_extension_loader(paths: Optional[DataPaths] = None) -> ExtensionLoader:
    """Loader wired to the configured data directory and shared services."""
    settings = get_settings()
    paths = paths or get_data_paths()
    return ExtensionLoader(
        ExtensionStorage(paths),
        CategoryStorage(paths),
        bundler=get_dependency_bundler(),
        worker_pool=get_worker_pool() if settings.extension_isolation else None,
        isolation=settings.extension_isolation,
    )
