"""Extension dependency resolution.

Extensions declare Python distributions in ``metadata.json``
(``{"dependencies": {"sqlalchemy": ">=2.0"}}``). The bundler resolves each
one against the installed environment, imports it and hands the module to
the extension as ``deps[name]``. Resolutions are cached in memory (modules)
and on disk (JSON manifests) until cleared.
"""

from __future__ import annotations

import asyncio
import importlib
import json
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from importlib import metadata as importlib_metadata
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterable, Optional, Tuple

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from aibase.config.settings import get_settings
from aibase.core.exceptions import DependencyResolutionError
from aibase.core.logging import get_logger

logger = get_logger(__name__)

ANY_VERSION = {"", "*", "latest"}


@dataclass(frozen=True)
class DependencyRequest:
    """A single declared dependency."""
    name: str
    version: str = "*"
    subpath: Optional[str] = None  # dotted sub-module, e.g. "engine" for sqlalchemy.engine

    @property
    def cache_key(self) -> str:
        suffix = f"/{self.subpath}" if self.subpath else ""
        return f"{self.name}@{self.version}{suffix}"


@dataclass
class ResolvedDependency:
    name: str
    requested: str
    installed_version: str
    module_name: str
    size: int = 0
    module: Optional[ModuleType] = None

    def manifest(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "requested": self.requested,
            "installed_version": self.installed_version,
            "module": self.module_name,
            "resolved_at": datetime.now(UTC).isoformat(),
        }


def _specifier(version: str) -> SpecifierSet:
    text = (version or "").strip()
    if text in ANY_VERSION:
        return SpecifierSet()
    if text[0].isdigit():
        text = f"=={text}"
    return SpecifierSet(text)


def _import_name(dist: importlib_metadata.Distribution, name: str) -> str:
    top_level = dist.read_text("top_level.txt")
    if top_level:
        for line in top_level.splitlines():
            line = line.strip()
            if line and not line.startswith("_"):
                return line
    return name.replace("-", "_").lower()


def import_distribution(req: DependencyRequest) -> Tuple[str, str, ModuleType]:
    """Import an installed distribution; returns (installed version, module name, module).

    Raises LookupError when the distribution is missing or does not satisfy
    the requested version, ImportError when its module cannot be imported.
    """
    try:
        dist = importlib_metadata.distribution(req.name)
    except importlib_metadata.PackageNotFoundError as exc:
        raise LookupError(f"distribution '{req.name}' is not installed") from exc

    installed = dist.version
    try:
        spec = _specifier(req.version)
        if spec and Version(installed) not in spec:
            raise LookupError(f"installed version {installed} does not satisfy '{req.version}'")
    except (InvalidSpecifier, InvalidVersion) as exc:
        raise LookupError(str(exc)) from exc

    module_name = _import_name(dist, req.name)
    if req.subpath:
        module_name = f"{module_name}.{req.subpath.strip('.').replace('/', '.')}"
    return installed, module_name, importlib.import_module(module_name)


class DependencyBundler:
    """Resolve, import and cache extension dependencies."""

    def __init__(self, cache_dir: Path | str):
        self.cache_dir = Path(cache_dir)
        self._cache: Dict[str, ResolvedDependency] = {}
        self._cache_initialized = False

    def _cache_path(self, cache_key: str) -> Path:
        safe_key = cache_key.replace("/", "-").replace("@", "-")
        return self.cache_dir / f"{safe_key}.json"

    def _initialize_cache(self) -> None:
        if self._cache_initialized:
            return

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        for path in self.cache_dir.glob("*.json"):
            try:
                manifest = json.loads(path.read_text(encoding="utf-8"))
                key = DependencyRequest(manifest["name"], manifest["requested"]).cache_key
                self._cache.setdefault(
                    key,
                    ResolvedDependency(
                        name=manifest["name"],
                        requested=manifest["requested"],
                        installed_version=manifest.get("installed_version", ""),
                        module_name=manifest.get("module", ""),
                        size=path.stat().st_size,
                    ),
                )
            except (OSError, ValueError, KeyError) as exc:
                logger.warning(f"Failed to scan cached dependency manifest {path.name}", data={"error": str(exc)})

        self._cache_initialized = True
        logger.info("Dependency cache initialized", data={"cached": len(self._cache)})

    def _resolve_sync(self, req: DependencyRequest) -> ResolvedDependency:
        installed, module_name, module = import_distribution(req)

        resolved = ResolvedDependency(
            name=req.name,
            requested=req.version,
            installed_version=installed,
            module_name=module_name,
            module=module,
        )
        path = self._cache_path(req.cache_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(resolved.manifest(), indent=2), encoding="utf-8")
        resolved.size = path.stat().st_size
        return resolved

    async def resolve_dependency(self, req: DependencyRequest) -> ModuleType:
        """Return the imported module for ``req``."""
        self._initialize_cache()

        cached = self._cache.get(req.cache_key)
        if cached and cached.module is not None:
            logger.debug(f"Dependency {req.cache_key} in memory cache")
            return cached.module

        logger.info(f"Resolving backend dependency {req.cache_key}")
        try:
            resolved = await asyncio.to_thread(self._resolve_sync, req)
        except (LookupError, ImportError, OSError) as exc:
            logger.error(f"Failed to load backend dependency {req.cache_key}", data={"error": str(exc)})
            raise DependencyResolutionError(
                f"Failed to load backend dependency {req.name}@{req.version}: {exc}"
            ) from exc

        self._cache[req.cache_key] = resolved
        logger.info(
            f"Backend dependency loaded {req.cache_key}",
            data={"installed_version": resolved.installed_version, "module": resolved.module_name},
        )
        return resolved.module

    async def resolve_dependencies(self, requests: Iterable[DependencyRequest]) -> Dict[str, ModuleType]:
        """Resolve several dependencies concurrently; the first failure propagates."""
        requests = list(requests)
        modules = await asyncio.gather(*(self.resolve_dependency(r) for r in requests))
        return {req.name: module for req, module in zip(requests, modules)}

    async def resolve_declared(self, dependencies: Dict[str, str]) -> Dict[str, ModuleType]:
        return await self.resolve_dependencies(
            DependencyRequest(name, version) for name, version in (dependencies or {}).items()
        )

    async def create_manifest(self, dependencies: Dict[str, str]) -> Dict[str, Any]:
        """Combined lock-like document for a ``{name: spec}`` mapping."""
        await self.resolve_declared(dependencies)
        packages = []
        for name, version in dependencies.items():
            resolved = self._cache[DependencyRequest(name, version).cache_key]
            entry = resolved.manifest()
            entry.pop("resolved_at")
            packages.append(entry)
        return {
            "generated_at": datetime.now(UTC).isoformat(),
            "packages": packages,
        }

    def clear_cache(self, name: Optional[str] = None, version: Optional[str] = None) -> None:
        """Clear one package (``name`` and ``version``) or the whole cache."""
        if name and version:
            key = DependencyRequest(name, version).cache_key
            self._cache.pop(key, None)
            self._cache_path(key).unlink(missing_ok=True)
            logger.info(f"Cleared dependency cache {key}")
            return

        self._cache.clear()
        shutil.rmtree(self.cache_dir, ignore_errors=True)
        self._cache_initialized = False
        logger.info("Cleared all dependency cache")

    def get_cache_stats(self) -> Dict[str, Any]:
        self._initialize_cache()
        disk_size = sum(p.stat().st_size for p in self.cache_dir.glob("*.json"))
        return {
            "memory_cache_size": sum(1 for r in self._cache.values() if r.module is not None),
            "disk_cache_size": disk_size,
            "cached_packages": sorted(self._cache.keys()),
        }


_bundler: Optional[DependencyBundler] = None


def get_dependency_bundler() -> DependencyBundler:
    """Process-wide bundler rooted at the configured cache directory."""
    global _bundler
    if _bundler is None:
        _bundler = DependencyBundler(get_settings().effective_deps_cache_dir)
    return _bundler


def reset_dependency_bundler() -> None:
    global _bundler
    _bundler = None
