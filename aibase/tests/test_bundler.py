"""Tests for DependencyBundler."""

import json

import pytest

from aibase.core.exceptions import DependencyResolutionError
from aibase.extensions.bundler import (
    DependencyBundler,
    DependencyRequest,
    _specifier,
    get_dependency_bundler,
    import_distribution,
    reset_dependency_bundler,
)


@pytest.fixture
def bundler(tmp_path):
    return DependencyBundler(tmp_path / "deps")


@pytest.mark.parametrize(
    "version, contained, excluded",
    [
        ("*", "0.1", None),
        ("latest", "99.0", None),
        (">=2.0", "2.1", "1.9"),
        ("1.4.2", "1.4.2", "1.4.3"),
        ("~=1.4", "1.9", "2.0"),
    ],
)
def test_specifier(version, contained, excluded):
    spec = _specifier(version)
    assert spec.contains(contained)
    if excluded:
        assert not spec.contains(excluded)


def test_cache_key():
    assert DependencyRequest("sqlalchemy", ">=2.0").cache_key == "sqlalchemy@>=2.0"
    assert DependencyRequest("sqlalchemy", "*", "engine").cache_key == "sqlalchemy@*/engine"


def test_import_distribution_installed():
    installed, module_name, module = import_distribution(DependencyRequest("packaging"))
    assert module_name == "packaging"
    assert module.__name__ == "packaging"
    assert installed


def test_import_distribution_subpath():
    _, module_name, module = import_distribution(DependencyRequest("packaging", "*", "version"))
    assert module_name == "packaging.version"
    assert hasattr(module, "Version")


def test_import_distribution_missing():
    with pytest.raises(LookupError):
        import_distribution(DependencyRequest("definitely-not-installed-aibase-pkg"))


def test_import_distribution_unsatisfied_version():
    with pytest.raises(LookupError, match="does not satisfy"):
        import_distribution(DependencyRequest("packaging", "<1"))


@pytest.mark.asyncio
async def test_resolve_writes_manifest_and_caches(bundler):
    module = await bundler.resolve_dependency(DependencyRequest("packaging", ">=20"))
    assert module.__name__ == "packaging"

    manifests = list(bundler.cache_dir.glob("*.json"))
    assert len(manifests) == 1
    manifest = json.loads(manifests[0].read_text())
    assert manifest["name"] == "packaging"
    assert manifest["requested"] == ">=20"

    again = await bundler.resolve_dependency(DependencyRequest("packaging", ">=20"))
    assert again is module


@pytest.mark.asyncio
async def test_resolve_unknown_raises(bundler):
    with pytest.raises(DependencyResolutionError) as exc_info:
        await bundler.resolve_dependency(DependencyRequest("definitely-not-installed-aibase-pkg", "1.0"))
    assert "definitely-not-installed-aibase-pkg@1.0" in exc_info.value.message


@pytest.mark.asyncio
async def test_resolve_declared(bundler):
    modules = await bundler.resolve_declared({"packaging": "*", "httpx": ">=0.20"})
    assert set(modules) == {"packaging", "httpx"}
    assert modules["httpx"].__name__ == "httpx"


@pytest.mark.asyncio
async def test_create_manifest(bundler):
    manifest = await bundler.create_manifest({"packaging": ">=20"})
    assert "generated_at" in manifest
    (entry,) = manifest["packages"]
    assert entry["name"] == "packaging"
    assert entry["module"] == "packaging"
    assert "resolved_at" not in entry


@pytest.mark.asyncio
async def test_cache_stats_and_clear(bundler):
    await bundler.resolve_declared({"packaging": "*", "httpx": "*"})

    stats = bundler.get_cache_stats()
    assert stats["memory_cache_size"] == 2
    assert stats["disk_cache_size"] > 0
    assert stats["cached_packages"] == ["httpx@*", "packaging@*"]

    bundler.clear_cache("httpx", "*")
    assert bundler.get_cache_stats()["cached_packages"] == ["packaging@*"]

    bundler.clear_cache()
    stats = bundler.get_cache_stats()
    assert stats == {"memory_cache_size": 0, "disk_cache_size": 0, "cached_packages": []}


@pytest.mark.asyncio
async def test_disk_manifests_survive_restart(tmp_path):
    first = DependencyBundler(tmp_path / "deps")
    await first.resolve_dependency(DependencyRequest("packaging", "*"))

    second = DependencyBundler(tmp_path / "deps")
    stats = second.get_cache_stats()
    assert stats["cached_packages"] == ["packaging@*"]
    assert stats["memory_cache_size"] == 0


def test_singleton_uses_configured_cache_dir(data_dir):
    reset_dependency_bundler()
    bundler = get_dependency_bundler()
    assert bundler is get_dependency_bundler()
    assert bundler.cache_dir == data_dir / "cache" / "extension-deps"
