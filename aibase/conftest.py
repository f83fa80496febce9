"""Pytest configuration and fixtures for AIBase backend tests.

Sets up the test environment before any tests run so settings are loaded
with ``ENVIRONMENT=test``, and points the data directory at a temporary
folder per test.
"""

import os

import pytest


def pytest_configure(config):
    """Configure test environment before any tests run.

    IMPORTANT: Set environment variables BEFORE importing the app to ensure
    settings are loaded with the test environment.
    """
    config.addinivalue_line("markers", "security: Security-related tests")
    config.addinivalue_line("markers", "slow: Slow-running tests (excluded from fast)")

    os.environ.setdefault("ENVIRONMENT", "test")
    os.environ.setdefault("API_TOKEN", "")
    os.environ.setdefault("BRAVE_API_KEY", "")


def _reset_singletons():
    from aibase.config.settings import get_settings
    from aibase.extensions.bundler import reset_dependency_bundler
    from aibase.extensions.hooks import extension_hook_registry
    from aibase.extensions.output_storage import reset_output_storage
    from aibase.extensions.worker import shutdown_worker_pool

    get_settings.cache_clear()
    reset_dependency_bundler()
    reset_output_storage()
    shutdown_worker_pool()
    extension_hook_registry.clear_all()


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Isolated data directory and fresh process-wide services."""
    root = tmp_path / "data"
    monkeypatch.setenv("DATA_DIR", str(root))
    _reset_singletons()
    yield root
    _reset_singletons()


@pytest.fixture()
def paths(data_dir):
    from aibase.config.paths import DataPaths

    return DataPaths(data_dir)
