"""
Health check endpoints.

Provides liveness and readiness checks for monitoring.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from aibase import __version__
from aibase.config import get_settings
from aibase.extensions.loader import DEFAULTS_PATH

router = APIRouter(tags=["health"])


@router.get("/health")
@router.get("/healthz")
async def healthcheck() -> dict[str, Any]:
    """
    Health check endpoint.

    Returns basic service health status and how extensions are loaded.
    """
    settings = get_settings()
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.environment,
        "extensions": {
            "use_defaults": settings.use_default_extensions,
            "isolation": settings.extension_isolation,
            "defaults_available": DEFAULTS_PATH.is_dir(),
        },
    }
