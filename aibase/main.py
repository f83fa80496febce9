"""
AIBase Backend Application.

FastAPI application exposing the extension runtime and script execution,
with structured logging and error handling.
"""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aibase import __version__
from aibase.api.health import router as health_router
from aibase.api.v1 import router as v1_router
from aibase.config import get_settings
from aibase.core import (
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    get_logger,
    setup_exception_handlers,
    setup_logging,
)
from aibase.extensions.output_storage import get_output_storage
from aibase.extensions.worker import shutdown_worker_pool

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Startup
    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting AIBase backend",
        data={
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
            "cors_origins": settings.cors_origins_list,
            "use_default_extensions": settings.use_default_extensions,
            "extension_isolation": settings.extension_isolation,
        },
    )
    if not settings.api_token:
        logger.warning("API_TOKEN is empty - /v1 is open to any caller")

    _app.state.start_time = datetime.now(UTC)

    cleanup_task = asyncio.create_task(
        get_output_storage().run_cleanup_loop(settings.output_cleanup_interval_seconds)
    )

    yield

    # Shutdown
    logger.info("Shutting down AIBase backend")
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task
    shutdown_worker_pool()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="AIBase",
        description="Extension runtime and sandboxed script execution for AI workspaces",
        version=__version__,
        lifespan=lifespan,
        docs_url=settings.docs_url,
    )

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Add middleware (order matters - last added = first executed)
    # 1. Request size limit (scripts and extension code arrive as JSON bodies)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_bytes)

    # 2. Request context (inject request ID, log requests)
    app.add_middleware(RequestContextMiddleware)

    # 3. CORS
    allow_origin_regex = None
    if not settings.is_production:
        allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        allow_origin_regex=allow_origin_regex,
    )

    # Register routers
    app.include_router(health_router)
    app.include_router(v1_router)

    return app


# Create application instance
app = create_app()
