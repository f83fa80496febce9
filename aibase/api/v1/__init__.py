"""v1 API router.

This module consolidates all v1 API endpoints. Every route requires the
bearer API token when one is configured.
"""

from fastapi import APIRouter, Depends

from aibase.api.v1.dependencies import router as dependencies_router
from aibase.api.v1.extensions import router as extensions_router
from aibase.api.v1.outputs import router as outputs_router
from aibase.api.v1.scripts import router as scripts_router
from aibase.auth.dependencies import require_api_token

router = APIRouter(prefix="/v1", dependencies=[Depends(require_api_token)])

router.include_router(extensions_router)    # /v1/projects/{pid}/extensions
router.include_router(scripts_router)       # /v1/projects/{pid}/scripts
router.include_router(outputs_router)       # /v1/outputs
router.include_router(dependencies_router)  # /v1/extensions/dependencies
