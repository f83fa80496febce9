"""FastAPI dependencies for authentication and request identity."""

import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from aibase.config import get_settings
from aibase.core.exceptions import AuthenticationError
from aibase.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Identity:
    """Tenant and user a request acts for."""
    tenant_id: str = "default"
    user_id: str = ""


async def require_api_token(request: Request) -> None:
    """Reject requests without the configured bearer token.

    No-op when ``API_TOKEN`` is empty.

    Raises:
        AuthenticationError: If the token is missing or wrong.
    """
    expected = get_settings().api_token
    if not expected:
        return

    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        logger.warning("Missing bearer token", data={"path": request.url.path})
        raise AuthenticationError("Not authenticated")
    if not secrets.compare_digest(token.strip(), expected):
        logger.warning("Invalid bearer token", data={"path": request.url.path})
        raise AuthenticationError("Invalid API token")


async def get_identity(
    x_tenant_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> Identity:
    return Identity(
        tenant_id=(x_tenant_id or "").strip() or "default",
        user_id=(x_user_id or "").strip(),
    )
