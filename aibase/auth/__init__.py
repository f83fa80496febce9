"""Request identity and API token checks."""

from aibase.auth.dependencies import Identity, get_identity, require_api_token

__all__ = ["Identity", "get_identity", "require_api_token"]
