"""Application settings using Pydantic BaseSettings."""

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    cors_origins: str = Field(default="http://localhost:5173")
    max_request_bytes: int = Field(default=5 * 1024 * 1024)

    # Security
    # Empty = open API (local development). When set, /v1 requires a bearer token.
    api_token: str = Field(default="")

    # Data layout root (projects, outputs, caches)
    data_dir: str = Field(default="./data")

    # Extensions
    # true = load straight from the bundled defaults directory,
    # false = load the project's own extension folder (seeded from defaults)
    use_default_extensions: bool = Field(default=True)
    extension_isolation: bool = Field(default=False)
    extension_eval_timeout_seconds: float = Field(default=30.0)
    extension_deps_cache_dir: str = Field(default="")

    # Script tool
    script_timeout_seconds: float = Field(default=300.0)
    script_max_result_bytes: int = Field(default=50000)
    script_progress_max_bytes: int = Field(default=3 * 1024)

    # Large output storage
    output_file_threshold_bytes: int = Field(default=10 * 1024 * 1024)
    output_ttl_seconds: int = Field(default=60 * 60)
    output_cleanup_interval_seconds: int = Field(default=10 * 60)

    # Outbound HTTP / search
    http_timeout_seconds: float = Field(default=30.0)
    brave_api_key: str = Field(default="")
    brave_search_base_url: str = Field(default="https://api.search.brave.com/res/v1")

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def effective_deps_cache_dir(self) -> str:
        """Dependency cache directory, derived from data_dir when unset."""
        if self.extension_deps_cache_dir:
            return self.extension_deps_cache_dir
        return os.path.join(self.data_dir, "cache", "extension-deps")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test mode."""
        return self.environment.lower() == "test"

    @property
    def docs_url(self) -> str | None:
        return None if self.is_production else "/docs"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production", "test"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production, test")
        return vv

    @field_validator("script_max_result_bytes", "script_progress_max_bytes", "output_file_threshold_bytes")
    @classmethod
    def validate_positive_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("size limits must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
