"""Core module with logging, middleware, and exception handling."""

from aibase.core.exceptions import (
    AIBaseException,
    AuthenticationError,
    DependencyResolutionError,
    ExtensionError,
    ExtensionEvaluationError,
    ExtensionTimeoutError,
    ExtensionWorkerError,
    InvalidPathError,
    NotFoundError,
    OutputNotFoundError,
    ScriptExecutionError,
    ToolError,
    ValidationFailedError,
    setup_exception_handlers,
)
from aibase.core.logging import get_logger, setup_logging
from aibase.core.middleware import RequestContextMiddleware, RequestSizeLimitMiddleware

__all__ = [
    "get_logger",
    "setup_logging",
    "RequestContextMiddleware",
    "RequestSizeLimitMiddleware",
    "setup_exception_handlers",
    "AIBaseException",
    "AuthenticationError",
    "DependencyResolutionError",
    "ExtensionError",
    "ExtensionEvaluationError",
    "ExtensionTimeoutError",
    "ExtensionWorkerError",
    "InvalidPathError",
    "NotFoundError",
    "OutputNotFoundError",
    "ScriptExecutionError",
    "ToolError",
    "ValidationFailedError",
]
