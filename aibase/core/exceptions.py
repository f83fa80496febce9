"""Exception types and handlers for the FastAPI application."""

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from aibase.core.error_contract import build_error_envelope, http_status_to_code
from aibase.core.logging import get_logger, request_context

logger = get_logger(__name__)


class AIBaseException(Exception):
    """Base exception for AIBase application."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: str = "E5000",
        details: dict = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        super().__init__(message)


class AuthenticationError(AIBaseException):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, code="E2000")


class NotFoundError(AIBaseException):
    """Resource not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, code="E4040")


class InvalidPathError(AIBaseException):
    """An identifier cannot be used as a path segment."""

    def __init__(self, message: str = "Invalid path"):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, code="E4000")


class ValidationFailedError(AIBaseException):
    """Input failed schema validation."""

    def __init__(self, message: str, errors: list = None):
        super().__init__(
            message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="E4220",
            details={"errors": errors} if errors else {},
        )


class ExtensionError(AIBaseException):
    """Base error for the extension runtime."""

    def __init__(self, message: str, code: str = "E6000", status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(message, status_code=status_code, code=code)


class ExtensionEvaluationError(ExtensionError):
    """Extension source could not be evaluated."""

    def __init__(self, message: str):
        super().__init__(message, code="E6001")


class ExtensionTimeoutError(ExtensionError):
    """Extension worker did not answer in time."""

    def __init__(self, message: str):
        super().__init__(message, code="E6002", status_code=status.HTTP_504_GATEWAY_TIMEOUT)


class ExtensionWorkerError(ExtensionError):
    """Extension worker answered with an error."""

    def __init__(self, message: str):
        super().__init__(message, code="E6003")


class DependencyResolutionError(ExtensionError):
    """Declared extension dependency is unavailable."""

    def __init__(self, message: str):
        super().__init__(message, code="E6004")


class ScriptExecutionError(AIBaseException):
    """Script body failed."""

    def __init__(self, message: str):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, code="E6100")


class ToolError(AIBaseException):
    """Tool invocation failed."""

    def __init__(self, message: str, tool: str = None):
        super().__init__(
            message,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="E6200",
            details={"tool": tool} if tool else {},
        )


class OutputNotFoundError(AIBaseException):
    """Stored script output is unknown or expired."""

    def __init__(self, message: str):
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, code="E6300")


def _request_id() -> str | None:
    ctx = request_context.get()
    return ctx.get("request_id") if ctx else None


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with FastAPI app."""

    @app.exception_handler(AIBaseException)
    async def aibase_exception_handler(
        request: Request, exc: AIBaseException
    ) -> JSONResponse:
        """Handle AIBase-specific exceptions."""
        logger.error(
            f"AIBase error: {exc.message}",
            data={"status_code": exc.status_code, "details": exc.details},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.message,
                **build_error_envelope(
                    code=exc.code,
                    message=exc.message,
                    request_id=_request_id(),
                    extra=exc.details,
                ),
            },
        )

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        logger.warning(
            "Validation error",
            data={"errors": exc.errors()},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Validation error",
                "errors": exc.errors(include_url=False),
                **build_error_envelope(
                    code="E4220",
                    message="Validation error",
                    request_id=_request_id(),
                ),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                **build_error_envelope(
                    code=http_status_to_code(exc.status_code),
                    message=str(exc.detail),
                    request_id=_request_id(),
                ),
            },
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                **build_error_envelope(
                    code="E5000",
                    message="Internal server error",
                    request_id=_request_id(),
                ),
            },
        )
