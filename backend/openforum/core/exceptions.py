"""
Forum error taxonomy and FastAPI exception handlers.

Services raise these errors; the handlers turn them into the uniform
error object returned by every endpoint:

    {"success": false, "error": "<message>"}
"""

from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger


class ForumError(Exception):
    """Base class for expected, user-facing failures."""

    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthenticatedError(ForumError):
    status_code = 401
    default_message = "Not authenticated"


class PermissionDeniedError(ForumError):
    status_code = 403
    default_message = "Not authorized"


class UserBannedError(ForumError):
    status_code = 403
    default_message = "Your account has been banned"


class NotFoundError(ForumError):
    status_code = 404
    default_message = "Not found"

    def __init__(self, entity: str | None = None) -> None:
        super().__init__(f"{entity} not found" if entity else None)


class ConflictError(ForumError):
    status_code = 409
    default_message = "Conflict"


class ValidationError(ForumError):
    status_code = 422
    default_message = "Validation failed"


class RateLimitedError(ForumError):
    status_code = 429
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        reset_at: datetime | None = None,
    ) -> None:
        super().__init__(message)
        self.reset_at = reset_at


def error_body(message: str, **extra: object) -> dict[str, object]:
    """Build the uniform error payload."""
    return {"success": False, "error": message, **extra}


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers that render errors as the uniform error object."""

    @app.exception_handler(ForumError)
    async def forum_error_handler(request: Request, exc: ForumError) -> ORJSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(
                f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}"
            )

        extra: dict[str, object] = {}
        if isinstance(exc, RateLimitedError) and exc.reset_at:
            extra["reset_at"] = exc.reset_at.isoformat()

        return ORJSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, **extra),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        messages = []
        for err in exc.errors():
            msg = str(err.get("msg", "Invalid value"))
            # Drop pydantic's "Value error, " prefix from custom validators
            messages.append(msg.removeprefix("Value error, "))
        return ORJSONResponse(
            status_code=422,
            content=error_body(", ".join(messages) or "Validation failed"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return ORJSONResponse(
            status_code=500,
            content=error_body("An unexpected error occurred"),
        )
