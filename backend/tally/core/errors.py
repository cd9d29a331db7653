"""Domain errors and structured error responses.

Services raise the exceptions below; the handlers registered on the app turn
them into the common JSON envelope. Datasource failures never leak detail to
the client.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("tally")


class ValidationError(ValueError):
    """Malformed input. ``errors`` maps field name to a form-ready message."""

    def __init__(self, errors: dict[str, str], message: str | None = None):
        self.errors = errors
        super().__init__(message or "; ".join(errors.values()))


class InvalidRecurrenceRule(ValidationError):
    def __init__(self, message: str, field: str = "rrule"):
        super().__init__({field: message}, message)


class NotFoundError(Exception):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ConflictError(Exception):
    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message)


class DatasourceError(Exception):
    """Wraps a persistence-layer failure. No retries happen at this level."""

    def __init__(self, message: str = "Datasource operation failed"):
        super().__init__(message)


def _envelope(request: Request, status_code: int, detail: str, **extra) -> JSONResponse:
    content = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        **extra,
        "request_id": getattr(request.state, "request_id", None),
    }
    return JSONResponse(status_code=status_code, content=content)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _envelope(request, exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
            for e in exc.errors()
        ]
        return _envelope(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", errors=errors
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _envelope(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation error",
            errors=exc.errors,
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _envelope(request, status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return _envelope(request, status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(DatasourceError)
    @app.exception_handler(SQLAlchemyError)
    async def datasource_error_handler(request: Request, exc: Exception):
        logger.error("Datasource failure: %s", exc, exc_info=exc)
        return _envelope(request, status.HTTP_503_SERVICE_UNAVAILABLE, "Service unavailable")

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", exc_info=exc)
        return _envelope(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
        )
