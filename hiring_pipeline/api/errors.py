"""Error envelope and exception handlers for the pipeline API."""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from structlog import get_logger

from hiring_pipeline.core.config import settings
from hiring_pipeline.core.errors import DomainError, ValidationError

logger = get_logger()

ERROR_STATUS_MAP = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "AUTHORIZATION_ERROR": status.HTTP_403_FORBIDDEN,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "DATABASE_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "CONFIGURATION_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "DOMAIN_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_response(
    request: Request, http_status: int, code: str, message: str, details: Any = None
) -> JSONResponse:
    """
    Build the ``{"error": {code, message, request_id, details?}}`` envelope.

    ``request_id`` is the id RequestIDMiddleware put on the request state, so a
    client can quote it when reporting a failed call.
    """
    body: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": getattr(request.state, "request_id", None),
    }
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=http_status, content={"error": body})


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """
    Map a service-layer error to its HTTP status.

    Unknown stages, rule sets the engine refuses, role denials and stage edits
    on jobs with candidates all arrive here. Field messages of a
    ValidationError are always returned so forms can highlight the offending
    input; any other context is returned only when expose_error_details is set.
    """
    http_status = ERROR_STATUS_MAP.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.warning(
        "domain_error_handled",
        error_code=exc.code,
        http_status=http_status,
        message=exc.message,
        context=exc.context,
        request_id=getattr(request.state, "request_id", None),
    )

    details = None
    if isinstance(exc, ValidationError):
        details = {"fields": exc.fields}
    elif settings.expose_error_details and exc.context:
        details = exc.context

    return error_response(request, http_status, exc.code, exc.message, details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPExceptions (missing identity headers, unknown routes) as ``HTTP_<status>``."""
    return error_response(request, exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request bodies or parameters that fail model parsing, with pydantic's error list."""
    return error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Invalid request data",
        jsonable_encoder(exc.errors()),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log anything unexpected with its traceback and answer with an opaque 500."""
    logger.exception(
        "unhandled_exception",
        error_type=type(exc).__name__,
        request_id=getattr(request.state, "request_id", None),
    )
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred",
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers above, most specific first, ending with the catch-all."""
    app.add_exception_handler(DomainError, domain_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]
