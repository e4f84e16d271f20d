"""
Exception Handlers for FastAPI Application.

Maps pipeline errors to HTTP responses:
    RequestValidationError / pydantic.ValidationError  422
    EntityNotFoundError                                 404
    IllegalTransitionError / ClaimConflictError         409
    SubmissionLimitError                                429
    InfrastructureError                                 503
"""

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from jobpilot.utils.exceptions import (
    ClaimConflictError,
    EntityNotFoundError,
    IllegalTransitionError,
    InfrastructureError,
    SubmissionLimitError,
)
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)


def _error_details(errors: list) -> list:
    return [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in errors
    ]


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors and return detailed error messages.

    Args:
        request: FastAPI Request object.
        exc: RequestValidationError containing validation error details.

    Returns:
        JSONResponse with status 422 containing:
            - detail: List of validation errors with field paths and messages
            - message: User-friendly error message
    """
    error_details = _error_details(exc.errors())
    logger.error(
        "Validation error",
        extra={
            "extra_fields": {
                "validation_errors": error_details,
                "http_path": request.url.path if request else None,
            }
        },
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content={
            "detail": error_details,
            "message": "Validation error: Please check your input data",
        },
    )


async def model_validation_exception_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """Validation failures raised inside a service (e.g. a merged campaign update)."""
    error_details = _error_details(exc.errors())
    logger.error(
        "Entity validation error",
        extra={
            "extra_fields": {
                "validation_errors": error_details,
                "http_path": request.url.path,
            }
        },
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content={"detail": error_details, "message": "Invalid entity data"},
    )


async def not_found_exception_handler(
    request: Request, exc: EntityNotFoundError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "kind": exc.kind, "id": exc.entity_id},
    )


async def conflict_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Illegal transitions and lost claims both mean the entity moved on."""
    logger.info(
        "Rejected state change",
        extra={
            "extra_fields": {
                "http_path": request.url.path,
                "error": str(exc),
                "error_type": type(exc).__name__,
            }
        },
    )
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, IllegalTransitionError):
        content["current_status"] = exc.current
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=content)


async def limit_exception_handler(
    request: Request, exc: SubmissionLimitError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": str(exc)},
    )


async def infrastructure_exception_handler(
    request: Request, exc: InfrastructureError
) -> JSONResponse:
    logger.critical(
        "Infrastructure failure while handling request",
        extra={
            "extra_fields": {
                "http_path": request.url.path,
                "error": str(exc),
                "error_type": type(exc).__name__,
            }
        },
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable"},
    )


EXCEPTION_HANDLERS = (
    (RequestValidationError, validation_exception_handler),
    (ValidationError, model_validation_exception_handler),
    (EntityNotFoundError, not_found_exception_handler),
    (IllegalTransitionError, conflict_exception_handler),
    (ClaimConflictError, conflict_exception_handler),
    (SubmissionLimitError, limit_exception_handler),
    (InfrastructureError, infrastructure_exception_handler),
)
