"""Map core exceptions onto HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from carpool.domain.exceptions import (
    AuthorizationError,
    CarpoolError,
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)

RETRY_AFTER_SECONDS = "1"

_STATUS_CODES = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (InvalidStateTransition, 409),
    (ConflictError, 409),
]


def status_code_for(exc: CarpoolError) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def carpool_error_handler(request: Request, exc: CarpoolError) -> JSONResponse:
    headers = {"Retry-After": RETRY_AFTER_SECONDS} if exc.retryable else None
    return JSONResponse(
        status_code=status_code_for(exc),
        content={"detail": str(exc), "retryable": exc.retryable},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CarpoolError, carpool_error_handler)
