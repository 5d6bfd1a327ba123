"""Exception handlers translating domain errors into HTTP responses"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from workspace_refunds.api.dependencies import get_request_id
from workspace_refunds.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    DomainException,
    NotFoundError,
    ValidationError,
)

_STATUS_CODES = {
    ValidationError: 422,
    AuthorizationError: 403,
    NotFoundError: 404,
    ConflictError: 409,
}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Install the domain error mapping on the app.

    Routes let service exceptions propagate; the session is rolled back by
    get_db on the way out. Validation errors carry the full error list;
    anything that is not a known domain error becomes an opaque 500.
    """
    app.add_exception_handler(DomainException, domain_error_handler)
    app.add_exception_handler(ValueError, invalid_input_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)


async def domain_error_handler(request: Request, exc: DomainException) -> JSONResponse:
    request_id = get_request_id(request)

    for exc_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, exc_type):
            logging.warning(f"{exc_type.__name__}: {exc}", extra={"request_id": request_id})
            if isinstance(exc, ValidationError):
                return _error(status_code, {"message": str(exc), "errors": exc.errors})
            return _error(status_code, str(exc))

    logging.error(f"Unhandled domain error: {exc}", extra={"request_id": request_id})
    return _error(500, "Internal server error")


async def invalid_input_handler(request: Request, exc: ValueError) -> JSONResponse:
    logging.warning(f"Invalid input: {exc}", extra={"request_id": get_request_id(request)})
    return _error(422, {"message": str(exc), "errors": [str(exc)]})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logging.error(f"Unexpected error: {exc}", exc_info=exc, extra={"request_id": get_request_id(request)})
    return _error(500, "Internal server error")


def _error(status_code: int, detail) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})
