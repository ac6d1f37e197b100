"""FastAPI application factory."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from . import __version__
from .api.router import api_router
from .config import get_settings
from .database import init_database
from .errors import (
    BookstoreError,
    ConcurrencyConflict,
    Conflict,
    EmptyCart,
    InsufficientStock,
    InvalidPromotion,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    Unauthenticated,
    ValidationFailed,
)
from .log import configure_logging

logger = structlog.get_logger(__name__)

RETRY_AFTER_SECONDS = "1"

STATUS_CODES: dict[type[BookstoreError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Conflict: status.HTTP_409_CONFLICT,
    InsufficientStock: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    InvalidPromotion: status.HTTP_400_BAD_REQUEST,
    EmptyCart: status.HTTP_400_BAD_REQUEST,
    ValidationFailed: status.HTTP_400_BAD_REQUEST,
    ConcurrencyConflict: status.HTTP_503_SERVICE_UNAVAILABLE,
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
}


def status_for(error: BookstoreError) -> int:
    for cls in type(error).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_response(error: BookstoreError) -> JSONResponse:
    headers = {"Retry-After": RETRY_AFTER_SECONDS} if error.retryable else None
    return JSONResponse(status_code=status_for(error), content=error.to_dict(), headers=headers)


def _field_name(location: tuple) -> str:
    parts = [str(part) for part in location if part not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookstoreError)
    async def handle_bookstore_error(request: Request, exc: BookstoreError) -> JSONResponse:
        logger.info("request_rejected", path=request.url.path, code=exc.code, detail=exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [{"field": _field_name(tuple(error["loc"])), "message": error["msg"]} for error in exc.errors()]
        return _error_response(ValidationFailed(errors))

    @app.exception_handler(OperationalError)
    async def handle_operational_error(request: Request, exc: OperationalError) -> JSONResponse:
        logger.warning("database_unavailable", path=request.url.path, reason=str(exc.orig))
        return _error_response(ConcurrencyConflict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)
    init_database()

    app = FastAPI(title=settings.app_name, version=__version__)
    install_error_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app
