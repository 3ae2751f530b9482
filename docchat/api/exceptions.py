"""
Exception handlers for the FastAPI application.

Domain errors are mapped onto HTTP status codes with a uniform
``ErrorResponse`` body naming the affected document, store or session.
"""

import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from docchat.api.models import ErrorDetail, ErrorResponse
from docchat.exceptions import (
    DocChatError,
    IngestionFailed,
    InvalidDocument,
    PersistenceFailed,
    ProviderRateLimited,
    ProviderTimeout,
    ProviderUnavailable,
    SessionNotFound,
    StoreNotFound,
    UserNotFound,
)
from docchat.utils.logger import get_logger

logger = get_logger(__name__)

# Most specific first
DOMAIN_STATUS = [
    (StoreNotFound, status.HTTP_404_NOT_FOUND),
    (SessionNotFound, status.HTTP_404_NOT_FOUND),
    (UserNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidDocument, status.HTTP_400_BAD_REQUEST),
    (ProviderRateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
    (ProviderTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (IngestionFailed, status.HTTP_502_BAD_GATEWAY),
    (PersistenceFailed, status.HTTP_500_INTERNAL_SERVER_ERROR),
]

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "UNPROCESSABLE_ENTITY",
    429: "RATE_LIMIT_EXCEEDED",
    500: "INTERNAL_SERVER_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
    504: "GATEWAY_TIMEOUT",
}


def status_for(exc: DocChatError) -> int:
    """HTTP status code of a domain error."""
    if isinstance(exc, InvalidDocument) and exc.oversize:
        return status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    for error_type, code in DOMAIN_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return ErrorResponse(error=ErrorDetail(code=code, message=message, details=details)).model_dump(mode="json")


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Set up exception handlers for the FastAPI application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(DocChatError)
    async def domain_exception_handler(request: Request, exc: DocChatError) -> JSONResponse:
        """Map domain errors onto HTTP responses."""
        status_code = status_for(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "Request failed",
            path=request.url.path,
            method=request.method,
            status_code=status_code,
            error_code=exc.code,
            error=exc.message,
            **{k: v for k, v in exc.details.items() if k in ("document", "store", "chat_id", "user_id")}
        )

        headers = {}
        if isinstance(exc, ProviderRateLimited) and exc.retry_after is not None:
            headers["Retry-After"] = str(int(exc.retry_after))

        return JSONResponse(
            status_code=status_code,
            content=error_body(exc.code, exc.message, exc.details),
            headers=headers,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle HTTP exceptions with consistent error format."""
        logger.warning(
            "HTTP exception occurred",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(
                HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
                str(exc.detail),
                {"status_code": exc.status_code},
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors."""
        error_details = [
            {
                "field": " -> ".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]

        logger.warning(
            "Request validation error",
            path=request.url.path,
            method=request.method,
            errors=error_details
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_body(
                "VALIDATION_ERROR",
                "Request validation failed",
                {"errors": error_details, "error_count": len(error_details)},
            ),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        """Invalid identifiers and arguments rejected by the core."""
        logger.warning("Invalid value", path=request.url.path, method=request.method, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("INVALID_VALUE", str(exc)),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle all other exceptions."""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
            traceback=traceback.format_exc()
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(
                "INTERNAL_SERVER_ERROR",
                "An unexpected error occurred",
                {"error_type": type(exc).__name__},
            ),
        )
