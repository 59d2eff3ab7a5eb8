"""
Error Handling for Shelf Scanner

Translates exceptions into one JSON shape:
    {"error": ..., "code": ..., "detail": ..., "timestamp": ...}
"""

import traceback
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from ...errors import PersistenceError, ShelfScannerError


def create_error_response(
    error: str,
    code: str,
    status_code: int,
    detail: Optional[str] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """Create standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "code": code,
            "detail": detail,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        headers=headers,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with FastAPI app."""

    @app.exception_handler(ShelfScannerError)
    async def shelfscanner_exception_handler(request: Request, exc: ShelfScannerError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"{request.method} {request.url.path}: {exc.code} - {exc.message}")

        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return create_error_response(
            error=exc.message,
            code=exc.code,
            status_code=exc.status_code,
            detail=exc.detail,
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        logger.warning(f"{request.method} {request.url.path}: invalid request ({len(errors)} errors)")
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        return create_error_response(
            error="Invalid request",
            code="VALIDATION_ERROR",
            status_code=400,
            detail=f"{location}: {first.get('msg', 'invalid value')}" if location else None,
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database error on {request.url.path}: {type(exc).__name__}: {exc}")
        error = PersistenceError()
        return create_error_response(
            error=error.message,
            code=error.code,
            status_code=error.status_code,
            detail="The database operation could not be completed",
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}\n{traceback.format_exc()}"
        )
        # Internal details stay in the logs
        return create_error_response(
            error="Internal Server Error",
            code="INTERNAL_ERROR",
            status_code=500,
            detail="An unexpected error occurred",
        )
