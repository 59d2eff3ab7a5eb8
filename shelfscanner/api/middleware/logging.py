"""
Request logging middleware.

One structured line per request: method, path, status, duration, client and
a correlation id that is echoed back in ``X-Request-ID``.
"""

import json
import logging
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

logger = logging.getLogger("shelfscanner.api")

REDACTED = "[REDACTED]"


@dataclass
class LoggingConfig:
    """Configuration for request logging."""

    enabled: bool = True

    excluded_paths: set[str] = field(default_factory=lambda: {
        "/health",
        "/favicon.ico",
    })

    # Never written to logs
    sensitive_headers: set[str] = field(default_factory=lambda: {
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
    })

    # Logged at WARNING and tagged [SLOW] above this
    slow_request_threshold: float = 2.0

    request_id_header: str = "X-Request-ID"


class StructuredLogFormatter(logging.Formatter):
    """JSON formatter; adds the current request id when there is one."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        for attr in ("request", "status_code", "duration_ms"):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def redact_headers(headers: dict[str, str], sensitive: set[str]) -> dict[str, str]:
    return {
        key: REDACTED if key.lower() in sensitive else value
        for key, value in headers.items()
    }


def get_request_id() -> str:
    """Get current request ID from context."""
    return request_id_var.get()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request once it has a response."""

    def __init__(self, app: FastAPI, config: Optional[LoggingConfig] = None):
        super().__init__(app)
        self.config = config or LoggingConfig()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.config.request_id_header) or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)

        try:
            start_time = time.perf_counter()
            response = await call_next(request)
            duration = time.perf_counter() - start_time
            response.headers[self.config.request_id_header] = request_id

            if self.config.enabled and request.url.path not in self.config.excluded_paths:
                self._log(request, response.status_code, duration)

            return response
        finally:
            request_id_var.reset(token)

    def _log(self, request: Request, status_code: int, duration: float) -> None:
        duration_ms = round(duration * 1000, 2)
        slow = duration > self.config.slow_request_threshold

        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400 or slow:
            level = logging.WARNING
        else:
            level = logging.INFO

        message = f"{request.method} {request.url.path} -> {status_code} ({duration_ms}ms)"
        if slow:
            message = f"[SLOW] {message}"

        logger.log(
            level,
            message,
            extra={
                "request": {
                    "method": request.method,
                    "path": request.url.path,
                    "query": request.url.query or None,
                    "client_ip": request.client.host if request.client else None,
                    "headers": redact_headers(dict(request.headers), self.config.sensitive_headers),
                },
                "status_code": status_code,
                "duration_ms": duration_ms,
            },
        )


def setup_logging(
    app: FastAPI,
    config: Optional[LoggingConfig] = None,
    structured: bool = True,
) -> None:
    """
    Install the request logging middleware.

    Args:
        app: FastAPI application instance.
        config: Logging configuration.
        structured: Emit JSON lines on the ``shelfscanner`` logger.
    """
    if structured:
        api_logger = logging.getLogger("shelfscanner")
        if not any(isinstance(h.formatter, StructuredLogFormatter) for h in api_logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(StructuredLogFormatter())
            api_logger.addHandler(handler)
            api_logger.setLevel(logging.INFO)
            api_logger.propagate = False

    app.add_middleware(RequestLoggingMiddleware, config=config or LoggingConfig())
