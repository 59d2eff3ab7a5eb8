"""
API middleware components.

Cross-cutting concerns for the API:
- Error handling
- CORS configuration
- Rate limiting
- Request logging
"""

from .error_handler import (
    setup_exception_handlers,
    create_error_response,
)

from .cors import (
    CORSConfig,
    get_cors_config,
    setup_cors,
)

from .rate_limit import (
    RateLimitConfig,
    InMemoryRateLimiter,
    RateLimitMiddleware,
    setup_rate_limiting,
)

from .logging import (
    LoggingConfig,
    StructuredLogFormatter,
    RequestLoggingMiddleware,
    setup_logging,
    get_request_id,
)


__all__ = [
    # Error handling
    "setup_exception_handlers",
    "create_error_response",
    # CORS
    "CORSConfig",
    "get_cors_config",
    "setup_cors",
    # Rate limiting
    "RateLimitConfig",
    "InMemoryRateLimiter",
    "RateLimitMiddleware",
    "setup_rate_limiting",
    # Logging
    "LoggingConfig",
    "StructuredLogFormatter",
    "RequestLoggingMiddleware",
    "setup_logging",
    "get_request_id",
]
