"""
Exception taxonomy for Shelf Scanner.

Every error raised by the pipeline, the external-service clients and the
storage layer derives from ShelfScannerError so the API layer can render a
single response shape. Status codes live on the exception itself.
"""

from typing import Optional


class ShelfScannerError(Exception):
    """Base exception for Shelf Scanner errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        detail: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class ValidationError(ShelfScannerError):
    """Input validation failed."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            detail=detail,
        )


class PayloadTooLargeError(ShelfScannerError):
    """Upload exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            message="Image too large",
            code="PAYLOAD_TOO_LARGE",
            status_code=413,
            detail=f"Upload is {size} bytes, maximum is {limit} bytes",
        )


class AuthenticationError(ShelfScannerError):
    """Missing or invalid credentials."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            code="UNAUTHORIZED",
            status_code=401,
        )


class NotFoundError(ShelfScannerError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found",
            code="NOT_FOUND",
            status_code=404,
            detail=f"No {resource} with identifier '{identifier}' exists",
        )


class InvalidStateError(ShelfScannerError):
    """Operation not allowed in the session's current status."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            message=message,
            code="INVALID_STATE",
            status_code=409,
            detail=detail,
        )


class RateLimitError(ShelfScannerError):
    """Rate limit exceeded."""

    def __init__(self, limit: int, window: str):
        super().__init__(
            message="Rate limit exceeded",
            code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            detail=f"Maximum {limit} requests per {window}",
        )


class ExternalServiceError(ShelfScannerError):
    """External service failure (LLM provider, catalog API)."""

    def __init__(self, service: str, detail: Optional[str] = None, status_code: int = 503):
        self.service = service
        super().__init__(
            message=f"{service} service unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=status_code,
            detail=detail,
        )


class MalformedResponseError(ExternalServiceError):
    """External service answered with something that could not be parsed."""

    def __init__(self, service: str, detail: Optional[str] = None):
        super().__init__(service, detail=detail, status_code=502)
        self.message = f"{service} returned a malformed response"
        self.code = "MALFORMED_RESPONSE"
        self.args = (self.message,)


class EnrichmentError(ShelfScannerError):
    """Metadata lookup failed."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            message=message,
            code="ENRICHMENT_ERROR",
            status_code=503,
            detail=detail,
        )


class PersistenceError(ShelfScannerError):
    """Database operation failed."""

    def __init__(self, message: str = "Database error", detail: Optional[str] = None):
        super().__init__(
            message=message,
            code="PERSISTENCE_ERROR",
            status_code=500,
            detail=detail,
        )
