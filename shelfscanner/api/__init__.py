"""
Shelf Scanner - FastAPI Backend.

HTTP surface for scanning shelves, polling sessions and managing readers.
"""

from .main import app, create_app, main
from .dependencies import (
    Settings,
    get_settings,
    get_service_container,
    ServiceContainer,
)
from .schemas import (
    ScanResponse,
    SessionStatusResponse,
    RecommendationResponse,
    FeedbackRequest,
    FeedbackResponse,
    HealthResponse,
    ErrorResponse,
)

__all__ = [
    # Application
    "app",
    "create_app",
    "main",
    # Dependencies
    "Settings",
    "get_settings",
    "get_service_container",
    "ServiceContainer",
    # Schemas
    "ScanResponse",
    "SessionStatusResponse",
    "RecommendationResponse",
    "FeedbackRequest",
    "FeedbackResponse",
    "HealthResponse",
    "ErrorResponse",
]
