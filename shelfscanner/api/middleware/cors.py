"""
CORS Configuration

Per-environment Cross-Origin Resource Sharing settings.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware


@dataclass
class CORSConfig:
    """CORS configuration settings."""

    allowed_origins: list[str] = field(default_factory=list)
    allow_credentials: bool = True

    allowed_methods: list[str] = field(default_factory=lambda: [
        "GET", "POST", "PUT", "DELETE", "OPTIONS"
    ])

    allowed_headers: list[str] = field(default_factory=lambda: [
        "Accept",
        "Content-Type",
        "Authorization",
        "X-Request-ID",
    ])

    expose_headers: list[str] = field(default_factory=lambda: [
        "X-Request-ID",
        "X-Rate-Limit-Remaining",
        "X-Rate-Limit-Reset",
        "Retry-After",
    ])

    # Preflight cache (seconds)
    max_age: int = 3600

    # Development only
    allow_all_origins: bool = False


CORS_CONFIGS = {
    "development": CORSConfig(
        allowed_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        allow_all_origins=True,
    ),
    "test": CORSConfig(allow_all_origins=True),
    "production": CORSConfig(max_age=7200),
}


def get_cors_config(
    environment: str = "development",
    extra_origins: Optional[str] = None,
) -> CORSConfig:
    """
    CORS settings for ``environment``.

    Args:
        environment: development, test or production
        extra_origins: Comma-separated origins added to the allow list
    """
    base = CORS_CONFIGS.get(environment, CORS_CONFIGS["production"])
    origins = list(base.allowed_origins)
    if extra_origins:
        origins.extend(o.strip() for o in extra_origins.split(",") if o.strip())
    return replace(base, allowed_origins=origins)


def setup_cors(app: FastAPI, config: CORSConfig) -> None:
    """Configure CORS middleware for the FastAPI application."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if config.allow_all_origins else config.allowed_origins,
        # Browsers reject credentials with a wildcard origin
        allow_credentials=config.allow_credentials and not config.allow_all_origins,
        allow_methods=config.allowed_methods,
        allow_headers=config.allowed_headers,
        expose_headers=config.expose_headers,
        max_age=config.max_age,
    )
