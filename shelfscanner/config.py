"""
Configuration for Shelf Scanner.

Settings are read from environment variables (a local .env file is loaded
first) and cached for the lifetime of the process.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


PIPELINE_MODES = ("phased", "inline", "background")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    """Application settings loaded from environment."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./shelfscanner.db"
    database_echo: bool = False
    database_pool_size: int = 5

    # LLM
    llm_provider: str = "google"  # google, anthropic, openai, mock
    google_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    llm_model: Optional[str] = None

    # External APIs
    google_books_api_key: Optional[str] = None
    metadata_cache_ttl_seconds: int = 300
    metadata_request_timeout_seconds: float = 10.0

    # Pipeline
    pipeline_mode: str = "phased"
    max_upload_size_mb: int = 5
    vision_max_attempts: int = 3
    enrichment_timeout_seconds: float = 3.0

    # Sessions
    session_ttl_hours: int = 24
    stall_timeout_minutes: int = 10
    sweep_interval_seconds: int = 300

    # Auth
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 900

    # CORS
    cors_allowed_origins: Optional[str] = None

    # Environment
    environment: str = "development"
    debug: bool = True

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        load_dotenv()

        pipeline_mode = os.getenv("PIPELINE_MODE", cls.pipeline_mode).lower()
        if pipeline_mode not in PIPELINE_MODES:
            raise ValueError(
                f"PIPELINE_MODE must be one of {', '.join(PIPELINE_MODES)}, got '{pipeline_mode}'"
            )

        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_echo=_env_bool("DATABASE_ECHO", "false"),
            database_pool_size=int(os.getenv("DATABASE_POOL_SIZE", cls.database_pool_size)),
            llm_provider=os.getenv("LLM_PROVIDER", cls.llm_provider).lower(),
            google_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            llm_model=os.getenv("LLM_MODEL"),
            google_books_api_key=os.getenv("GOOGLE_BOOKS_API_KEY"),
            metadata_cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", cls.metadata_cache_ttl_seconds)),
            metadata_request_timeout_seconds=float(
                os.getenv("METADATA_REQUEST_TIMEOUT_SECONDS", cls.metadata_request_timeout_seconds)
            ),
            pipeline_mode=pipeline_mode,
            max_upload_size_mb=int(os.getenv("MAX_UPLOAD_SIZE_MB", cls.max_upload_size_mb)),
            vision_max_attempts=int(os.getenv("VISION_MAX_ATTEMPTS", cls.vision_max_attempts)),
            enrichment_timeout_seconds=float(
                os.getenv("ENRICHMENT_TIMEOUT_SECONDS", cls.enrichment_timeout_seconds)
            ),
            session_ttl_hours=int(os.getenv("SESSION_TTL_HOURS", cls.session_ttl_hours)),
            stall_timeout_minutes=int(os.getenv("STALL_TIMEOUT_MINUTES", cls.stall_timeout_minutes)),
            sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", cls.sweep_interval_seconds)),
            jwt_secret=os.getenv("JWT_SECRET", cls.jwt_secret),
            access_token_expire_minutes=int(
                os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", cls.access_token_expire_minutes)
            ),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", "true"),
            rate_limit_max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", cls.rate_limit_max_requests)),
            rate_limit_window_seconds=int(
                os.getenv("RATE_LIMIT_WINDOW_SECONDS", cls.rate_limit_window_seconds)
            ),
            cors_allowed_origins=os.getenv("CORS_ALLOWED_ORIGINS"),
            environment=os.getenv("SHELFSCANNER_ENV", cls.environment),
            debug=_env_bool("DEBUG", "true"),
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings.from_env()
