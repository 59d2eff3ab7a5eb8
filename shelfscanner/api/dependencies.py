"""
Dependency injection for FastAPI routes.

Provides injectable dependencies for:
- Configuration
- Service instances (pipeline, repositories, external clients)
- Authentication (optional bearer token)
"""

from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from ..config import Settings, get_settings
from ..errors import AuthenticationError
from ..security import decode_access_token
from ..storage.models import User


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """
    Composition root for the application's services.

    Services are built on first access. Any of them can be supplied up front,
    which is how tests swap in mock LLM and catalog clients.
    """

    def __init__(
        self,
        settings: Settings,
        database=None,
        llm_client=None,
        metadata_enricher=None,
    ):
        self.settings = settings
        self._database = database
        self._llm_client = llm_client
        self._metadata_enricher = metadata_enricher
        self._scan_repository = None
        self._user_repository = None
        self._vision_client = None
        self._recommender = None
        self._pipeline = None
        self._sweeper = None

    @property
    def database(self):
        """Get database (engine + session factory)."""
        if self._database is None:
            from ..storage.database import Database
            self._database = Database(
                self.settings.database_url,
                echo=self.settings.database_echo,
                pool_size=self.settings.database_pool_size,
            )
        return self._database

    @property
    def scan_repository(self):
        if self._scan_repository is None:
            from ..storage.scan_repository import ScanRepository
            self._scan_repository = ScanRepository(
                self.database.session_factory,
                session_ttl_hours=self.settings.session_ttl_hours,
            )
        return self._scan_repository

    @property
    def user_repository(self):
        if self._user_repository is None:
            from ..storage.user_repository import UserRepository
            self._user_repository = UserRepository(self.database.session_factory)
        return self._user_repository

    @property
    def llm_client(self):
        """Get LLM client for the configured provider."""
        if self._llm_client is None:
            from ..llm.clients import create_llm_client

            keys = {
                "google": self.settings.google_api_key,
                "anthropic": self.settings.anthropic_api_key,
                "openai": self.settings.openai_api_key,
            }
            self._llm_client = create_llm_client(
                provider=self.settings.llm_provider,
                api_key=keys.get(self.settings.llm_provider),
                model=self.settings.llm_model,
            )
        return self._llm_client

    @property
    def vision_client(self):
        if self._vision_client is None:
            from ..vision.extractor import VisionExtractionClient
            self._vision_client = VisionExtractionClient(
                self.llm_client,
                max_attempts=self.settings.vision_max_attempts,
            )
        return self._vision_client

    @property
    def metadata_enricher(self):
        if self._metadata_enricher is None:
            from ..identification.metadata_enricher import MetadataEnricher
            self._metadata_enricher = MetadataEnricher(
                google_api_key=self.settings.google_books_api_key,
                cache_ttl_seconds=self.settings.metadata_cache_ttl_seconds,
                timeout=self.settings.metadata_request_timeout_seconds,
            )
        return self._metadata_enricher

    @property
    def recommender(self):
        if self._recommender is None:
            from ..intelligence.recommender import BookRecommender
            self._recommender = BookRecommender(self.llm_client)
        return self._recommender

    @property
    def pipeline(self):
        """Get scan pipeline orchestrator."""
        if self._pipeline is None:
            from ..pipeline.orchestrator import ScanPipeline
            self._pipeline = ScanPipeline(
                scan_repository=self.scan_repository,
                user_repository=self.user_repository,
                vision_client=self.vision_client,
                enricher=self.metadata_enricher,
                recommender=self.recommender,
                max_upload_bytes=self.settings.max_upload_size_bytes,
                enrichment_timeout=self.settings.enrichment_timeout_seconds,
                pipeline_mode=self.settings.pipeline_mode,
            )
        return self._pipeline

    @property
    def sweeper(self):
        if self._sweeper is None:
            from ..pipeline.sweeper import SessionSweeper
            self._sweeper = SessionSweeper(
                self.scan_repository,
                stall_timeout_minutes=self.settings.stall_timeout_minutes,
                interval_seconds=self.settings.sweep_interval_seconds,
            )
        return self._sweeper

    async def close(self) -> None:
        """Release network clients and database connections."""
        if self._sweeper is not None:
            await self._sweeper.stop()
        if self._metadata_enricher is not None:
            await self._metadata_enricher.close()
        if self._database is not None:
            await self._database.dispose()


def get_service_container(request: Request) -> ServiceContainer:
    """Get the container created for this application."""
    return request.app.state.services


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


# =============================================================================
# Individual Service Dependencies
# =============================================================================

def get_pipeline(container: ServiceContainer = Depends(get_service_container)):
    """Dependency for the scan pipeline."""
    return container.pipeline


def get_scan_repository(container: ServiceContainer = Depends(get_service_container)):
    """Dependency for scan session repository."""
    return container.scan_repository


def get_user_repository(container: ServiceContainer = Depends(get_service_container)):
    """Dependency for user repository."""
    return container.user_repository


# =============================================================================
# Authentication Dependencies
# =============================================================================

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


async def get_current_user_optional(
    token: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_app_settings),
    container: ServiceContainer = Depends(get_service_container),
) -> Optional[User]:
    """
    Resolve the bearer token to a user.

    Missing, invalid or expired tokens mean an anonymous caller, never an error.
    """
    if not token:
        return None

    user_id = decode_access_token(token, settings.jwt_secret, settings.jwt_algorithm)
    if user_id is None:
        return None

    return await container.user_repository.get_user(user_id)


async def get_current_user(
    user: Optional[User] = Depends(get_current_user_optional),
) -> User:
    """Require an authenticated user."""
    if user is None:
        raise AuthenticationError()
    return user


def access_token_ttl(settings: Settings) -> timedelta:
    return timedelta(minutes=settings.access_token_expire_minutes)


__all__ = [
    "Settings",
    "get_settings",
    "ServiceContainer",
    "get_service_container",
    "get_app_settings",
    "get_pipeline",
    "get_scan_repository",
    "get_user_repository",
    "get_current_user_optional",
    "get_current_user",
    "access_token_ttl",
]
