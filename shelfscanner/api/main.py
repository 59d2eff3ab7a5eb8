"""
Shelf Scanner API

FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from fastapi import FastAPI, Request

from .. import __version__
from .schemas import HealthResponse
from .routes import scan, user, history, auth
from .middleware import (
    setup_cors,
    setup_rate_limiting,
    setup_logging,
    setup_exception_handlers,
    RateLimitConfig,
    LoggingConfig,
    get_cors_config,
)
from .dependencies import (
    get_settings,
    ServiceContainer,
    Settings,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown tasks:
    - Create database tables
    - Start the session sweeper
    - Close HTTP clients and the engine on shutdown
    """
    settings: Settings = app.state.settings
    services: ServiceContainer = app.state.services
    logger.info(f"Starting Shelf Scanner in {settings.environment} mode")

    try:
        logger.info("Initializing database...")
        await services.database.create_tables()

        logger.info(
            f"Pipeline mode: {settings.pipeline_mode}, LLM provider: {settings.llm_provider}"
        )
        services.sweeper.start()

        logger.info("Shelf Scanner started successfully")

        yield

    finally:
        logger.info("Shutting down Shelf Scanner...")
        await services.close()
        logger.info("Shutdown complete")


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings. If None, loads from environment.
        services: Prebuilt service container, mainly for tests.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = get_settings()
    if services is None:
        services = ServiceContainer(settings)

    app = FastAPI(
        title="Shelf Scanner",
        description="Photograph a bookshelf, get the books identified and new ones recommended.",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Services are lazy, so building the container does no I/O
    app.state.settings = settings
    app.state.services = services

    # ==========================================================================
    # Middleware (last added = outermost)
    # ==========================================================================

    # 1. Request logging
    setup_logging(
        app,
        config=LoggingConfig(enabled=True),
        structured=settings.environment != "development",
    )

    # 2. Exception handling
    setup_exception_handlers(app)

    # 3. Rate limiting
    if settings.rate_limit_enabled:
        app.state.rate_limiter = setup_rate_limiting(
            app,
            config=RateLimitConfig(
                enabled=True,
                max_requests=settings.rate_limit_max_requests,
                window_seconds=settings.rate_limit_window_seconds,
            ),
        )

    # 4. CORS (outermost)
    setup_cors(
        app,
        config=get_cors_config(settings.environment, settings.cors_allowed_origins),
    )

    # ==========================================================================
    # Routers
    # ==========================================================================

    api_prefix = "/api/v1"

    app.include_router(scan.router, prefix=api_prefix)
    app.include_router(user.router, prefix=api_prefix)
    app.include_router(history.router, prefix=api_prefix)
    app.include_router(auth.router, prefix=api_prefix)

    # ==========================================================================
    # Root Routes
    # ==========================================================================

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Shelf Scanner",
            "version": __version__,
            "status": "running",
            "docs": "/docs" if settings.debug else None,
        }

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(request: Request) -> HealthResponse:
        """
        Health check endpoint.

        Reports ``degraded`` when the database does not answer.
        """
        container: ServiceContainer = request.app.state.services
        database_ok = await container.database.ping()

        return HealthResponse(
            status="healthy" if database_ok else "degraded",
            version=__version__,
            database="connected" if database_ok else "disconnected",
            llm_provider=settings.llm_provider,
            timestamp=datetime.now(timezone.utc),
        )

    return app


# =============================================================================
# Application Instance
# =============================================================================

app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

def main():
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()

    # Session locks and rate limit windows live in process memory
    uvicorn.run(
        "shelfscanner.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        workers=1,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
