"""
Pytest configuration and fixtures for Shelf Scanner tests.
"""

import io
import json
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from PIL import Image

from shelfscanner.api.dependencies import ServiceContainer
from shelfscanner.api.main import create_app
from shelfscanner.config import Settings
from shelfscanner.identification.metadata_enricher import BookMetadata
from shelfscanner.intelligence.recommender import BookRecommender
from shelfscanner.llm.clients import MockLLMClient
from shelfscanner.pipeline.orchestrator import ScanPipeline
from shelfscanner.storage.database import Database
from shelfscanner.storage.scan_repository import ScanRepository
from shelfscanner.storage.user_repository import UserRepository
from shelfscanner.vision.extractor import VisionExtractionClient


# =============================================================================
# Test Settings
# =============================================================================

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Return settings configured for testing."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        database_echo=False,
        environment="test",
        debug=True,
        rate_limit_enabled=False,
        llm_provider="mock",
        vision_max_attempts=1,
        enrichment_timeout_seconds=1.0,
        sweep_interval_seconds=0,
        jwt_secret="test-secret",
    )


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def database(test_settings) -> AsyncGenerator[Database, None]:
    """Fresh SQLite database with all tables."""
    db = Database(test_settings.database_url)
    await db.create_tables()

    yield db

    await db.dispose()


@pytest.fixture
def scan_repository(database) -> ScanRepository:
    return ScanRepository(database.session_factory)


@pytest.fixture
def user_repository(database) -> UserRepository:
    return UserRepository(database.session_factory)


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture
def detection_payload() -> str:
    """Vision model answer listing three books."""
    return json.dumps({
        "books": [
            {"title": "Dune", "author": "Frank Herbert", "confidence": 0.95},
            {"title": "Neuromancer", "author": "William Gibson", "confidence": 0.8},
            {"title": "Foundation", "author": None, "confidence": 0.6},
        ]
    })


@pytest.fixture
def recommendation_payload() -> str:
    """Recommendation model answer with two suggestions."""
    return json.dumps({
        "recommendations": [
            {
                "title": "Hyperion",
                "author": "Dan Simmons",
                "score": 0.9,
                "reasoning": "Epic science fiction in the vein of Dune",
                "basedOn": "Dune",
            },
            {
                "title": "Snow Crash",
                "author": "Neal Stephenson",
                "score": 0.8,
                "reasoning": "Cyberpunk like Neuromancer",
                "basedOn": "Neuromancer",
            },
        ]
    })


@pytest.fixture
def sample_metadata() -> BookMetadata:
    return BookMetadata(
        title="Dune",
        authors=["Frank Herbert"],
        isbn_13="9780441172719",
        publisher="Ace",
        google_books_id="B1hSG45JCX4C",
        source="google_books",
    )


@pytest.fixture
def jpeg_bytes() -> bytes:
    """Small synthetic shelf photo."""
    img = Image.new("RGB", (64, 48), color=(240, 240, 240))
    for i, color in enumerate([(150, 50, 50), (50, 150, 50), (50, 50, 150)]):
        for x in range(5 + i * 18, 17 + i * 18):
            for y in range(8, 40):
                img.putpixel((x, y), color)

    buffer = io.BytesIO()
    img.save(buffer, format="JPEG")
    return buffer.getvalue()


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def mock_llm(detection_payload, recommendation_payload) -> MockLLMClient:
    """LLM that answers detection first, then recommendation."""
    return MockLLMClient(responses=[detection_payload, recommendation_payload])


@pytest.fixture
def mock_enricher() -> AsyncMock:
    """Catalog lookups that find nothing unless a test says otherwise."""
    enricher = AsyncMock()
    enricher.enrich.return_value = None
    return enricher


@pytest.fixture
def pipeline(scan_repository, user_repository, mock_llm, mock_enricher) -> ScanPipeline:
    return ScanPipeline(
        scan_repository=scan_repository,
        user_repository=user_repository,
        vision_client=VisionExtractionClient(mock_llm, max_attempts=1, retry_base_delay=0),
        enricher=mock_enricher,
        recommender=BookRecommender(mock_llm, max_attempts=1, retry_base_delay=0),
        max_upload_bytes=5 * 1024 * 1024,
        enrichment_timeout=1.0,
    )


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def services(test_settings, database, mock_llm, mock_enricher) -> ServiceContainer:
    return ServiceContainer(
        test_settings,
        database=database,
        llm_client=mock_llm,
        metadata_enricher=mock_enricher,
    )


@pytest.fixture
def app(test_settings, services):
    """Create FastAPI application for testing."""
    return create_app(test_settings, services=services)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Provide async HTTP client for API tests."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
