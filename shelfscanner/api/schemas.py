"""
API Schemas for Shelf Scanner

Pydantic models for request validation and response serialization:
- Scan models
- Feedback models
- User, reading history and auth models
- Health and error models

Scan and feedback payloads use camelCase on the wire; user and auth payloads
keep snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# =============================================================================
# Enums
# =============================================================================

class ScanStatusValue(str, Enum):
    """Scan session status."""
    PROCESSING = "processing"
    COMPLETED_DETECTION = "completed_detection"
    COMPLETED = "completed"
    FAILED = "failed"


class FeedbackTypeValue(str, Enum):
    """What a piece of feedback is about."""
    CORRECTION = "correction"
    RATING = "rating"
    REPORT = "report"


class ReadingStatusValue(str, Enum):
    """Reading history status."""
    READ = "read"
    READING = "reading"
    WANT_TO_READ = "want-to-read"


class CamelModel(BaseModel):
    """Base for camelCase wire models that are also built from snake_case."""

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Scan Schemas
# =============================================================================

class ScanResponse(CamelModel):
    """Result of submitting a shelf photo."""

    session_id: str = Field(..., alias="sessionId")
    session_token: str = Field(..., alias="sessionToken")
    status: ScanStatusValue
    books_detected: int = Field(0, alias="booksDetected")
    error: Optional[str] = None

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "sessionId": "6f1c2a0e-8a55-4f5c-9a51-0a3c7a1f9e21",
                "sessionToken": "3f9a...",
                "status": "completed_detection",
                "booksDetected": 3,
                "error": None,
            }
        },
    )


class DetectedBookResponse(CamelModel):
    """A book detected on the shelf."""

    id: str
    title: str
    author: Optional[str] = None
    isbn: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    google_books_id: Optional[str] = Field(None, alias="googleBooksId")
    metadata: dict[str, Any] = Field(default_factory=dict)
    position_in_image: Optional[dict[str, Any]] = Field(None, alias="positionInImage")


class RecommendationResponse(CamelModel):
    """One ranked recommendation."""

    id: str
    title: str
    author: str
    score: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    rank: int = Field(..., ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    detected_book_id: Optional[str] = Field(None, alias="detectedBookId")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "b1f0...",
                "title": "Neuromancer",
                "author": "William Gibson",
                "score": 0.87,
                "reasoning": "Shares the hard science fiction world-building of Dune",
                "rank": 1,
                "metadata": {"publisher": "Ace"},
                "detectedBookId": "a9c2...",
            }
        },
    )


class SessionStatusResponse(CamelModel):
    """Current state of a scan session."""

    session_id: str = Field(..., alias="sessionId")
    status: ScanStatusValue
    detected_books: list[DetectedBookResponse] = Field(default_factory=list, alias="detectedBooks")
    recommendations: list[RecommendationResponse] = Field(default_factory=list)
    error: Optional[str] = None


# =============================================================================
# Feedback Schemas
# =============================================================================

class FeedbackRequest(CamelModel):
    """Feedback on a detection or the recommendations of a session."""

    detected_book_id: Optional[str] = Field(None, alias="detectedBookId")
    feedback_type: FeedbackTypeValue = Field(..., alias="feedbackType")
    is_correct: Optional[bool] = Field(None, alias="isCorrect")
    corrected_title: Optional[str] = Field(None, alias="correctedTitle", max_length=500)
    corrected_author: Optional[str] = Field(None, alias="correctedAuthor", max_length=500)
    comments: Optional[str] = Field(None, max_length=2000)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "detectedBookId": "a9c2...",
                "feedbackType": "correction",
                "isCorrect": False,
                "correctedTitle": "Dune Messiah",
            }
        },
    )


class FeedbackResponse(BaseModel):
    """Feedback acknowledgement."""

    id: str
    message: str = "Feedback submitted successfully"


# =============================================================================
# User Schemas
# =============================================================================

class UserProfileResponse(BaseModel):
    """User profile."""

    id: str
    email: str
    username: Optional[str] = None
    goodreads_user_id: Optional[str] = None
    preferences: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class UserProfileUpdate(BaseModel):
    """Profile update request (partial)."""

    username: Optional[str] = Field(None, min_length=1, max_length=100)
    goodreads_user_id: Optional[str] = Field(None, max_length=100)


class PreferencesUpdate(BaseModel):
    """Reading preferences; merged into the stored ones."""

    preferences: dict[str, Any]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "preferences": {
                    "favoriteGenres": ["Science Fiction", "History"],
                    "avoidGenres": ["Horror"],
                }
            }
        }
    )


class PreferencesResponse(BaseModel):
    preferences: dict[str, Any]


class ReadingHistoryCreate(BaseModel):
    """Add a book to the reading history."""

    title: str = Field(..., min_length=1, max_length=500)
    author: Optional[str] = Field(None, max_length=500)
    isbn: Optional[str] = Field(None, max_length=20)
    rating: Optional[int] = Field(None, ge=1, le=5)
    status: ReadingStatusValue = ReadingStatusValue.READ

    @field_validator("isbn")
    @classmethod
    def strip_isbn(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        cleaned = v.replace("-", "").replace(" ", "")
        return cleaned or None


class ReadingHistoryEntry(BaseModel):
    """Reading history entry."""

    id: str
    title: str
    author: Optional[str] = None
    isbn: Optional[str] = None
    rating: Optional[int] = None
    status: ReadingStatusValue
    added_at: Optional[datetime] = None


class ReadingHistoryResponse(BaseModel):
    entries: list[ReadingHistoryEntry]
    total: int


# =============================================================================
# History Schemas
# =============================================================================

class ScanHistoryItem(CamelModel):
    """Summary of a past scan."""

    session_id: str = Field(..., alias="sessionId")
    status: ScanStatusValue
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    books_detected: int = Field(0, alias="booksDetected")
    recommendations_count: int = Field(0, alias="recommendationsCount")


class ScanHistoryResponse(CamelModel):
    """Paginated scan history."""

    sessions: list[ScanHistoryItem]
    limit: int
    offset: int


class ScanHistoryDetail(SessionStatusResponse):
    """A past scan with its books and recommendations."""

    created_at: Optional[datetime] = Field(None, alias="createdAt")


# =============================================================================
# Auth Schemas
# =============================================================================

class UserCreate(BaseModel):
    """Signup request."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    username: Optional[str] = Field(None, min_length=1, max_length=100)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# =============================================================================
# Error Schemas
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    code: str
    detail: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Scan session not found",
                "code": "NOT_FOUND",
                "detail": "No scan session with ID 'abc123' exists",
                "timestamp": "2025-01-20T12:00:00Z",
            }
        }
    )


# =============================================================================
# Health Check
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    database: str = "connected"
    llm_provider: str
    timestamp: datetime
