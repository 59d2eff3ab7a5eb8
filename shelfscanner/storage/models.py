"""
Database models for Shelf Scanner.

Tables:
- users / reading_history: accounts, preferences and what people have read
- scan_sessions: one row per uploaded shelf photo, carrying the pipeline status
- detected_books / recommendations / user_feedback: children of a scan session

Child rows cascade with their session. References to users and detected books
are nulled instead, so deleting an account keeps anonymous scan history.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class ScanStatus(str, Enum):
    """Lifecycle of a scan session."""
    PROCESSING = "processing"
    COMPLETED_DETECTION = "completed_detection"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed source statuses for each target status
ALLOWED_TRANSITIONS: dict[ScanStatus, tuple[ScanStatus, ...]] = {
    ScanStatus.COMPLETED_DETECTION: (ScanStatus.PROCESSING,),
    ScanStatus.COMPLETED: (ScanStatus.PROCESSING, ScanStatus.COMPLETED_DETECTION),
    ScanStatus.FAILED: (ScanStatus.PROCESSING, ScanStatus.COMPLETED_DETECTION),
}

TERMINAL_STATUSES = frozenset({ScanStatus.COMPLETED, ScanStatus.FAILED})


class FeedbackType(str, Enum):
    CORRECTION = "correction"
    RATING = "rating"
    REPORT = "report"


class ReadingStatus(str, Enum):
    READ = "read"
    READING = "reading"
    WANT_TO_READ = "want-to-read"


class User(Base):
    """Registered reader."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True)
    username = Column(String(100))
    hashed_password = Column(String(255))
    goodreads_user_id = Column(String(100))
    preferences = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    reading_history = relationship(
        "ReadingHistory",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "goodreads_user_id": self.goodreads_user_id,
            "preferences": self.preferences or {},
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ReadingHistory(Base):
    """A book the user has read, is reading or wants to read."""
    __tablename__ = "reading_history"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    book_title = Column(String(500), nullable=False)
    book_author = Column(String(500))
    book_isbn = Column(String(20))
    rating = Column(Integer)
    status = Column(String(20), default=ReadingStatus.READ.value, nullable=False)
    added_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="reading_history")

    __table_args__ = (
        UniqueConstraint("user_id", "book_isbn", name="uq_reading_history_user_isbn"),
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_reading_history_rating"),
        Index("idx_reading_history_user_added", "user_id", "added_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.book_title,
            "author": self.book_author,
            "isbn": self.book_isbn,
            "rating": self.rating,
            "status": self.status,
            "added_at": self.added_at,
        }


class ScanSession(Base):
    """One uploaded shelf photo and its progress through the pipeline."""
    __tablename__ = "scan_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    session_token = Column(String(64), unique=True, nullable=False)
    status = Column(String(32), default=ScanStatus.PROCESSING.value, nullable=False, index=True)
    error_message = Column(Text)
    # "metadata" is reserved on declarative classes
    session_metadata = Column("metadata", JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    expires_at = Column(DateTime, nullable=False)

    detected_books = relationship(
        "DetectedBook",
        back_populates="session",
        order_by="DetectedBook.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    recommendations = relationship(
        "Recommendation",
        back_populates="session",
        order_by="Recommendation.rank",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('processing', 'completed_detection', 'completed', 'failed')",
            name="ck_scan_sessions_status",
        ),
        Index("idx_scan_sessions_expires", "expires_at"),
    )


class DetectedBook(Base):
    """A book recognised on the shelf photo."""
    __tablename__ = "detected_books"

    id = Column(String(36), primary_key=True, default=new_id)
    scan_session_id = Column(
        String(36),
        ForeignKey("scan_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Order in which the vision model reported the book
    position = Column(Integer, nullable=False, default=0)
    title = Column(String(500), nullable=False)
    author = Column(String(500))
    isbn = Column(String(20))
    confidence_score = Column(Float, nullable=False, default=0.0)
    google_books_id = Column(String(50))
    book_metadata = Column("metadata", JSON, default=dict, nullable=False)
    position_in_image = Column(JSON)
    detected_at = Column(DateTime, default=utcnow)

    session = relationship("ScanSession", back_populates="detected_books")

    __table_args__ = (
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_detected_books_confidence",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "confidence": self.confidence_score,
            "google_books_id": self.google_books_id,
            "metadata": self.book_metadata or {},
            "position_in_image": self.position_in_image,
            "detected_at": self.detected_at,
        }


class Recommendation(Base):
    """A suggested new book, ranked within its session."""
    __tablename__ = "recommendations"

    id = Column(String(36), primary_key=True, default=new_id)
    scan_session_id = Column(
        String(36),
        ForeignKey("scan_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    detected_book_id = Column(String(36), ForeignKey("detected_books.id", ondelete="SET NULL"))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    title = Column(String(500), nullable=False)
    author = Column(String(500))
    recommendation_score = Column(Float, nullable=False, default=0.0)
    reasoning = Column(Text)
    book_metadata = Column("metadata", JSON, default=dict, nullable=False)
    rank = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    session = relationship("ScanSession", back_populates="recommendations")

    __table_args__ = (
        UniqueConstraint("scan_session_id", "rank", name="uq_recommendations_session_rank"),
        CheckConstraint(
            "recommendation_score >= 0 AND recommendation_score <= 1",
            name="ck_recommendations_score",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "score": self.recommendation_score,
            "reasoning": self.reasoning,
            "rank": self.rank,
            "metadata": self.book_metadata or {},
            "detected_book_id": self.detected_book_id,
        }


class UserFeedback(Base):
    """Correction, rating or report against a scan."""
    __tablename__ = "user_feedback"

    id = Column(String(36), primary_key=True, default=new_id)
    scan_session_id = Column(
        String(36),
        ForeignKey("scan_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    detected_book_id = Column(String(36), ForeignKey("detected_books.id", ondelete="SET NULL"))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    feedback_type = Column(String(20), nullable=False)
    is_correct = Column(Boolean)
    corrected_title = Column(String(500))
    corrected_author = Column(String(500))
    comments = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "feedback_type IN ('correction', 'rating', 'report')",
            name="ck_user_feedback_type",
        ),
    )
