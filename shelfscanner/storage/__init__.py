"""
Storage Module for Shelf Scanner

Relational persistence with SQLAlchemy (async):
- scan sessions and the status state machine
- detected books, recommendations, feedback
- users, preferences and reading history
"""

from shelfscanner.storage.database import Database
from shelfscanner.storage.models import (
    Base,
    ScanStatus,
    FeedbackType,
    ReadingStatus,
    ScanSession,
    DetectedBook,
    Recommendation,
    UserFeedback,
    User,
    ReadingHistory,
)
from shelfscanner.storage.scan_repository import ScanRepository
from shelfscanner.storage.user_repository import UserRepository

__all__ = [
    "Database",
    # Models
    "Base",
    "ScanStatus",
    "FeedbackType",
    "ReadingStatus",
    "ScanSession",
    "DetectedBook",
    "Recommendation",
    "UserFeedback",
    "User",
    "ReadingHistory",
    # Repositories
    "ScanRepository",
    "UserRepository",
]
