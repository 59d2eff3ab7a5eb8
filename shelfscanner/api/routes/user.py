"""
User API Routes

Profile, reading preferences and reading history of the signed-in reader.
Preferences and history feed the recommendation prompt of later scans.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from shelfscanner.api.dependencies import get_current_user, get_user_repository
from shelfscanner.api.schemas import (
    PreferencesResponse,
    PreferencesUpdate,
    ReadingHistoryCreate,
    ReadingHistoryEntry,
    ReadingHistoryResponse,
    UserProfileResponse,
    UserProfileUpdate,
)
from shelfscanner.storage.models import User
from shelfscanner.storage.user_repository import UserRepository


router = APIRouter(prefix="/user", tags=["user"])

CurrentUser = Annotated[User, Depends(get_current_user)]


@router.get("/profile", response_model=UserProfileResponse)
async def get_profile(current_user: CurrentUser):
    return current_user.to_dict()


@router.put("/profile", response_model=UserProfileResponse)
async def update_profile(
    update: UserProfileUpdate,
    current_user: CurrentUser,
    users: UserRepository = Depends(get_user_repository),
):
    """Update profile fields. Omitted fields are left unchanged."""
    user = await users.update_profile(current_user.id, **update.model_dump(exclude_none=True))
    return user.to_dict()


@router.put("/preferences", response_model=PreferencesResponse)
async def update_preferences(
    update: PreferencesUpdate,
    current_user: CurrentUser,
    users: UserRepository = Depends(get_user_repository),
):
    """Merge the given keys into the stored preferences."""
    preferences = await users.update_preferences(current_user.id, update.preferences)
    return PreferencesResponse(preferences=preferences)


@router.post(
    "/reading-history",
    response_model=ReadingHistoryEntry,
    status_code=status.HTTP_201_CREATED,
)
async def add_reading_history(
    entry: ReadingHistoryCreate,
    current_user: CurrentUser,
    users: UserRepository = Depends(get_user_repository),
):
    """
    Add a book to the reading history.

    A second entry with the same ISBN replaces the first.
    """
    record = await users.add_reading_history(
        current_user.id,
        book_title=entry.title,
        book_author=entry.author,
        book_isbn=entry.isbn,
        rating=entry.rating,
        status=entry.status.value,
    )
    return record.to_dict()


@router.get("/reading-history", response_model=ReadingHistoryResponse)
async def list_reading_history(
    current_user: CurrentUser,
    limit: Optional[int] = Query(None, ge=1, le=500),
    users: UserRepository = Depends(get_user_repository),
):
    entries = await users.list_reading_history(current_user.id, limit=limit)
    return ReadingHistoryResponse(
        entries=[e.to_dict() for e in entries],
        total=len(entries),
    )


@router.delete("/data", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user_data(
    current_user: CurrentUser,
    users: UserRepository = Depends(get_user_repository),
):
    """
    Delete the account with its preferences and reading history.

    Past scan sessions stay, detached from the account.
    """
    await users.delete_user(current_user.id)
