"""
Authentication API Routes for Shelf Scanner.

Handles:
- User registration (Sign Up)
- User login (Token generation)
- Current user retrieval

Accounts are optional: scans work anonymously, and a bearer token only links
scans to the reader's preferences and history.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm

from shelfscanner.api.dependencies import (
    Settings,
    access_token_ttl,
    get_app_settings,
    get_current_user,
    get_user_repository,
)
from shelfscanner.api.schemas import Token, UserCreate, UserProfileResponse
from shelfscanner.errors import AuthenticationError, ValidationError
from shelfscanner.security import create_access_token, get_password_hash, verify_password
from shelfscanner.storage.models import User
from shelfscanner.storage.user_repository import UserRepository

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=UserProfileResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    user: UserCreate,
    users: UserRepository = Depends(get_user_repository),
):
    """Register a new user."""
    if await users.get_by_email(user.email):
        raise ValidationError("Email already registered")

    created = await users.create_user(
        email=user.email,
        hashed_password=get_password_hash(user.password),
        username=user.username,
    )
    return created.to_dict()


@router.post("/token", response_model=Token)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    users: UserRepository = Depends(get_user_repository),
    settings: Settings = Depends(get_app_settings),
):
    """
    Login endpoint.
    Returns JWT token if credentials are valid.
    """
    # Email goes in the OAuth2 "username" field
    user = await users.get_by_email(form_data.username)

    if not user or not verify_password(form_data.password, user.hashed_password):
        raise AuthenticationError("Incorrect email or password")

    access_token = create_access_token(
        subject=user.id,
        secret=settings.jwt_secret,
        expires_delta=access_token_ttl(settings),
        algorithm=settings.jwt_algorithm,
    )
    return Token(access_token=access_token)


@router.get("/me", response_model=UserProfileResponse)
async def read_users_me(
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Get current user profile."""
    return current_user.to_dict()
