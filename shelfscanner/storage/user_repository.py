"""
User Repository

Accounts, reading preferences and reading history.
"""

from typing import Optional

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import NotFoundError
from .models import ReadingHistory, User, utcnow


class UserRepository:
    """Repository for users and their reading history."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        async with self.session_factory() as session:
            stmt = select(User).where(User.email == email)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def create_user(
        self,
        email: str,
        hashed_password: str,
        username: Optional[str] = None,
    ) -> User:
        user = User(
            email=email,
            hashed_password=hashed_password,
            username=username,
            preferences={},
        )
        async with self.session_factory() as session:
            session.add(user)
            await session.commit()

        logger.info(f"Created user {user.id}")
        return user

    async def update_profile(self, user_id: str, **fields) -> User:
        """Update username / goodreads id. ``None`` values are ignored."""
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)

            for key in ("username", "goodreads_user_id"):
                if fields.get(key) is not None:
                    setattr(user, key, fields[key])
            user.updated_at = utcnow()
            await session.commit()
            return user

    async def update_preferences(self, user_id: str, preferences: dict) -> dict:
        """Merge ``preferences`` into the stored document and return the result."""
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)

            # Reassign so the JSON column is flagged dirty
            user.preferences = {**(user.preferences or {}), **preferences}
            user.updated_at = utcnow()
            await session.commit()
            return user.preferences

    async def get_preferences(self, user_id: str) -> dict:
        user = await self.get_user(user_id)
        return dict(user.preferences or {}) if user else {}

    async def add_reading_history(
        self,
        user_id: str,
        book_title: str,
        book_author: Optional[str] = None,
        book_isbn: Optional[str] = None,
        rating: Optional[int] = None,
        status: str = "read",
    ) -> ReadingHistory:
        """
        Record a book for the user.

        When an ISBN is given and the user already has that ISBN, the existing
        entry is updated instead of inserting a duplicate.
        """
        async with self.session_factory() as session:
            entry = None
            if book_isbn:
                stmt = select(ReadingHistory).where(
                    ReadingHistory.user_id == user_id,
                    ReadingHistory.book_isbn == book_isbn,
                )
                entry = (await session.execute(stmt)).scalar_one_or_none()

            if entry is None:
                entry = ReadingHistory(user_id=user_id, book_isbn=book_isbn)
                session.add(entry)

            entry.book_title = book_title
            entry.book_author = book_author
            entry.rating = rating
            entry.status = status
            entry.added_at = utcnow()
            await session.commit()
            return entry

    async def list_reading_history(
        self,
        user_id: str,
        limit: Optional[int] = None,
    ) -> list[ReadingHistory]:
        """Most recent entries first."""
        stmt = (
            select(ReadingHistory)
            .where(ReadingHistory.user_id == user_id)
            .order_by(ReadingHistory.added_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            return list((await session.scalars(stmt)).all())

    async def delete_user(self, user_id: str) -> bool:
        """Delete the account. History cascades; scan sessions keep a null owner."""
        async with self.session_factory() as session:
            result = await session.execute(delete(User).where(User.id == user_id))
            await session.commit()

        if result.rowcount:
            logger.info(f"Deleted user {user_id}")
        return result.rowcount > 0
