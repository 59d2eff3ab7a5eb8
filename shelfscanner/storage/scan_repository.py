"""
Scan Session Repository

Persistence for scan sessions and their children:
- session creation with an opaque token and an expiry
- status transitions guarded in SQL, so concurrent callers cannot regress a
  session or apply the same transition twice
- detected books, ranked recommendations and user feedback

Every method opens its own session with ``async with`` so the connection goes
back to the pool on every exit path.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import NotFoundError, PersistenceError, ValidationError
from ..security import generate_session_token
from .models import (
    ALLOWED_TRANSITIONS,
    DetectedBook,
    Recommendation,
    ScanSession,
    ScanStatus,
    UserFeedback,
    utcnow,
)


class ScanRepository:
    """
    Repository for scan sessions.

    Usage:
        repo = ScanRepository(db.session_factory)
        scan = await repo.create_session(user_id=None, metadata={"fileSize": 1024})
        await repo.transition(scan.id, ScanStatus.FAILED, error_message="...")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        session_ttl_hours: int = 24,
    ):
        self.session_factory = session_factory
        self.session_ttl = timedelta(hours=session_ttl_hours)

    # =========================================================================
    # Sessions
    # =========================================================================

    async def create_session(
        self,
        user_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> ScanSession:
        """Insert a new session in ``processing``."""
        now = utcnow()
        scan = ScanSession(
            user_id=user_id,
            session_token=generate_session_token(),
            status=ScanStatus.PROCESSING.value,
            session_metadata=metadata or {},
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        try:
            async with self.session_factory() as session:
                session.add(scan)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create scan session: {e}")
            raise PersistenceError("Could not create scan session", detail=str(e)) from e

        logger.info(f"Created scan session {scan.id}")
        return scan

    async def get_session(self, session_id: str) -> Optional[ScanSession]:
        async with self.session_factory() as session:
            return await session.get(ScanSession, session_id)

    async def require_session(self, session_id: str) -> ScanSession:
        scan = await self.get_session(session_id)
        if scan is None:
            raise NotFoundError("Scan session", session_id)
        return scan

    async def transition(
        self,
        session_id: str,
        target: ScanStatus,
        error_message: Optional[str] = None,
        metadata_update: Optional[dict] = None,
    ) -> bool:
        """
        Move a session to ``target`` if its current status allows it.

        Returns False when the session is missing or its status is not an
        allowed source for ``target``; nothing is written in that case.
        """
        async with self.session_factory() as session:
            applied = await self._guarded_update(
                session, session_id, target, error_message, metadata_update
            )
            await session.commit()

        if not applied:
            logger.warning(f"Rejected transition of session {session_id} to {target.value}")
        return applied

    async def _guarded_update(
        self,
        session: AsyncSession,
        session_id: str,
        target: ScanStatus,
        error_message: Optional[str] = None,
        metadata_update: Optional[dict] = None,
        allowed_from: Optional[Iterable[ScanStatus]] = None,
    ) -> bool:
        sources = tuple(allowed_from or ALLOWED_TRANSITIONS.get(target, ()))
        if not sources:
            return False

        values = {"status": target.value, "updated_at": utcnow()}
        if error_message is not None:
            values["error_message"] = error_message

        if metadata_update:
            current = await session.scalar(
                select(ScanSession.session_metadata).where(ScanSession.id == session_id)
            )
            values["session_metadata"] = {**(current or {}), **metadata_update}

        stmt = (
            update(ScanSession)
            .where(
                ScanSession.id == session_id,
                ScanSession.status.in_([s.value for s in sources]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def delete_session(self, session_id: str, user_id: Optional[str] = None) -> bool:
        """Delete a session (and its children). Restricted to ``user_id`` when given."""
        stmt = delete(ScanSession).where(ScanSession.id == session_id)
        if user_id is not None:
            stmt = stmt.where(ScanSession.user_id == user_id)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount > 0

    async def list_user_sessions(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[dict]:
        """Sessions owned by ``user_id``, newest first, with child counts."""
        books_count = (
            select(func.count(DetectedBook.id))
            .where(DetectedBook.scan_session_id == ScanSession.id)
            .scalar_subquery()
        )
        recs_count = (
            select(func.count(Recommendation.id))
            .where(Recommendation.scan_session_id == ScanSession.id)
            .scalar_subquery()
        )
        stmt = (
            select(ScanSession, books_count, recs_count)
            .where(ScanSession.user_id == user_id)
            .order_by(ScanSession.created_at.desc())
            .limit(limit)
            .offset(offset)
        )

        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            {
                "session_id": scan.id,
                "status": scan.status,
                "created_at": scan.created_at,
                "books_detected": n_books or 0,
                "recommendations_count": n_recs or 0,
            }
            for scan, n_books, n_recs in rows
        ]

    # =========================================================================
    # Detected books
    # =========================================================================

    async def save_detection(
        self,
        session_id: str,
        books: list[dict],
        metadata_update: Optional[dict] = None,
    ) -> bool:
        """
        Insert detected books and move the session to ``completed_detection``.

        Both happen in one transaction: if the session is no longer in
        ``processing`` nothing is inserted and False is returned.
        """
        async with self.session_factory() as session:
            applied = await self._guarded_update(
                session,
                session_id,
                ScanStatus.COMPLETED_DETECTION,
                metadata_update=metadata_update,
            )
            if not applied:
                await session.rollback()
                return False

            for position, book in enumerate(books):
                session.add(DetectedBook(
                    scan_session_id=session_id,
                    position=position,
                    title=book["title"],
                    author=book.get("author"),
                    isbn=book.get("isbn"),
                    confidence_score=book.get("confidence", 0.0),
                    position_in_image=book.get("position_in_image"),
                    book_metadata={},
                ))
            await session.commit()

        logger.info(f"Stored {len(books)} detected books for session {session_id}")
        return True

    async def list_detected_books(
        self,
        session_id: str,
        order_by_confidence: bool = False,
    ) -> list[DetectedBook]:
        stmt = select(DetectedBook).where(DetectedBook.scan_session_id == session_id)
        if order_by_confidence:
            stmt = stmt.order_by(DetectedBook.confidence_score.desc(), DetectedBook.position)
        else:
            stmt = stmt.order_by(DetectedBook.position)

        async with self.session_factory() as session:
            return list((await session.scalars(stmt)).all())

    # =========================================================================
    # Recommendations
    # =========================================================================

    async def complete_with_recommendations(
        self,
        session_id: str,
        book_updates: dict[str, dict],
        recommendations: list[dict],
        user_id: Optional[str] = None,
        metadata_update: Optional[dict] = None,
    ) -> bool:
        """
        Persist enrichment results and recommendations, then mark ``completed``.

        The status claim (``completed_detection`` -> ``completed``) is taken
        first inside the same transaction. A caller that loses the claim
        writes nothing and gets False.

        Args:
            session_id: Session to complete
            book_updates: detected book id -> {"metadata", "isbn", "google_books_id"}
            recommendations: ordered list; rank is the 1-based list position
            user_id: Owner copied onto each recommendation row
            metadata_update: Keys merged into the session metadata
        """
        async with self.session_factory() as session:
            try:
                applied = await self._guarded_update(
                    session,
                    session_id,
                    ScanStatus.COMPLETED,
                    metadata_update=metadata_update,
                    allowed_from=(ScanStatus.COMPLETED_DETECTION,),
                )
                if not applied:
                    await session.rollback()
                    return False

                for book_id, changes in book_updates.items():
                    values = {"book_metadata": changes.get("metadata") or {}}
                    if changes.get("isbn"):
                        values["isbn"] = changes["isbn"]
                    if changes.get("google_books_id"):
                        values["google_books_id"] = changes["google_books_id"]
                    await session.execute(
                        update(DetectedBook)
                        .where(
                            DetectedBook.id == book_id,
                            DetectedBook.scan_session_id == session_id,
                        )
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )

                for rank, rec in enumerate(recommendations, start=1):
                    session.add(Recommendation(
                        scan_session_id=session_id,
                        detected_book_id=rec.get("detected_book_id"),
                        user_id=user_id,
                        title=rec["title"],
                        author=rec.get("author"),
                        recommendation_score=rec.get("score", 0.0),
                        reasoning=rec.get("reasoning"),
                        book_metadata=rec.get("metadata") or {},
                        rank=rank,
                    ))

                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                raise

        logger.info(f"Stored {len(recommendations)} recommendations for session {session_id}")
        return True

    async def list_recommendations(self, session_id: str) -> list[Recommendation]:
        stmt = (
            select(Recommendation)
            .where(Recommendation.scan_session_id == session_id)
            .order_by(Recommendation.rank)
        )
        async with self.session_factory() as session:
            return list((await session.scalars(stmt)).all())

    # =========================================================================
    # Feedback
    # =========================================================================

    async def add_feedback(
        self,
        session_id: str,
        feedback_type: str,
        detected_book_id: Optional[str] = None,
        user_id: Optional[str] = None,
        is_correct: Optional[bool] = None,
        corrected_title: Optional[str] = None,
        corrected_author: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> UserFeedback:
        """Insert a feedback row. The session status is never touched."""
        async with self.session_factory() as session:
            scan = await session.get(ScanSession, session_id)
            if scan is None:
                raise NotFoundError("Scan session", session_id)

            if detected_book_id is not None:
                book = await session.get(DetectedBook, detected_book_id)
                if book is None or book.scan_session_id != session_id:
                    raise ValidationError(
                        "Unknown detected book",
                        detail=f"Book '{detected_book_id}' does not belong to session '{session_id}'",
                    )

            feedback = UserFeedback(
                scan_session_id=session_id,
                detected_book_id=detected_book_id,
                user_id=user_id,
                feedback_type=feedback_type,
                is_correct=is_correct,
                corrected_title=corrected_title,
                corrected_author=corrected_author,
                comments=comments,
            )
            session.add(feedback)
            await session.commit()

        logger.info(f"Recorded {feedback_type} feedback for session {session_id}")
        return feedback

    async def count_feedback(self, session_id: str) -> int:
        async with self.session_factory() as session:
            return await session.scalar(
                select(func.count(UserFeedback.id)).where(UserFeedback.scan_session_id == session_id)
            ) or 0

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def fail_stalled_sessions(self, older_than: datetime, message: str) -> int:
        """Fail sessions still ``processing`` that were created before ``older_than``."""
        stmt = (
            update(ScanSession)
            .where(
                ScanSession.status == ScanStatus.PROCESSING.value,
                ScanSession.created_at < older_than,
            )
            .values(
                status=ScanStatus.FAILED.value,
                error_message=message,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount

    async def delete_expired_sessions(self, now: Optional[datetime] = None) -> int:
        stmt = delete(ScanSession).where(ScanSession.expires_at < (now or utcnow()))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount
