"""
Scan Pipeline Orchestrator

Drives a scan session through its lifecycle:

    processing -> completed_detection -> completed
         |                 |
         +------> failed <-+

Phase 1 (detection) runs the vision model over the uploaded photo and stores
the detected books. Phase 2 enriches those books with catalog metadata while
recommendations are generated and enriched in parallel, then stores
everything and completes the session in one transaction.

Detection errors fail the session with a readable message. Enrichment and
recommendation errors degrade the result (empty metadata, fewer or no
recommendations) without failing the scan.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from ..errors import ExternalServiceError, InvalidStateError
from ..identification.metadata_enricher import MetadataEnricher
from ..intelligence.recommender import BookRecommender, RecommendationCandidate
from ..storage.models import DetectedBook, Recommendation, ScanSession, ScanStatus
from ..storage.scan_repository import ScanRepository
from ..storage.user_repository import UserRepository
from ..vision.extractor import VisionExtractionClient
from ..vision.preprocessing import validate_image

NO_BOOKS_MESSAGE = "No books detected in image"
UNEXPECTED_FAILURE_MESSAGE = "Unexpected error while processing scan"
HISTORY_LIMIT = 10


@dataclass
class ScanSubmission:
    """A freshly created session plus what detection needs to run."""

    session_id: str
    session_token: str
    mime_type: str


@dataclass
class SessionView:
    """Read-only snapshot of a session for polling clients."""

    session_id: str
    status: ScanStatus
    detected_books: list[dict] = field(default_factory=list)
    recommendations: list[dict] = field(default_factory=list)
    error: Optional[str] = None
    created_at: Any = None


def _error_text(error: ExternalServiceError) -> str:
    if error.detail:
        return f"{error.message}: {error.detail}"
    return error.message


def _normalize_title(title: str) -> str:
    return " ".join(title.lower().split())


class ScanPipeline:
    """
    Orchestrates detection, enrichment and recommendation for scan sessions.

    Each phase finishes with exactly one status write. Transitions are guarded
    in the database, so a phase that loses a race (or runs against a session
    that already moved on) writes nothing.
    """

    def __init__(
        self,
        scan_repository: ScanRepository,
        user_repository: UserRepository,
        vision_client: VisionExtractionClient,
        enricher: MetadataEnricher,
        recommender: BookRecommender,
        max_upload_bytes: int = 5 * 1024 * 1024,
        enrichment_timeout: float = 3.0,
        pipeline_mode: str = "phased",
    ):
        self.scans = scan_repository
        self.users = user_repository
        self.vision = vision_client
        self.enricher = enricher
        self.recommender = recommender
        self.max_upload_bytes = max_upload_bytes
        self.enrichment_timeout = enrichment_timeout
        self.pipeline_mode = pipeline_mode
        # Avoids duplicate LLM calls when one process sees concurrent phase-2 requests
        self._phase_locks: dict[str, asyncio.Lock] = {}
        self._phase_callers: dict[str, int] = {}

    @property
    def runs_second_phase_inline(self) -> bool:
        return self.pipeline_mode in ("inline", "background")

    # =========================================================================
    # Session creation and detection
    # =========================================================================

    async def start_scan(
        self,
        image_bytes: bytes,
        content_type: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ScanSubmission:
        """
        Validate the upload and create a session in ``processing``.

        Raises:
            ValidationError: empty, non-image or undecodable upload
            PayloadTooLargeError: upload above the size limit
        """
        mime_type = validate_image(image_bytes, content_type, self.max_upload_bytes)

        scan = await self.scans.create_session(
            user_id=user_id,
            metadata={"fileSize": len(image_bytes), "contentType": mime_type},
        )
        return ScanSubmission(
            session_id=scan.id,
            session_token=scan.session_token,
            mime_type=mime_type,
        )

    async def run_detection_phase(
        self,
        session_id: str,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
    ) -> ScanStatus:
        """
        Detect books and move the session to ``completed_detection`` or ``failed``.

        Returns the status the session ended in.
        """
        started = time.perf_counter()

        try:
            try:
                result = await self.vision.detect(image_bytes, mime_type)
            except ExternalServiceError as e:
                logger.warning(f"Detection failed for session {session_id}: {e.message}")
                return await self._fail(session_id, _error_text(e))

            if result.is_empty:
                return await self._fail(session_id, NO_BOOKS_MESSAGE)

            elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
            applied = await self.scans.save_detection(
                session_id,
                [book.to_dict() for book in result.books],
                metadata_update={
                    "booksDetected": len(result.books),
                    "detectionMs": elapsed_ms,
                },
            )
            if not applied:
                logger.warning(f"Session {session_id} left processing before detection finished")
                return await self._current_status(session_id)

            logger.info(f"Session {session_id}: {len(result.books)} books detected in {elapsed_ms}ms")
            return ScanStatus.COMPLETED_DETECTION

        except Exception:
            logger.exception(f"Unexpected error in detection for session {session_id}")
            await self._fail(session_id, UNEXPECTED_FAILURE_MESSAGE)
            raise

    async def process_scan(
        self,
        session_id: str,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
    ) -> ScanStatus:
        """Run detection, and phase 2 as well when the pipeline mode says so."""
        status = await self.run_detection_phase(session_id, image_bytes, mime_type)

        if status == ScanStatus.COMPLETED_DETECTION and self.runs_second_phase_inline:
            await self.run_enrichment_and_recommendation_phase(session_id)
            return ScanStatus.COMPLETED

        return status

    async def process_scan_in_background(
        self,
        session_id: str,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
    ) -> None:
        """Background-task entry point; nothing is awaiting the result."""
        try:
            await self.process_scan(session_id, image_bytes, mime_type)
        except Exception as e:
            # Session was already marked failed by the phase that raised
            logger.error(f"Background processing of session {session_id} failed: {e}")

    # =========================================================================
    # Enrichment and recommendation
    # =========================================================================

    async def run_enrichment_and_recommendation_phase(self, session_id: str) -> list[Recommendation]:
        """
        Enrich detected books, generate recommendations and complete the session.

        Idempotent: a session that is already ``completed`` returns its stored
        recommendations without calling any external service.

        Raises:
            NotFoundError: unknown session
            InvalidStateError: detection still running, or the scan failed
        """
        lock = self._phase_locks.setdefault(session_id, asyncio.Lock())
        self._phase_callers[session_id] = self._phase_callers.get(session_id, 0) + 1
        try:
            async with lock:
                return await self._run_second_phase(session_id)
        finally:
            # Drop the lock only once no caller holds or waits on it
            self._phase_callers[session_id] -= 1
            if not self._phase_callers[session_id]:
                del self._phase_callers[session_id]
                self._phase_locks.pop(session_id, None)

    get_recommendations = run_enrichment_and_recommendation_phase

    async def _run_second_phase(self, session_id: str) -> list[Recommendation]:
        scan = await self.scans.require_session(session_id)
        status = ScanStatus(scan.status)

        if status == ScanStatus.COMPLETED:
            return await self.scans.list_recommendations(session_id)
        self._ensure_detection_complete(scan)

        started = time.perf_counter()
        try:
            books = await self.scans.list_detected_books(session_id)
            preferences, history = await self._reader_context(scan.user_id)

            book_updates, recommendations = await asyncio.gather(
                self._enrich_detected_books(books),
                self._recommend(books, preferences, history),
            )

            applied = await self.scans.complete_with_recommendations(
                session_id,
                book_updates=book_updates,
                recommendations=recommendations,
                user_id=scan.user_id,
                metadata_update={
                    "recommendationsCount": len(recommendations),
                    "recommendationMs": round((time.perf_counter() - started) * 1000, 1),
                },
            )
        except Exception:
            logger.exception(f"Unexpected error in recommendation phase for session {session_id}")
            await self._fail(session_id, UNEXPECTED_FAILURE_MESSAGE)
            raise

        if not applied:
            # Another caller completed or failed the session first
            scan = await self.scans.require_session(session_id)
            if ScanStatus(scan.status) != ScanStatus.COMPLETED:
                self._ensure_detection_complete(scan)

        logger.info(f"Session {session_id} completed with {len(recommendations)} recommendations")
        return await self.scans.list_recommendations(session_id)

    @staticmethod
    def _ensure_detection_complete(scan: ScanSession) -> None:
        status = ScanStatus(scan.status)
        if status == ScanStatus.PROCESSING:
            raise InvalidStateError(
                "Detection has not completed yet",
                detail=f"Session '{scan.id}' is still processing",
            )
        if status == ScanStatus.FAILED:
            raise InvalidStateError("Scan failed", detail=scan.error_message)

    async def _reader_context(self, user_id: Optional[str]) -> tuple[dict, list[dict]]:
        """Preferences and recent history of the owner; empty for anonymous scans."""
        if not user_id:
            return {}, []

        preferences = await self.users.get_preferences(user_id)
        entries = await self.users.list_reading_history(user_id, limit=HISTORY_LIMIT)
        history = [
            {"title": e.book_title, "author": e.book_author, "rating": e.rating}
            for e in entries
        ]
        return preferences, history

    async def _enrich_detected_books(self, books: list[DetectedBook]) -> dict[str, dict]:
        results = await self.enrich_all(
            [(book.title, book.author, book.isbn) for book in books]
        )

        updates = {}
        for book, metadata in zip(books, results):
            update = {"metadata": metadata}
            if metadata:
                if not book.isbn:
                    update["isbn"] = metadata.get("isbn_13") or metadata.get("isbn_10")
                update["google_books_id"] = metadata.get("google_books_id")
            updates[book.id] = update
        return updates

    async def _recommend(
        self,
        books: list[DetectedBook],
        preferences: dict,
        history: list[dict],
    ) -> list[dict]:
        candidates: list[RecommendationCandidate] = await self.recommender.recommend(
            [{"title": b.title, "author": b.author} for b in books],
            preferences,
            history,
        )
        if not candidates:
            return []

        metadata = await self.enrich_all([(c.title, c.author, None) for c in candidates])
        book_ids = {_normalize_title(b.title): b.id for b in books}

        return [
            {
                "title": c.title,
                "author": c.author,
                "score": c.score,
                "reasoning": c.reasoning,
                "metadata": meta,
                "detected_book_id": book_ids.get(_normalize_title(c.based_on)) if c.based_on else None,
            }
            for c, meta in zip(candidates, metadata)
        ]

    async def enrich_all(self, items: list[tuple[str, Optional[str], Optional[str]]]) -> list[dict]:
        """
        Look up metadata for (title, author, isbn) items concurrently.

        The whole batch is bounded by ``enrichment_timeout``. Lookups still
        running at the deadline are cancelled; they and any that raised come
        back as ``{}``. Output order matches input order.
        """
        if not items:
            return []

        tasks = [
            asyncio.create_task(self.enricher.enrich(title, author, isbn))
            for title, author, isbn in items
        ]
        done, pending = await asyncio.wait(tasks, timeout=self.enrichment_timeout)

        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"{len(pending)}/{len(tasks)} metadata lookups timed out")
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for task, (title, _, _) in zip(tasks, items):
            if task not in done or task.cancelled():
                results.append({})
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"Metadata lookup for '{title}' failed: {error}")
                results.append({})
                continue
            metadata = task.result()
            results.append(metadata.to_dict() if metadata else {})
        return results

    # =========================================================================
    # Reads and feedback
    # =========================================================================

    async def get_session_status(self, session_id: str) -> SessionView:
        """
        Current status with whatever results exist. Never writes.

        Raises:
            NotFoundError: unknown session
        """
        scan = await self.scans.require_session(session_id)
        status = ScanStatus(scan.status)

        books: list[dict] = []
        recommendations: list[dict] = []
        if status != ScanStatus.PROCESSING:
            books = [b.to_dict() for b in await self.scans.list_detected_books(session_id)]
            recommendations = [r.to_dict() for r in await self.scans.list_recommendations(session_id)]

        return SessionView(
            session_id=scan.id,
            status=status,
            detected_books=books,
            recommendations=recommendations,
            error=scan.error_message if status == ScanStatus.FAILED else None,
            created_at=scan.created_at,
        )

    async def submit_feedback(
        self,
        session_id: str,
        feedback: dict,
        user_id: Optional[str] = None,
    ):
        """
        Record user feedback against a session. Status is never changed.

        Raises:
            NotFoundError: unknown session (nothing is inserted)
            ValidationError: detected book belongs to another session
        """
        return await self.scans.add_feedback(
            session_id=session_id,
            feedback_type=feedback["feedback_type"],
            detected_book_id=feedback.get("detected_book_id"),
            user_id=user_id,
            is_correct=feedback.get("is_correct"),
            corrected_title=feedback.get("corrected_title"),
            corrected_author=feedback.get("corrected_author"),
            comments=feedback.get("comments"),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _fail(self, session_id: str, message: str) -> ScanStatus:
        applied = await self.scans.transition(session_id, ScanStatus.FAILED, error_message=message)
        if applied:
            logger.info(f"Session {session_id} failed: {message}")
            return ScanStatus.FAILED
        return await self._current_status(session_id)

    async def _current_status(self, session_id: str) -> ScanStatus:
        scan = await self.scans.require_session(session_id)
        return ScanStatus(scan.status)
