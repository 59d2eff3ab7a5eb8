"""
Unit tests for the scan and user repositories and the session sweeper.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from shelfscanner.errors import NotFoundError
from shelfscanner.pipeline.sweeper import STALLED_MESSAGE, SessionSweeper
from shelfscanner.storage.models import (
    DetectedBook,
    ReadingHistory,
    Recommendation,
    ScanStatus,
    UserFeedback,
    utcnow,
)


BOOKS = [
    {"title": "Dune", "author": "Frank Herbert", "confidence": 0.9},
    {"title": "Emma", "author": "Jane Austen", "confidence": 0.4},
    {"title": "Ulysses", "author": None, "confidence": 0.7},
]


async def _count(database, model) -> int:
    async with database.session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _detected_session(scan_repository, user_id=None) -> str:
    scan = await scan_repository.create_session(user_id=user_id)
    assert await scan_repository.save_detection(scan.id, BOOKS)
    return scan.id


def _recommendations(n: int) -> list[dict]:
    return [
        {"title": f"Rec {i}", "author": "Author", "score": 0.5, "reasoning": "because", "metadata": {}}
        for i in range(n)
    ]


class TestStateTransitions:
    """Tests for guarded status updates."""

    @pytest.mark.parametrize("source, target, allowed", [
        (ScanStatus.PROCESSING, ScanStatus.COMPLETED_DETECTION, True),
        (ScanStatus.PROCESSING, ScanStatus.FAILED, True),
        (ScanStatus.COMPLETED_DETECTION, ScanStatus.COMPLETED, True),
        (ScanStatus.COMPLETED_DETECTION, ScanStatus.FAILED, True),
        (ScanStatus.COMPLETED_DETECTION, ScanStatus.PROCESSING, False),
        (ScanStatus.COMPLETED, ScanStatus.PROCESSING, False),
        (ScanStatus.COMPLETED, ScanStatus.FAILED, False),
        (ScanStatus.FAILED, ScanStatus.COMPLETED, False),
        (ScanStatus.FAILED, ScanStatus.COMPLETED_DETECTION, False),
    ])
    async def test_transition_table(self, scan_repository, source, target, allowed):
        scan = await scan_repository.create_session()
        path = {
            ScanStatus.PROCESSING: [],
            ScanStatus.COMPLETED_DETECTION: [ScanStatus.COMPLETED_DETECTION],
            ScanStatus.COMPLETED: [ScanStatus.COMPLETED_DETECTION, ScanStatus.COMPLETED],
            ScanStatus.FAILED: [ScanStatus.FAILED],
        }[source]
        for step in path:
            assert await scan_repository.transition(scan.id, step)

        assert await scan_repository.transition(scan.id, target) is allowed

        stored = await scan_repository.get_session(scan.id)
        assert stored.status == (target if allowed else source).value

    async def test_transition_on_missing_session(self, scan_repository):
        assert await scan_repository.transition("missing", ScanStatus.FAILED) is False

    async def test_metadata_is_merged(self, scan_repository):
        scan = await scan_repository.create_session(metadata={"fileSize": 10})

        await scan_repository.transition(
            scan.id, ScanStatus.COMPLETED_DETECTION, metadata_update={"booksDetected": 2}
        )

        stored = await scan_repository.get_session(scan.id)
        assert stored.session_metadata == {"fileSize": 10, "booksDetected": 2}

    async def test_require_session(self, scan_repository):
        with pytest.raises(NotFoundError):
            await scan_repository.require_session("missing")


class TestDetectionAndRecommendations:
    """Tests for child rows."""

    async def test_save_detection_requires_processing(self, scan_repository, database):
        scan = await scan_repository.create_session()
        await scan_repository.transition(scan.id, ScanStatus.FAILED, error_message="x")

        assert await scan_repository.save_detection(scan.id, BOOKS) is False
        assert await _count(database, DetectedBook) == 0

    async def test_books_ordered_by_confidence(self, scan_repository):
        session_id = await _detected_session(scan_repository)

        books = await scan_repository.list_detected_books(session_id, order_by_confidence=True)

        assert [b.title for b in books] == ["Dune", "Ulysses", "Emma"]

    async def test_ranks_are_dense_from_one(self, scan_repository):
        session_id = await _detected_session(scan_repository)

        assert await scan_repository.complete_with_recommendations(session_id, {}, _recommendations(4))

        recs = await scan_repository.list_recommendations(session_id)
        assert [r.rank for r in recs] == [1, 2, 3, 4]
        assert [r.title for r in recs] == ["Rec 0", "Rec 1", "Rec 2", "Rec 3"]

    async def test_second_completion_writes_nothing(self, scan_repository, database):
        session_id = await _detected_session(scan_repository)

        assert await scan_repository.complete_with_recommendations(session_id, {}, _recommendations(2))
        assert await scan_repository.complete_with_recommendations(session_id, {}, _recommendations(3)) is False

        assert await _count(database, Recommendation) == 2

    async def test_completion_requires_detection(self, scan_repository, database):
        scan = await scan_repository.create_session()

        assert await scan_repository.complete_with_recommendations(scan.id, {}, _recommendations(1)) is False
        assert await _count(database, Recommendation) == 0

    async def test_delete_cascades_to_children(self, scan_repository, database):
        session_id = await _detected_session(scan_repository)
        await scan_repository.complete_with_recommendations(session_id, {}, _recommendations(2))
        await scan_repository.add_feedback(session_id, feedback_type="rating", comments="great")

        assert await scan_repository.delete_session(session_id)

        assert await _count(database, DetectedBook) == 0
        assert await _count(database, Recommendation) == 0
        assert await _count(database, UserFeedback) == 0

    async def test_delete_restricted_to_owner(self, scan_repository, user_repository):
        owner = await user_repository.create_user("owner@example.com", "hash")
        other = await user_repository.create_user("other@example.com", "hash")
        session_id = await _detected_session(scan_repository, user_id=owner.id)

        assert await scan_repository.delete_session(session_id, user_id=other.id) is False
        assert await scan_repository.delete_session(session_id, user_id=owner.id) is True

    async def test_user_sessions_with_counts(self, scan_repository, user_repository):
        user = await user_repository.create_user("reader@example.com", "hash")
        session_id = await _detected_session(scan_repository, user_id=user.id)
        await scan_repository.complete_with_recommendations(session_id, {}, _recommendations(2))
        await scan_repository.create_session()

        sessions = await scan_repository.list_user_sessions(user.id)

        assert len(sessions) == 1
        assert sessions[0]["books_detected"] == 3
        assert sessions[0]["recommendations_count"] == 2
        assert sessions[0]["status"] == ScanStatus.COMPLETED.value


class TestUserRepository:
    """Tests for accounts and reading history."""

    async def test_preferences_merge(self, user_repository):
        user = await user_repository.create_user("a@example.com", "hash")

        await user_repository.update_preferences(user.id, {"favoriteGenres": ["history"]})
        merged = await user_repository.update_preferences(user.id, {"avoidGenres": ["horror"]})

        assert merged == {"favoriteGenres": ["history"], "avoidGenres": ["horror"]}
        assert await user_repository.get_preferences(user.id) == merged

    async def test_history_upserts_by_isbn(self, user_repository):
        user = await user_repository.create_user("a@example.com", "hash")

        await user_repository.add_reading_history(user.id, "Dune", book_isbn="9780441172719", rating=3)
        await user_repository.add_reading_history(user.id, "Dune", book_isbn="9780441172719", rating=5)
        await user_repository.add_reading_history(user.id, "Emma")

        entries = await user_repository.list_reading_history(user.id)
        assert len(entries) == 2
        assert {e.book_title: e.rating for e in entries}["Dune"] == 5

    async def test_delete_user_keeps_scans(self, user_repository, scan_repository, database):
        user = await user_repository.create_user("a@example.com", "hash")
        await user_repository.add_reading_history(user.id, "Dune")
        scan = await scan_repository.create_session(user_id=user.id)

        assert await user_repository.delete_user(user.id)

        assert await _count(database, ReadingHistory) == 0
        stored = await scan_repository.get_session(scan.id)
        assert stored is not None
        assert stored.user_id is None

    async def test_update_missing_user(self, user_repository):
        with pytest.raises(NotFoundError):
            await user_repository.update_profile("missing", username="x")


class TestSessionSweeper:
    """Tests for stalled and expired session cleanup."""

    async def test_fails_stalled_sessions(self, scan_repository):
        stalled = await scan_repository.create_session()
        done = await _detected_session(scan_repository)

        count = await scan_repository.fail_stalled_sessions(
            older_than=utcnow() + timedelta(minutes=1),
            message=STALLED_MESSAGE,
        )

        assert count == 1
        scan = await scan_repository.get_session(stalled.id)
        assert scan.status == ScanStatus.FAILED.value
        assert scan.error_message == STALLED_MESSAGE
        other = await scan_repository.get_session(done)
        assert other.status == ScanStatus.COMPLETED_DETECTION.value

    async def test_recent_sessions_are_left_alone(self, scan_repository):
        sweeper = SessionSweeper(scan_repository, stall_timeout_minutes=10, interval_seconds=0)
        scan = await scan_repository.create_session()

        result = await sweeper.sweep()

        assert result.stalled_failed == 0
        assert result.expired_deleted == 0
        assert (await scan_repository.get_session(scan.id)).status == ScanStatus.PROCESSING.value

    async def test_deletes_expired_sessions(self, scan_repository, database):
        session_id = await _detected_session(scan_repository)

        deleted = await scan_repository.delete_expired_sessions(now=utcnow() + timedelta(hours=25))

        assert deleted == 1
        assert await scan_repository.get_session(session_id) is None
        assert await _count(database, DetectedBook) == 0

    async def test_start_is_noop_when_disabled(self, scan_repository):
        sweeper = SessionSweeper(scan_repository, interval_seconds=0)

        sweeper.start()

        assert sweeper._task is None
        await sweeper.stop()

    async def test_start_and_stop(self, scan_repository):
        sweeper = SessionSweeper(scan_repository, interval_seconds=3600)

        sweeper.start()
        assert sweeper._task is not None

        await sweeper.stop()
        assert sweeper._task is None
