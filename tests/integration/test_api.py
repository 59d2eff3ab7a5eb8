"""
Integration tests for API endpoints.
"""

from dataclasses import replace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from shelfscanner.api.main import create_app
from shelfscanner.storage.models import ScanSession, UserFeedback

pytestmark = pytest.mark.asyncio


def _upload(data: bytes, content_type: str = "image/jpeg", name: str = "shelf.jpg") -> dict:
    return {"image": (name, data, content_type)}


async def _count(database, model) -> int:
    async with database.session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _register(client, email: str = "reader@example.com", password: str = "correct-horse") -> dict:
    response = await client.post(
        "/api/v1/auth/signup",
        json={"email": email, "password": password, "username": "reader"},
    )
    assert response.status_code == 201

    response = await client.post(
        "/api/v1/auth/token",
        data={"username": email, "password": password},
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["llm_provider"] == "mock"
        assert "timestamp" in data

    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "Shelf Scanner"

    async def test_request_id_header(self, client):
        response = await client.get("/", headers={"X-Request-ID": "abc-123"})

        assert response.headers["X-Request-ID"] == "abc-123"


class TestScanEndpoints:
    """Tests for the phased scan flow."""

    async def test_scan_runs_detection(self, client, jpeg_bytes):
        response = await client.post("/api/v1/scan", files=_upload(jpeg_bytes))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed_detection"
        assert data["booksDetected"] == 3
        assert len(data["sessionToken"]) == 64
        assert data["error"] is None

    async def test_poll_then_fetch_recommendations(self, client, jpeg_bytes):
        session_id = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes))).json()["sessionId"]

        status = (await client.get(f"/api/v1/scan/{session_id}")).json()
        assert status["status"] == "completed_detection"
        assert [b["title"] for b in status["detectedBooks"]] == ["Dune", "Neuromancer", "Foundation"]
        assert status["detectedBooks"][0]["confidence"] == 0.95
        assert status["recommendations"] == []

        response = await client.get(f"/api/v1/scan/{session_id}/recommendations")
        assert response.status_code == 200
        recs = response.json()
        assert [r["rank"] for r in recs] == [1, 2]
        assert recs[0]["title"] == "Hyperion"
        assert recs[0]["detectedBookId"] == status["detectedBooks"][0]["id"]

        status = (await client.get(f"/api/v1/scan/{session_id}")).json()
        assert status["status"] == "completed"
        assert len(status["recommendations"]) == 2

    async def test_recommendations_are_stable(self, client, jpeg_bytes):
        session_id = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes))).json()["sessionId"]

        first = (await client.get(f"/api/v1/scan/{session_id}/recommendations")).json()
        second = (await client.get(f"/api/v1/scan/{session_id}/recommendations")).json()

        assert first == second

    async def test_no_books_detected(self, client, mock_llm, jpeg_bytes):
        mock_llm.responses = ['{"books": []}']

        data = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes))).json()

        assert data["status"] == "failed"
        assert data["error"] == "No books detected in image"

        response = await client.get(f"/api/v1/scan/{data['sessionId']}/recommendations")
        assert response.status_code == 409
        assert response.json()["detail"] == "No books detected in image"

    async def test_oversized_upload(self, client, services, database, jpeg_bytes):
        services.pipeline.max_upload_bytes = 100

        response = await client.post("/api/v1/scan", files=_upload(jpeg_bytes))

        assert response.status_code == 413
        assert response.json()["code"] == "PAYLOAD_TOO_LARGE"
        assert await _count(database, ScanSession) == 0

    async def test_oversized_upload_read_is_bounded(self, client, services, jpeg_bytes, monkeypatch):
        pipeline = services.pipeline
        pipeline.max_upload_bytes = 100
        received = []
        start_scan = pipeline.start_scan

        async def recording_start_scan(data, *args, **kwargs):
            received.append(len(data))
            return await start_scan(data, *args, **kwargs)

        monkeypatch.setattr(pipeline, "start_scan", recording_start_scan)

        response = await client.post("/api/v1/scan", files=_upload(jpeg_bytes + b"\0" * 10_000))

        assert response.status_code == 413
        assert received == [101]

    async def test_non_image_upload(self, client, database):
        response = await client.post(
            "/api/v1/scan",
            files=_upload(b"just some notes", content_type="text/plain", name="notes.txt"),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Only image files are allowed"
        assert await _count(database, ScanSession) == 0

    async def test_missing_image(self, client):
        response = await client.post("/api/v1/scan", data={"other": "field"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_unknown_session(self, client):
        response = await client.get("/api/v1/scan/does-not-exist")

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "NOT_FOUND"
        assert "timestamp" in body

    async def test_inline_mode(self, client, services, jpeg_bytes):
        services.pipeline.pipeline_mode = "inline"

        data = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes))).json()

        assert data["status"] == "completed"
        assert data["booksDetected"] == 3

    async def test_background_mode(self, client, services, jpeg_bytes):
        services.pipeline.pipeline_mode = "background"

        response = await client.post("/api/v1/scan", files=_upload(jpeg_bytes))

        assert response.status_code == 202
        assert response.json()["status"] == "processing"

        # The transport waits for background tasks before returning
        status = (await client.get(f"/api/v1/scan/{response.json()['sessionId']}")).json()
        assert status["status"] == "completed"
        assert len(status["recommendations"]) == 2

    async def test_invalid_token_is_anonymous(self, client, jpeg_bytes):
        response = await client.post(
            "/api/v1/scan",
            files=_upload(jpeg_bytes),
            headers={"Authorization": "Bearer not-a-real-token"},
        )

        assert response.status_code == 200


class TestFeedbackEndpoints:
    """Tests for scan feedback."""

    async def test_submit_feedback(self, client, jpeg_bytes):
        scan = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes))).json()
        book_id = (await client.get(f"/api/v1/scan/{scan['sessionId']}")).json()["detectedBooks"][0]["id"]

        response = await client.post(
            f"/api/v1/scan/{scan['sessionId']}/feedback",
            json={
                "detectedBookId": book_id,
                "feedbackType": "correction",
                "isCorrect": False,
                "correctedTitle": "Dune Messiah",
            },
        )

        assert response.status_code == 201
        assert response.json()["id"]
        assert response.json()["message"]

        status = (await client.get(f"/api/v1/scan/{scan['sessionId']}")).json()
        assert status["status"] == "completed_detection"

    async def test_feedback_unknown_session(self, client, database):
        response = await client.post(
            "/api/v1/scan/missing/feedback",
            json={"feedbackType": "rating", "comments": "nice"},
        )

        assert response.status_code == 404
        assert await _count(database, UserFeedback) == 0

    async def test_invalid_feedback_type(self, client, jpeg_bytes):
        scan = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes))).json()

        response = await client.post(
            f"/api/v1/scan/{scan['sessionId']}/feedback",
            json={"feedbackType": "praise"},
        )

        assert response.status_code == 400


class TestAuthEndpoints:
    """Tests for signup and login."""

    async def test_me(self, client):
        headers = await _register(client)

        response = await client.get("/api/v1/auth/me", headers=headers)

        assert response.status_code == 200
        assert response.json()["email"] == "reader@example.com"

    async def test_me_requires_token(self, client):
        response = await client.get("/api/v1/auth/me")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_duplicate_signup(self, client):
        await _register(client)

        response = await client.post(
            "/api/v1/auth/signup",
            json={"email": "reader@example.com", "password": "another-password"},
        )

        assert response.status_code == 400

    async def test_wrong_password(self, client):
        await _register(client)

        response = await client.post(
            "/api/v1/auth/token",
            data={"username": "reader@example.com", "password": "wrong-password"},
        )

        assert response.status_code == 401


class TestUserEndpoints:
    """Tests for profile, preferences and reading history."""

    async def test_profile_update(self, client):
        headers = await _register(client)

        response = await client.put(
            "/api/v1/user/profile",
            json={"goodreads_user_id": "12345"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["goodreads_user_id"] == "12345"
        assert response.json()["username"] == "reader"

    async def test_preferences_feed_recommendations(self, client, mock_llm, jpeg_bytes):
        headers = await _register(client)
        await client.put(
            "/api/v1/user/preferences",
            json={"preferences": {"favoriteGenres": ["space opera"]}},
            headers=headers,
        )
        await client.post(
            "/api/v1/user/reading-history",
            json={"title": "Solaris", "author": "Stanislaw Lem", "rating": 5},
            headers=headers,
        )

        scan = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes), headers=headers)).json()
        await client.get(f"/api/v1/scan/{scan['sessionId']}/recommendations")

        prompt = mock_llm.calls[-1]["user_prompt"]
        assert "space opera" in prompt
        assert "Solaris" in prompt

    async def test_reading_history(self, client):
        headers = await _register(client)

        created = await client.post(
            "/api/v1/user/reading-history",
            json={"title": "Dune", "author": "Frank Herbert", "isbn": "978-0441172719", "status": "reading"},
            headers=headers,
        )
        assert created.status_code == 201
        assert created.json()["isbn"] == "9780441172719"

        listing = (await client.get("/api/v1/user/reading-history", headers=headers)).json()
        assert listing["total"] == 1
        assert listing["entries"][0]["status"] == "reading"

    async def test_rating_out_of_range(self, client):
        headers = await _register(client)

        response = await client.post(
            "/api/v1/user/reading-history",
            json={"title": "Dune", "rating": 9},
            headers=headers,
        )

        assert response.status_code == 400

    async def test_delete_user_data(self, client, jpeg_bytes):
        headers = await _register(client)
        scan = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes), headers=headers)).json()

        response = await client.delete("/api/v1/user/data", headers=headers)

        assert response.status_code == 204
        assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 401
        # Anonymous scan data survives
        assert (await client.get(f"/api/v1/scan/{scan['sessionId']}")).status_code == 200


class TestHistoryEndpoints:
    """Tests for scan history."""

    async def test_history_lists_own_scans(self, client, jpeg_bytes):
        headers = await _register(client)
        scan = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes), headers=headers)).json()
        await client.get(f"/api/v1/scan/{scan['sessionId']}/recommendations")

        history = (await client.get("/api/v1/history", headers=headers)).json()

        assert len(history["sessions"]) == 1
        item = history["sessions"][0]
        assert item["sessionId"] == scan["sessionId"]
        assert item["booksDetected"] == 3
        assert item["recommendationsCount"] == 2

    async def test_history_detail_orders_by_confidence(self, client, jpeg_bytes):
        headers = await _register(client)
        scan = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes), headers=headers)).json()

        detail = (await client.get(f"/api/v1/history/{scan['sessionId']}", headers=headers)).json()

        confidences = [b["confidence"] for b in detail["detectedBooks"]]
        assert confidences == sorted(confidences, reverse=True)

    async def test_other_users_scans_are_hidden(self, client, jpeg_bytes):
        owner = await _register(client, "owner@example.com")
        other = await _register(client, "other@example.com")
        scan = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes), headers=owner)).json()

        assert (await client.get(f"/api/v1/history/{scan['sessionId']}", headers=other)).status_code == 404
        assert (await client.delete(f"/api/v1/history/{scan['sessionId']}", headers=other)).status_code == 404

    async def test_delete_scan(self, client, jpeg_bytes):
        headers = await _register(client)
        scan = (await client.post("/api/v1/scan", files=_upload(jpeg_bytes), headers=headers)).json()

        response = await client.delete(f"/api/v1/history/{scan['sessionId']}", headers=headers)

        assert response.status_code == 204
        assert (await client.get(f"/api/v1/scan/{scan['sessionId']}")).status_code == 404

    async def test_history_requires_login(self, client):
        assert (await client.get("/api/v1/history")).status_code == 401


class TestRateLimiting:
    """Tests for the rate limiting middleware."""

    async def test_limit_applies_to_api_routes(self, test_settings, services):
        settings = replace(test_settings, rate_limit_enabled=True, rate_limit_max_requests=2)
        app = create_app(settings, services=services)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            for _ in range(2):
                response = await client.get("/api/v1/scan/missing")
                assert response.status_code == 404
                assert "X-Rate-Limit-Remaining" in response.headers

            response = await client.get("/api/v1/scan/missing")
            assert response.status_code == 429
            assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
            assert int(response.headers["Retry-After"]) > 0

            # Health checks are never limited
            assert (await client.get("/health")).status_code == 200
