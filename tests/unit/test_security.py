"""
Unit tests for tokens, passwords, configuration and rate limiting.
"""

from datetime import timedelta

import pytest

from shelfscanner.api.middleware.cors import get_cors_config
from shelfscanner.api.middleware.logging import redact_headers
from shelfscanner.api.middleware.rate_limit import InMemoryRateLimiter, RateLimitConfig
from shelfscanner.config import Settings
from shelfscanner.security import (
    create_access_token,
    decode_access_token,
    generate_session_token,
    get_password_hash,
    verify_password,
)


class TestTokens:
    """Tests for session and access tokens."""

    def test_session_tokens_are_unique_hex(self):
        tokens = {generate_session_token() for _ in range(50)}

        assert len(tokens) == 50
        assert all(len(t) == 64 and int(t, 16) >= 0 for t in tokens)

    def test_access_token_round_trip(self):
        token = create_access_token("user-1", "secret", timedelta(minutes=5))

        assert decode_access_token(token, "secret") == "user-1"

    def test_wrong_secret(self):
        token = create_access_token("user-1", "secret", timedelta(minutes=5))

        assert decode_access_token(token, "other-secret") is None

    def test_expired_token(self):
        token = create_access_token("user-1", "secret", timedelta(seconds=-10))

        assert decode_access_token(token, "secret") is None

    def test_garbage_token(self):
        assert decode_access_token("not.a.jwt", "secret") is None


class TestPasswords:
    """Tests for bcrypt hashing."""

    def test_verify(self):
        hashed = get_password_hash("correct horse")

        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_non_bcrypt_hash(self):
        assert not verify_password("anything", "plaintext")


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    """Tests for the fixed-window limiter."""

    async def test_blocks_after_limit(self):
        limiter = InMemoryRateLimiter(RateLimitConfig(max_requests=2, window_seconds=60), clock=FakeClock())

        assert (await limiter.hit("ip:1"))[0]
        allowed, remaining, _ = await limiter.hit("ip:1")
        assert allowed and remaining == 0
        assert not (await limiter.hit("ip:1"))[0]

        # Other clients have their own window
        assert (await limiter.hit("ip:2"))[0]

    async def test_window_resets(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(RateLimitConfig(max_requests=1, window_seconds=60), clock=clock)

        await limiter.hit("ip:1")
        assert not (await limiter.hit("ip:1"))[0]

        clock.now += 60
        assert (await limiter.hit("ip:1"))[0]


class TestSettings:
    """Tests for environment configuration."""

    def test_defaults(self, monkeypatch):
        for key in ("PIPELINE_MODE", "MAX_UPLOAD_SIZE_MB", "RATE_LIMIT_MAX_REQUESTS", "DATABASE_URL"):
            monkeypatch.delenv(key, raising=False)

        settings = Settings.from_env()

        assert settings.pipeline_mode == "phased"
        assert settings.max_upload_size_bytes == 5 * 1024 * 1024
        assert settings.rate_limit_max_requests == 100

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("PIPELINE_MODE", "inline")
        monkeypatch.setenv("ENRICHMENT_TIMEOUT_SECONDS", "1.5")
        monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")

        settings = Settings.from_env()

        assert settings.pipeline_mode == "inline"
        assert settings.enrichment_timeout_seconds == 1.5
        assert settings.rate_limit_enabled is False

    def test_unknown_pipeline_mode(self, monkeypatch):
        monkeypatch.setenv("PIPELINE_MODE", "sometimes")

        with pytest.raises(ValueError):
            Settings.from_env()


class TestMiddlewareHelpers:
    """Tests for CORS and logging helpers."""

    def test_production_cors_uses_configured_origins(self):
        config = get_cors_config("production", "https://shelf.example.com, https://m.example.com")

        assert not config.allow_all_origins
        assert config.allowed_origins == ["https://shelf.example.com", "https://m.example.com"]

    def test_sensitive_headers_redacted(self):
        headers = redact_headers(
            {"Authorization": "Bearer abc", "Accept": "image/jpeg"},
            {"authorization"},
        )

        assert headers["Authorization"] == "[REDACTED]"
        assert headers["Accept"] == "image/jpeg"
