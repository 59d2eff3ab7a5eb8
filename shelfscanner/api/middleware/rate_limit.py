"""
Rate limiting middleware.

Fixed-window counter per client (IP, or the first X-Forwarded-For hop) over
every path under ``/api/``. In-memory, so limits are per process.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .error_handler import create_error_response

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    enabled: bool = True

    max_requests: int = 100
    window_seconds: int = 15 * 60

    # Only paths with one of these prefixes are limited
    limited_prefixes: tuple[str, ...] = ("/api/",)

    trusted_proxy_headers: list[str] = field(default_factory=lambda: [
        "X-Forwarded-For",
        "X-Real-IP",
    ])


@dataclass
class WindowState:
    window_start: float
    count: int = 0


class InMemoryRateLimiter:
    """
    Fixed-window limiter.

    Suitable for single-instance deployments.
    """

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self._windows: dict[str, WindowState] = {}
        self._lock = asyncio.Lock()

    async def hit(self, identifier: str) -> tuple[bool, int, float]:
        """
        Count one request for ``identifier``.

        Returns:
            (allowed, remaining, seconds_until_reset)
        """
        window = self.config.window_seconds
        async with self._lock:
            now = self._clock()
            self._evict_expired(now)

            state = self._windows.get(identifier)
            if state is None or now - state.window_start >= window:
                state = WindowState(window_start=now)
                self._windows[identifier] = state

            reset_in = window - (now - state.window_start)
            if state.count >= self.config.max_requests:
                return False, 0, reset_in

            state.count += 1
            return True, self.config.max_requests - state.count, reset_in

    def _evict_expired(self, now: float) -> None:
        window = self.config.window_seconds
        expired = [k for k, s in self._windows.items() if now - s.window_start >= window]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        self._windows.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests over the limit with 429 and a Retry-After header."""

    def __init__(
        self,
        app: FastAPI,
        config: Optional[RateLimitConfig] = None,
        limiter: Optional[InMemoryRateLimiter] = None,
    ):
        super().__init__(app)
        self.config = config or RateLimitConfig()
        self.limiter = limiter or InMemoryRateLimiter(self.config)

    def _get_client_identifier(self, request: Request) -> str:
        for header in self.config.trusted_proxy_headers:
            forwarded = request.headers.get(header)
            if forwarded:
                return f"ip:{forwarded.split(',')[0].strip()}"

        if request.client:
            return f"ip:{request.client.host}"
        return "unknown"

    def _is_limited(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.config.limited_prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.config.enabled or not self._is_limited(request.url.path):
            return await call_next(request)

        identifier = self._get_client_identifier(request)
        allowed, remaining, reset_in = await self.limiter.hit(identifier)
        retry_after = str(int(reset_in) + 1)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {identifier} on {request.url.path}")
            return create_error_response(
                error="Too many requests, please try again later",
                code="RATE_LIMIT_EXCEEDED",
                status_code=429,
                detail=f"Maximum {self.config.max_requests} requests per {self.config.window_seconds} seconds",
                headers={
                    "Retry-After": retry_after,
                    "X-Rate-Limit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-Rate-Limit-Limit"] = str(self.config.max_requests)
        response.headers["X-Rate-Limit-Remaining"] = str(remaining)
        response.headers["X-Rate-Limit-Reset"] = retry_after
        return response


def setup_rate_limiting(
    app: FastAPI,
    config: Optional[RateLimitConfig] = None,
) -> InMemoryRateLimiter:
    """
    Install the rate limiting middleware.

    Returns:
        The limiter instance, for tests and admin resets.
    """
    config = config or RateLimitConfig()
    limiter = InMemoryRateLimiter(config)
    app.add_middleware(RateLimitMiddleware, config=config, limiter=limiter)
    return limiter
