"""
Session Sweeper

Periodic maintenance for scan sessions:
- sessions stuck in ``processing`` (worker crashed, request cancelled) are
  failed after a timeout so pollers get a terminal answer
- sessions past ``expires_at`` are deleted together with their children
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from loguru import logger

from ..storage.models import utcnow
from ..storage.scan_repository import ScanRepository

STALLED_MESSAGE = "Processing timed out"


@dataclass
class SweepResult:
    stalled_failed: int = 0
    expired_deleted: int = 0


class SessionSweeper:
    """Fails stalled sessions and deletes expired ones."""

    def __init__(
        self,
        scan_repository: ScanRepository,
        stall_timeout_minutes: int = 10,
        interval_seconds: float = 300,
    ):
        self.scans = scan_repository
        self.stall_timeout = timedelta(minutes=stall_timeout_minutes)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def sweep(self) -> SweepResult:
        now = utcnow()
        result = SweepResult(
            stalled_failed=await self.scans.fail_stalled_sessions(
                older_than=now - self.stall_timeout,
                message=STALLED_MESSAGE,
            ),
            expired_deleted=await self.scans.delete_expired_sessions(now),
        )
        if result.stalled_failed or result.expired_deleted:
            logger.info(
                f"Session sweep: {result.stalled_failed} stalled failed, "
                f"{result.expired_deleted} expired deleted"
            )
        return result

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                # Keep the loop alive; the next tick retries
                logger.error(f"Session sweep failed: {e}")

    def start(self) -> None:
        """Start the periodic sweep on the running loop. No-op when interval is 0."""
        if self.interval_seconds <= 0 or self._task is not None:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Session sweeper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
