"""
Scan Pipeline Module

Session state machine, phase orchestration and periodic session cleanup.
"""

from shelfscanner.pipeline.orchestrator import (
    ScanPipeline,
    ScanSubmission,
    SessionView,
    NO_BOOKS_MESSAGE,
)
from shelfscanner.pipeline.sweeper import SessionSweeper, SweepResult

__all__ = [
    "ScanPipeline",
    "ScanSubmission",
    "SessionView",
    "NO_BOOKS_MESSAGE",
    "SessionSweeper",
    "SweepResult",
]
