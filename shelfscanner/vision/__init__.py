"""
Vision Module for Shelf Scanner

- Upload validation
- Book detection from shelf photos via a vision-capable LLM
"""

from shelfscanner.vision.preprocessing import validate_image
from shelfscanner.vision.extractor import (
    VisionExtractionClient,
    VisionResult,
    DetectedCandidate,
)

__all__ = [
    "validate_image",
    "VisionExtractionClient",
    "VisionResult",
    "DetectedCandidate",
]
