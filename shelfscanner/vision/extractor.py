"""
Vision Extraction Client

Sends a shelf photo to a vision-capable LLM and turns its answer into a list
of detected book candidates.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from ..errors import ExternalServiceError, MalformedResponseError
from ..llm.clients import BaseLLMClient, ImageInput, generate_with_retry
from ..llm.parsing import clamp_unit, extract_json_object
from ..llm.prompts import PromptTemplates

SERVICE_NAME = "Vision model"


@dataclass
class DetectedCandidate:
    """A book read off the shelf photo."""

    title: str
    author: Optional[str] = None
    confidence: float = 0.5
    position: Optional[dict] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "confidence": self.confidence,
            "position_in_image": self.position,
        }


@dataclass
class VisionResult:
    """Parsed output of one detection call."""

    books: list[DetectedCandidate] = field(default_factory=list)
    dropped: int = 0
    model: str = ""
    generation_time_ms: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.books


class VisionExtractionClient:
    """
    Detect books on a shelf photo with an LLM.

    Transient provider errors (throttling, overload) are retried with
    exponential backoff up to ``max_attempts`` calls in total. Use
    ``max_attempts=1`` where the caller has a tight latency budget.
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        max_tokens: int = 2048,
    ):
        self.llm_client = llm_client
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.max_tokens = max_tokens

    async def detect(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> VisionResult:
        """
        Detect books in an image.

        Raises:
            ExternalServiceError: provider unreachable, rejected the call, or
                kept failing after retries
            MalformedResponseError: the answer holds no usable JSON
        """
        system_prompt, user_prompt = PromptTemplates.build_detection_prompt()

        try:
            response = await generate_with_retry(
                self.llm_client,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                image=ImageInput(data=image_bytes, mime_type=mime_type),
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                max_tokens=self.max_tokens,
                temperature=0.1,
            )
        except Exception as e:
            logger.error(f"Vision detection failed: {type(e).__name__}: {e}")
            raise ExternalServiceError(SERVICE_NAME, detail=str(e)) from e

        logger.debug(f"Vision raw response: {response.content[:200]!r}")

        result = self.parse_response(response.content)
        result.model = response.model
        result.generation_time_ms = response.generation_time_ms

        logger.info(f"Vision model detected {len(result.books)} books ({result.dropped} dropped)")
        return result

    @staticmethod
    def parse_response(text: str) -> VisionResult:
        """
        Parse model output into candidates.

        Items without a usable title are dropped; confidences are clamped to
        [0, 1] and never otherwise changed.
        """
        payload = extract_json_object(text)
        if payload is None:
            raise MalformedResponseError(SERVICE_NAME, detail="No JSON object found in response")

        items = payload.get("books")
        if not isinstance(items, list):
            raise MalformedResponseError(SERVICE_NAME, detail="Response has no 'books' list")

        books = []
        dropped = 0
        for item in items:
            candidate = _to_candidate(item)
            if candidate is None:
                dropped += 1
                continue
            books.append(candidate)

        return VisionResult(books=books, dropped=dropped)


def _to_candidate(item: Any) -> Optional[DetectedCandidate]:
    if not isinstance(item, dict):
        return None

    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        return None

    author = item.get("author")
    if not isinstance(author, str) or not author.strip():
        author = None

    position = item.get("position")
    if not isinstance(position, dict):
        position = None

    return DetectedCandidate(
        title=title.strip(),
        author=author.strip() if author else None,
        confidence=clamp_unit(item.get("confidence")),
        position=position,
    )
