"""
Book Recommender for Shelf Scanner

LLM-backed recommendations of new books based on:
- the books detected on the shelf (first five, in detection order)
- the reader's stated preferences
- the reader's recent reading history

Every recommendation carries a score in [0, 1] and a short reason. Failures
never propagate: the pipeline gets an empty list and finishes the scan.
"""

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from ..llm.clients import BaseLLMClient, generate_with_retry
from ..llm.parsing import clamp_unit, extract_json_object
from ..llm.prompts import PromptTemplates

MAX_SHELF_BOOKS = 5
MAX_HISTORY_ENTRIES = 10
RECOMMENDATION_COUNT = 5

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_AUTHOR = "Unknown Author"
NO_REASONING = "No specific reasoning provided"


@dataclass
class RecommendationCandidate:
    """A single suggested book."""

    title: str
    author: str
    score: float
    reasoning: str
    # Title of the shelf book that inspired the suggestion, if the model named one
    based_on: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "author": self.author,
            "score": self.score,
            "reasoning": self.reasoning,
            "based_on": self.based_on,
        }


def _normalize_title(title: str) -> str:
    return " ".join(title.lower().split())


class BookRecommender:
    """
    Generate recommendations with an LLM.

    Usage:
        recommender = BookRecommender(llm_client)
        recs = await recommender.recommend(
            books=[{"title": "Dune", "author": "Frank Herbert"}],
            preferences={"favoriteGenres": ["science fiction"]},
            history=[],
        )
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        max_attempts: int = 2,
        retry_base_delay: float = 1.0,
        temperature: float = 0.7,
    ):
        self.llm_client = llm_client
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.temperature = temperature

    async def recommend(
        self,
        books: list[dict],
        preferences: Optional[dict] = None,
        history: Optional[list[dict]] = None,
    ) -> list[RecommendationCandidate]:
        """
        Suggest up to five books not already on the shelf.

        Args:
            books: Shelf books as {"title", "author"} dicts; only the first five are used
            preferences: User preference document
            history: Reading history as {"title", "author", "rating"} dicts, newest first

        Returns:
            Recommendations in the model's order, or [] on any failure
        """
        shelf = books[:MAX_SHELF_BOOKS]
        if not shelf:
            return []

        system_prompt, user_prompt = PromptTemplates.build_recommendation_prompt(
            books=shelf,
            preferences=preferences or {},
            history=(history or [])[:MAX_HISTORY_ENTRIES],
            count=RECOMMENDATION_COUNT,
        )

        try:
            response = await generate_with_retry(
                self.llm_client,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                temperature=self.temperature,
            )
        except Exception as e:
            logger.error(f"Recommendation generation failed: {type(e).__name__}: {e}")
            return []

        recommendations = self.parse_response(response.content, exclude_titles=[b["title"] for b in books])
        logger.info(f"Generated {len(recommendations)} recommendations")
        return recommendations

    @staticmethod
    def parse_response(
        text: str,
        exclude_titles: Optional[list[str]] = None,
    ) -> list[RecommendationCandidate]:
        """
        Parse model output into recommendations.

        Scores are clamped (non-numeric -> 0.5), blanks get placeholders, and
        suggestions that repeat a shelf title are dropped. At most five are kept.
        """
        payload = extract_json_object(text)
        if payload is None:
            logger.warning("Recommendation response contained no JSON object")
            return []

        items = payload.get("recommendations")
        if not isinstance(items, list):
            logger.warning("Recommendation response has no 'recommendations' list")
            return []

        owned = {_normalize_title(t) for t in (exclude_titles or []) if t}
        results: list[RecommendationCandidate] = []

        for item in items:
            if not isinstance(item, dict):
                continue
            candidate = RecommendationCandidate(
                title=_text_or(item.get("title"), UNKNOWN_TITLE),
                author=_text_or(item.get("author"), UNKNOWN_AUTHOR),
                score=clamp_unit(item.get("score")),
                reasoning=_text_or(item.get("reasoning"), NO_REASONING),
                based_on=_text_or(item.get("basedOn") or item.get("based_on"), None),
            )
            if _normalize_title(candidate.title) in owned:
                continue
            results.append(candidate)
            if len(results) == RECOMMENDATION_COUNT:
                break

        return results


def _text_or(value: Any, default: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default
