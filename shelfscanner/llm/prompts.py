"""
Prompt Templates

Templates for shelf-photo detection and for recommendation generation. Both
ask the model for a single JSON object and nothing else.
"""

import json
from dataclasses import dataclass
from typing import Optional


@dataclass
class PromptTemplates:
    """
    Collection of prompt templates for the scan pipeline.
    """

    DETECTION_SYSTEM_PROMPT = """You are a meticulous librarian who reads book spines from photographs.
You only report what you can actually read in the image."""

    DETECTION_PROMPT = """Analyze this image of a bookshelf and identify every visible book spine.
For each book whose title you can clearly read, extract:
- title: the complete, accurate title
- author: the author, if visible on the spine
- confidence: a number from 0 to 1 describing how sure you are of the reading
- position: approximate location as {{"x": <percent of width>, "y": <percent of height>}}

Return ONLY a JSON object with this structure:
{{
  "books": [
    {{"title": "Book Title", "author": "Author Name", "confidence": 0.95, "position": {{"x": 10, "y": 20}}}}
  ]
}}

Guidelines:
- Only include books whose title you can clearly read
- Be conservative with confidence scores
- Omit the author field when it is not visible
- Ignore decorations, picture frames and other non-book objects
- Spines are often printed vertically; read them in either direction
- Return valid JSON only, with no surrounding text"""

    RECOMMENDATION_SYSTEM_PROMPT = """You are a book recommendation expert with wide knowledge of fiction and non-fiction.
You recommend real, published books and never invent titles."""

    RECOMMENDATION_PROMPT = """Based on the books found on a reader's shelf, suggest {count} COMPLETELY NEW books that they do NOT already have but would likely enjoy.

Books currently on their shelf:
{shelf}

Reader preferences:
{preferences}

Reading history (most recent first):
{history}

For EACH recommendation provide:
1. title of the suggested book
2. author of the suggested book
3. score from 0 to 1 (1 means highly recommended)
4. reasoning: 2-3 sentences on how it relates to their shelf or interests
5. basedOn: the title of the shelf book that most inspired the suggestion, if any

Return ONLY a JSON object with this structure:
{{
  "recommendations": [
    {{"title": "Suggested Title", "author": "Suggested Author", "score": 0.85, "reasoning": "...", "basedOn": "Shelf Book Title"}}
  ]
}}
Provide exactly {count} recommendations."""

    @classmethod
    def build_detection_prompt(cls) -> tuple[str, str]:
        """Return (system_prompt, user_prompt) for spine detection."""
        return cls.DETECTION_SYSTEM_PROMPT, cls.DETECTION_PROMPT.format()

    @classmethod
    def format_shelf(cls, books: list[dict]) -> str:
        lines = []
        for i, book in enumerate(books, start=1):
            line = f'{i}. "{book["title"]}"'
            if book.get("author"):
                line += f" by {book['author']}"
            lines.append(line)
        return "\n".join(lines) or "(none)"

    @classmethod
    def format_history(cls, history: list[dict]) -> str:
        if not history:
            return "(none)"
        lines = []
        for entry in history:
            rating = entry.get("rating")
            lines.append(
                f"- {entry.get('title', 'Unknown')} by {entry.get('author') or 'Unknown'}"
                f" (rated {rating if rating is not None else 'N/A'}/5)"
            )
        return "\n".join(lines)

    @classmethod
    def build_recommendation_prompt(
        cls,
        books: list[dict],
        preferences: Optional[dict] = None,
        history: Optional[list[dict]] = None,
        count: int = 5,
    ) -> tuple[str, str]:
        """
        Build the recommendation prompt.

        Args:
            books: Shelf books as {"title", "author"} dicts
            preferences: User preference document (may be empty)
            history: Reading history as {"title", "author", "rating"} dicts
            count: Number of suggestions to ask for

        Returns:
            (system_prompt, user_prompt) tuple
        """
        user_prompt = cls.RECOMMENDATION_PROMPT.format(
            count=count,
            shelf=cls.format_shelf(books),
            preferences=json.dumps(preferences or {}, indent=2, default=str),
            history=cls.format_history(history or []),
        )
        return cls.RECOMMENDATION_SYSTEM_PROMPT, user_prompt
