"""
Helpers for pulling structured data out of free-form model output.
"""

import json
import re
from typing import Any, Optional

# Greedy: from the first "{" to the last "}" so nested objects survive
JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: Optional[str]) -> Optional[dict]:
    """
    Return the first JSON object embedded in ``text``.

    Models often wrap JSON in prose or markdown fences. Returns None when no
    object is present or it does not decode to a dict.
    """
    if not text:
        return None

    match = JSON_OBJECT_PATTERN.search(text)
    if not match:
        return None

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None

    return parsed if isinstance(parsed, dict) else None


def clamp_unit(value: Any, default: float = 0.5) -> float:
    """Coerce ``value`` to a float in [0, 1]; non-numeric values become ``default``."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if value != value:  # NaN
        return default
    return max(0.0, min(1.0, float(value)))
