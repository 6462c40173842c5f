"""
Word Budget Accountant.

Counts words in arbitrary structured content and answers budget questions.
Strings count whitespace-delimited tokens; mappings and sequences are summed
recursively over their values; other primitives count as one word.
"""

import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

_SENTENCE_END = re.compile(r"[.!?](?=\s|$)")


def count_words(content: Any) -> int:
    """Count the words of a string or nested structure. None counts 0."""
    if content is None:
        return 0
    if isinstance(content, str):
        return len(content.split())
    if isinstance(content, BaseModel):
        return count_words(content.model_dump(mode="json", exclude_none=True))
    if isinstance(content, Mapping):
        return sum(count_words(value) for value in content.values())
    if isinstance(content, (list, tuple, set, frozenset)):
        return sum(count_words(value) for value in content)
    # numbers, booleans, dates
    return 1


def is_near_limit(count: int, budget: int, threshold: float = 0.8) -> bool:
    return count >= budget * threshold


def is_over_limit(count: int, budget: int) -> bool:
    return count > budget


def percentage_used(count: int, budget: int) -> float:
    if budget <= 0:
        return 0.0
    return min(100.0, count / budget * 100)


def remaining(count: int, budget: int) -> int:
    return max(0, budget - count)


def truncate_words(text: str, max_words: int) -> str:
    """
    Cut text to at most max_words words.

    Prefers ending on a sentence boundary when that keeps at least half of
    the allowance; otherwise the last kept word gets a trailing "...".
    """
    words = text.split()
    if len(words) <= max_words:
        return text.strip()
    if max_words <= 0:
        return ""

    kept = " ".join(words[:max_words])
    boundary = None
    for match in _SENTENCE_END.finditer(kept):
        boundary = match.end()
    if boundary is not None and count_words(kept[:boundary]) >= max_words / 2:
        return kept[:boundary].strip()
    return kept.rstrip(",;:") + "..."
