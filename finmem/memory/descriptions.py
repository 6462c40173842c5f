"""
Category description regeneration.

A description is a short, timeless summary of what the profile knows in
one category. Whatever the text service answers is sanitized: quotes,
dates, monetary amounts and tickers are removed and the result is cut to
the word ceiling. An empty or failed answer yields the category's
fallback template.
"""

import re
from datetime import timedelta
from typing import Optional

import structlog

from finmem.memory.dates import strip_date_prefix
from finmem.memory.types import (
    DESCRIPTION_MAX_AGE_DAYS,
    DESCRIPTION_MAX_WORDS,
    DESCRIPTION_REFRESH_EVERY,
    LTMCategory,
    fallback_description,
)
from finmem.memory.word_counter import truncate_words
from finmem.models.schemas import CategoryDescription, MemoryItem, utc_now
from finmem.services.text_service import TextService

logger = structlog.get_logger(__name__)

QUOTES = re.compile(r"[\"'“”‘’«»]")
DATES = re.compile(
    r"\b\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?\b|\b\d{1,2}\s+de\s+(?:janeiro|fevereiro|março|marco|abril|maio|junho|julho|agosto|setembro|outubro|novembro|dezembro)(?:\s+de\s+\d{4})?\b|\b(?:19|20)\d{2}\b",
    re.IGNORECASE,
)
AMOUNTS = re.compile(
    r"(?:r\$|us\$|\$|€)\s*\d[\d.,]*(?:\s*(?:mil|milhões|milhão|k))?|\b\d[\d.,]*\s*(?:reais|mil reais|%)",
    re.IGNORECASE,
)
TICKERS = re.compile(r"\b[A-Z]{4}\d{1,2}\b")
SPACING = re.compile(r"\s+([,.;:])")


def sanitize_description(text: str, max_words: int = DESCRIPTION_MAX_WORDS) -> str:
    cleaned = QUOTES.sub("", text or "")
    cleaned = DATES.sub("", cleaned)
    cleaned = AMOUNTS.sub("", cleaned)
    cleaned = TICKERS.sub("", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = SPACING.sub(r"\1", cleaned).strip(" ,;:-")
    return truncate_words(cleaned, max_words)


def needs_refresh(description: CategoryDescription) -> bool:
    """Refresh when empty, on every Nth accepted item, or when stale."""
    if not description.description:
        return True
    if description.accepted_count and description.accepted_count % DESCRIPTION_REFRESH_EVERY == 0:
        return True
    if description.last_updated is None:
        return True
    return utc_now() - description.last_updated >= timedelta(days=DESCRIPTION_MAX_AGE_DAYS)


async def generate_description(
    text_service: TextService,
    category: LTMCategory,
    items: list[MemoryItem],
    max_words: int = DESCRIPTION_MAX_WORDS,
) -> str:
    fallback = fallback_description(category.value)
    if not items:
        return fallback

    contents = [strip_date_prefix(item.content) for item in items]
    try:
        summary = await text_service.summarize_category(category.value, contents, max_words)
    except Exception as e:
        logger.warning("category_description_fallback", category=category.value, error=str(e))
        return fallback

    return sanitize_description(summary, max_words) or fallback


async def refresh_description(
    text_service: TextService,
    description: CategoryDescription,
    category: LTMCategory,
    items: list[MemoryItem],
    force: bool = False,
) -> Optional[str]:
    """Regenerate in place when due; returns the new text or None."""
    if not force and not needs_refresh(description):
        return None

    description.description = await generate_description(text_service, category, items)
    description.last_updated = utc_now()
    description.update_count += 1
    logger.debug(
        "category_description_refreshed",
        category=category.value,
        update_count=description.update_count,
    )
    return description.description
