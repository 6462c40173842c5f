"""
Merging of near-duplicate long-term memory items.

Sentences of the incoming content are appended to the existing item
unless an equivalent sentence is already present, so merging the same
content twice changes nothing the second time.
"""

import re
from typing import Optional

from finmem.memory.compression import compress_text
from finmem.memory.dates import ensure_date_prefix, strip_date_prefix
from finmem.memory.word_counter import count_words
from finmem.models.schemas import MemoryItem, utc_now

SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
MERGED_MAX_WORDS = 100


def _sentence_key(sentence: str) -> str:
    return re.sub(r"\s+", " ", strip_date_prefix(sentence).strip().rstrip(".!?")).lower()


def split_sentences(text: str) -> list[str]:
    body = strip_date_prefix(text.strip())
    return [s.strip().rstrip(".!?").strip() for s in SENTENCE_SPLIT.split(body) if s.strip().rstrip(".!?").strip()]


def fuse_contents(existing: str, incoming: str, max_words: int = MERGED_MAX_WORDS) -> str:
    """Union of the sentences of both texts, existing order first."""
    seen: set[str] = set()
    sentences = []
    for sentence in split_sentences(existing) + split_sentences(incoming):
        key = _sentence_key(sentence)
        if key in seen:
            continue
        seen.add(key)
        sentences.append(sentence)

    if not sentences:
        return existing
    fused = ". ".join(sentences) + "."
    if count_words(fused) > max_words:
        fused = compress_text(fused, max_words)
    return fused


def merge_items(existing: MemoryItem, incoming: MemoryItem) -> MemoryItem:
    """
    Fold incoming into existing.

    Keeps the higher impact, the union of source chats and the later
    event date; counts the merge as an access.
    """
    event_date = max(
        (d for d in (existing.event_date, incoming.event_date) if d is not None),
        default=None,
    )
    content = fuse_contents(existing.content, incoming.content)
    if event_date is not None:
        content = ensure_date_prefix(content, event_date)

    merged = existing.model_copy(deep=True)
    merged.content = content
    merged.word_count = count_words(content)
    merged.impact_score = max(existing.impact_score, incoming.impact_score)
    merged.source_chats = list(dict.fromkeys(existing.source_chats + incoming.source_chats))
    merged.event_date = event_date
    merged.access_count = existing.access_count + 1
    merged.last_accessed = utc_now()
    return merged


def eviction_order(items: list[MemoryItem], protect: Optional[str] = None) -> list[MemoryItem]:
    """Lowest impact first, oldest first among equals."""
    candidates = [item for item in items if item.id != protect]
    return sorted(candidates, key=lambda item: (item.impact_score, item.created_at))
