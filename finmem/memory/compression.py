"""
Rule-based compression for free text and structured episodic content.

compress_content works in stages and keeps a stage only when it lowers the
word count:

1. clean every string (fillers, verbose phrases, repeated sentences)
2. prune unpinned events and rebuild a bounded narrative
3. truncate text fields in proportion to their size
4. drop the event list, leaving the narrative as its summary

The result never exceeds the input and is never empty for non-empty input.
"""

import copy
import re
from typing import Any, Optional

from finmem.memory.narrative import events_to_narrative, prune_events
from finmem.memory.word_counter import count_words, truncate_words
from finmem.models.schemas import ConversationEvent

FILLER_WORDS = re.compile(
    r"\b(muito|realmente|basicamente|essencialmente|praticamente|simplesmente)\b\s*",
    re.IGNORECASE,
)
PHRASE_REPLACEMENTS = [
    (re.compile(r"\bno momento atual\b", re.IGNORECASE), "atualmente"),
    (re.compile(r"\bcom o objetivo de\b", re.IGNORECASE), "para"),
    (re.compile(r"\btendo em vista que\b", re.IGNORECASE), "pois"),
    (re.compile(r"\bé importante ressaltar que\s*", re.IGNORECASE), ""),
]
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
NARRATIVE_SHARE = 0.4


def _normalize_sentence(sentence: str) -> str:
    return re.sub(r"\s+", " ", sentence.strip().rstrip(".!?")).lower()


def dedupe_sentences(text: str) -> str:
    seen: set[str] = set()
    kept = []
    for sentence in SENTENCE_SPLIT.split(text):
        key = _normalize_sentence(sentence)
        if not key or key in seen:
            continue
        seen.add(key)
        kept.append(sentence.strip())
    return " ".join(kept)


def clean_text(text: str) -> str:
    """Lossless-in-meaning cleanup: whitespace, fillers, verbose phrases, repeats."""
    cleaned = re.sub(r"\s+", " ", text).strip()
    cleaned = FILLER_WORDS.sub("", cleaned)
    for pattern, replacement in PHRASE_REPLACEMENTS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = dedupe_sentences(cleaned)
    # Fall back to the original rather than lose everything
    return cleaned or text.strip()


def compress_text(text: str, target_words: int) -> str:
    """Clean text, then truncate it at a sentence boundary to target_words."""
    if not text:
        return ""
    cleaned = clean_text(text)
    if count_words(cleaned) <= target_words:
        return cleaned
    return truncate_words(cleaned, max(1, target_words))


# =============================================================================
# Structured Content
# =============================================================================


def _map_strings(value: Any, func) -> Any:
    if isinstance(value, str):
        return func(value)
    if isinstance(value, dict):
        return {key: _map_strings(item, func) for key, item in value.items()}
    if isinstance(value, list):
        return [_map_strings(item, func) for item in value]
    return value


def _text_leaves(content: dict[str, Any], path: tuple = ()) -> list[tuple[tuple, str]]:
    """Paths of every string outside the events list."""
    leaves = []
    items = content.items() if isinstance(content, dict) else enumerate(content)
    for key, value in items:
        if not path and key == "events":
            continue
        if isinstance(value, str):
            if value.strip():
                leaves.append((path + (key,), value))
        elif isinstance(value, (dict, list)):
            leaves.extend(_text_leaves(value, path + (key,)))
    return leaves


def _set_path(content: Any, path: tuple, value: Any) -> None:
    target = content
    for key in path[:-1]:
        target = target[key]
    target[path[-1]] = value


def _load_events(raw: Any) -> list[ConversationEvent]:
    if not isinstance(raw, list):
        return []
    events = []
    for item in raw:
        if isinstance(item, ConversationEvent):
            events.append(item)
        elif isinstance(item, dict):
            try:
                events.append(ConversationEvent.model_validate(item))
            except ValueError:
                continue
    return events


def _stage_clean(content: dict[str, Any], target_words: int) -> dict[str, Any]:
    return _map_strings(content, clean_text)


def _stage_fold_events(content: dict[str, Any], target_words: int) -> dict[str, Any]:
    events = _load_events(content.get("events"))
    if not events:
        return content
    folded = copy.deepcopy(content)
    folded["narrative"] = events_to_narrative(events, max_words=max(1, int(target_words * NARRATIVE_SHARE)))
    kept = prune_events(events)
    folded["events"] = [event.model_dump(mode="json") for event in kept]
    return folded


def _stage_truncate_text(content: dict[str, Any], target_words: int) -> dict[str, Any]:
    leaves = _text_leaves(content)
    if not leaves:
        return content

    text_words = sum(count_words(text) for _, text in leaves)
    fixed_words = count_words(content) - text_words
    allowance = target_words - fixed_words
    if allowance <= 0:
        # Structure alone exceeds the target; keep the largest field minimal
        allowance = 1

    truncated = copy.deepcopy(content)
    shares = [(path, text, int(count_words(text) * allowance / text_words)) for path, text in leaves]
    if all(share == 0 for _, _, share in shares):
        largest = max(range(len(shares)), key=lambda i: count_words(shares[i][1]))
        path, text, _ = shares[largest]
        shares[largest] = (path, text, 1)

    for path, text, share in shares:
        _set_path(truncated, path, truncate_words(text, share) if share > 0 else "")
    return truncated


def _stage_drop_events(content: dict[str, Any], target_words: int) -> dict[str, Any]:
    if not content.get("events"):
        return content
    dropped = copy.deepcopy(content)
    events = _load_events(dropped.pop("events"))
    if events and not dropped.get("narrative"):
        dropped["narrative"] = events_to_narrative(events, max_words=max(1, int(target_words * NARRATIVE_SHARE)))
    return _stage_truncate_text(dropped, target_words) if count_words(dropped) > target_words else dropped


STAGES = (_stage_clean, _stage_fold_events, _stage_truncate_text, _stage_drop_events)
# Stages that shorten without cutting text
SUMMARY_STAGES = STAGES[:2]


def compress_content(content: dict[str, Any], target_words: int, stages: tuple = STAGES) -> dict[str, Any]:
    """
    Compress a structured document towards target_words.

    Args:
        content: JSON-like document (episodic content dump).
        target_words: Desired maximum word count.
        stages: Stages to try, in order.

    Returns:
        A new document; the input is not mutated.
    """
    current = copy.deepcopy(content)
    words = count_words(current)
    if words <= target_words:
        return current

    for stage in stages:
        candidate = stage(current, target_words)
        candidate_words = count_words(candidate)
        if candidate_words < words and (candidate_words > 0 or words == 0):
            current, words = candidate, candidate_words
        if words <= target_words:
            break
    return current


def compression_ratio(before: int, after: int) -> Optional[float]:
    if before <= 0:
        return None
    return round(after / before, 3)
