"""
Narrative engine.

Reduces each interaction to a ConversationEvent and folds a sequence of
events into one bounded narrative. Lines and events are ranked by fixed
priority tables with an age penalty of two points per elapsed day.

Usage:
    event = extract_event("quero investir R$ 5.000 em CDB", "Ótimo, vou montar...", "investimentos")
    narrative = events_to_narrative([event], max_words=150)

    manager = NarrativeHistoryManager(max_words=750)
    manager.add_interaction(user_message, ai_response, category="objetivos_metas")
"""

import math
import re
from datetime import datetime
from typing import Optional, Sequence

import structlog

from finmem.memory.types import NARRATIVE_MAX_WORDS, PINNED_EVENT_CATEGORIES
from finmem.memory.values import extract_labelled_values
from finmem.memory.word_counter import count_words
from finmem.models.schemas import ConfidenceLevel, ConversationEvent, utc_now

logger = structlog.get_logger(__name__)

EMPTY_NARRATIVE = "Nenhuma interação registrada."
PENDING_DECISION = "decisão pendente - aguardando confirmação"
MAX_ACTION_CHARS = 60
COMPRESS_AT = 0.9
KEEP_FRACTION = 0.8
AGE_PENALTY_PER_DAY = 2
PERCENT_KEY = "percentual"

# Checked in order; the first match wins
INTENT_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("investir", re.compile(r"\b(quero|vou|pretendo|planejo)\b.*\binvest", re.IGNORECASE)),
    ("economizar", re.compile(r"\b(economizar|poupar|guardar|reservar)\b", re.IGNORECASE)),
    ("pagar_divida", re.compile(r"\b(pagar|quitar|liquidar)\b.*\bd[íi]vida", re.IGNORECASE)),
    ("analisar", re.compile(r"\b(analisar|verificar|checar|conferir)\b", re.IGNORECASE)),
    ("consultar", re.compile(r"\b(quanto|qual|como)\b.*(\?|\btenho\b|\best[áa]\b)", re.IGNORECASE)),
    ("planejar", re.compile(r"\b(plano|planejamento|estrat[ée]gia|organizar)\b", re.IGNORECASE)),
    ("aprender", re.compile(r"\b(entender|aprender|explicar|ensinar)\b", re.IGNORECASE)),
    ("comparar", re.compile(r"\b(comparar|diferen[çc]a|melhor|pior)\b", re.IGNORECASE)),
    ("decidir", re.compile(r"\b(decidir|escolher|optar|definir)\b", re.IGNORECASE)),
    ("informar", re.compile(r"\b(informo|comunicar|avisar|dizer)\b.*\bque\b", re.IGNORECASE)),
]
FIRST_PERSON_STATEMENT = re.compile(r"\b(sou|tenho|ganho|meu|minha)\b", re.IGNORECASE)

GREETING = re.compile(r"^(olá|oi|bom dia|boa tarde|boa noite)[,!.]?\s*", re.IGNORECASE)
COURTESY = re.compile(r"\b(por favor|obrigad[oa]|valeu|legal|beleza)\b", re.IGNORECASE)
# Up to the next clause break; separators inside numbers like 50.000 do not count
ACTION_SPAN = r"(?:[^,.!?]|(?<=\d)[.,](?=\d))+"
ACTION_PATTERNS = [
    (re.compile(rf"\b(quero|vou|pretendo)\s+({ACTION_SPAN})", re.IGNORECASE), 2),
    (re.compile(rf"\b(investo|gasto|ganho|tenho)\s+({ACTION_SPAN})", re.IGNORECASE), 0),
    (re.compile(r"\b(como|quanto|qual)\s+([^?]+)", re.IGNORECASE), 0),
]

DECISION_PATTERNS = [
    re.compile(r"\b(vou|irei|decidi)\b.*?\b(investir|poupar|pagar|comprar)\b", re.IGNORECASE),
    re.compile(r"\b(escolhi|optei|prefiro)\b[^.!?]*", re.IGNORECASE),
    re.compile(r"\b(sim|confirmo|aceito|concordo)\b.*?\b(investir|pagar|fazer)\b", re.IGNORECASE),
]
ASSISTANT_PROMISE = re.compile(r"\bvou (sugerir|recomendar|criar|montar)\b", re.IGNORECASE)

CONFIRMATION = re.compile(r"\b(sim|confirmo|certeza|exato)\b", re.IGNORECASE)
HEDGE = re.compile(r"\b(talvez|acho|parece|pode ser)\b", re.IGNORECASE)
FIRST_PERSON = re.compile(r"\b(meu|minha|tenho|sou)\b", re.IGNORECASE)


# =============================================================================
# Event Extraction
# =============================================================================


def extract_intent(user_message: str) -> str:
    for intent, pattern in INTENT_PATTERNS:
        if pattern.search(user_message):
            return intent
    if "?" in user_message:
        return "consultar"
    if FIRST_PERSON_STATEMENT.search(user_message):
        return "informar"
    return "conversar"


def extract_user_action(user_message: str) -> str:
    """Verb-plus-object span of the message, without greetings or courtesy words."""
    cleaned = GREETING.sub("", user_message.strip())
    cleaned = re.sub(r"\s{2,}", " ", COURTESY.sub("", cleaned)).strip(" ,")

    for pattern, group in ACTION_PATTERNS:
        match = pattern.search(cleaned)
        if match:
            return match.group(group).strip()
    return cleaned[:MAX_ACTION_CHARS].strip()


def extract_decision(user_message: str, ai_response: str = "") -> Optional[str]:
    combined = f"{user_message} {ai_response}".lower()
    for pattern in DECISION_PATTERNS:
        match = pattern.search(combined)
        if match:
            return match.group(0).strip()
    if ai_response and ASSISTANT_PROMISE.search(ai_response):
        return PENDING_DECISION
    return None


def calculate_confidence(user_message: str) -> ConfidenceLevel:
    points = 0
    if re.search(r"\d", user_message):
        points += 2
    if FIRST_PERSON.search(user_message):
        points += 2
    if "R$" in user_message:
        points += 2
    if CONFIRMATION.search(user_message):
        points += 3
    if HEDGE.search(user_message):
        points -= 2
    if len(user_message) < 20:
        points -= 1
    if "?" in user_message:
        points -= 1

    if points >= 4:
        return ConfidenceLevel.HIGH
    if points >= 2:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def extract_event(
    user_message: str,
    ai_response: str = "",
    category: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ConversationEvent:
    user_message = user_message or ""
    ai_response = ai_response or ""
    return ConversationEvent(
        intent=extract_intent(user_message),
        user_action=extract_user_action(user_message),
        mentioned_values=extract_labelled_values(user_message, ai_response),
        decision=extract_decision(user_message, ai_response),
        confidence_level=calculate_confidence(user_message),
        timestamp=timestamp or utc_now(),
        category=category or "geral",
    )


# =============================================================================
# Narrative Rendering
# =============================================================================


def _age_in_days(event: ConversationEvent, now: datetime) -> float:
    return max(0.0, (now - event.timestamp).total_seconds() / 86400)


def format_value(key: str, value: float) -> str:
    if key.startswith(PERCENT_KEY):
        return f"{key}: {value:.2f}%"
    return f"{key}: R$ {value:.2f}"


def format_values(values: dict[str, float]) -> str:
    return ", ".join(format_value(key, value) for key, value in values.items())


def render_event(event: ConversationEvent) -> str:
    line = f"- {event.intent[:1].upper()}{event.intent[1:]}"
    if event.user_action:
        line += f": {event.user_action}"
    if event.mentioned_values:
        line += f" ({format_values(event.mentioned_values)})"
    if event.decision:
        line += f". Decisão: {event.decision}"
    return line


def line_priority(line: str, event: ConversationEvent, now: datetime) -> float:
    priority = 0.0
    if event.decision:
        priority += 10
    if event.intent in ("investir", "pagar_divida") or re.search(r"investir|pagar|comprar", line, re.IGNORECASE):
        priority += 8
    if event.mentioned_values or re.search(r"R\$\s*\d", line):
        priority += 7
    if event.category in PINNED_EVENT_CATEGORIES or re.search(r"perfil|objetivo|meta", line, re.IGNORECASE):
        priority += 6
    if event.intent in ("informar", "consultar"):
        priority += 4
    if event.intent in ("conversar", "aprender"):
        priority += 2
    return priority - AGE_PENALTY_PER_DAY * _age_in_days(event, now)


def events_to_narrative(
    events: Sequence[ConversationEvent],
    max_words: int = NARRATIVE_MAX_WORDS,
    now: Optional[datetime] = None,
) -> str:
    """
    Render one line per event, bounded to max_words.

    Repeated (intent, category) pairs are rendered once. Over budget, lines
    are kept greedily by priority and written back in chronological order.
    """
    if not events:
        return EMPTY_NARRATIVE

    now = now or utc_now()
    seen: set[tuple[str, str]] = set()
    lines: list[tuple[str, ConversationEvent]] = []
    for event in events:
        key = (event.intent, event.category)
        if key in seen:
            continue
        seen.add(key)
        lines.append((render_event(event), event))

    narrative = "\n".join(line for line, _ in lines)
    if count_words(narrative) <= max_words:
        return narrative

    ranked = sorted(
        range(len(lines)),
        key=lambda i: line_priority(lines[i][0], lines[i][1], now),
        reverse=True,
    )
    kept: set[int] = set()
    total = 0
    for index in ranked:
        words = count_words(lines[index][0])
        if total + words <= max_words:
            kept.add(index)
            total += words
    return "\n".join(lines[i][0] for i in sorted(kept))


# =============================================================================
# Event Retention
# =============================================================================


def event_priority(event: ConversationEvent, now: Optional[datetime] = None) -> float:
    """Retention priority of a stored event; decisions and profile facts dominate."""
    now = now or utc_now()
    priority = 0.0
    if event.decision:
        priority += 1000
    if event.category in ("perfil_risco", "restricoes_limitacoes"):
        priority += 900
    if event.category == "objetivos_metas":
        priority += 850

    priority += {
        "investir": 80,
        "pagar_divida": 75,
        "planejar": 70,
        "informar": 40,
        "analisar": 35,
        "aprender": 15,
        "conversar": 10,
    }.get(event.intent, 0)
    if event.mentioned_values:
        priority += 60
    priority += {
        ConfidenceLevel.HIGH: 50,
        ConfidenceLevel.MEDIUM: 30,
        ConfidenceLevel.LOW: 5,
    }[event.confidence_level]

    return priority - AGE_PENALTY_PER_DAY * _age_in_days(event, now)


def is_pinned(event: ConversationEvent) -> bool:
    return event.category in PINNED_EVENT_CATEGORIES


def prune_events(
    events: Sequence[ConversationEvent],
    keep_fraction: float = KEEP_FRACTION,
    now: Optional[datetime] = None,
) -> list[ConversationEvent]:
    """
    Keep the highest-priority share of events plus every pinned event.

    Chronological order is preserved.
    """
    if not events:
        return []
    now = now or utc_now()
    keep_count = math.ceil(len(events) * keep_fraction)
    ranked = sorted(range(len(events)), key=lambda i: event_priority(events[i], now), reverse=True)
    kept = set(ranked[:keep_count])
    kept.update(i for i, event in enumerate(events) if is_pinned(event))
    return [events[i] for i in sorted(kept)]


class NarrativeHistoryManager:
    """
    Stateful narrative that prunes its own events as it fills up.

    At 90% of the word budget the lowest-priority 20% of events are dropped;
    events about goals, risk profile or restrictions are never dropped.
    """

    def __init__(
        self,
        max_words: int = NARRATIVE_MAX_WORDS,
        events: Optional[Sequence[ConversationEvent]] = None,
    ) -> None:
        self.max_words = max_words
        self.events: list[ConversationEvent] = list(events or [])
        self.narrative = events_to_narrative(self.events, max_words) if self.events else ""
        self.compressed_count = 0

    def add_event(self, event: ConversationEvent) -> ConversationEvent:
        self.events.append(event)
        self.narrative = events_to_narrative(self.events, self.max_words)
        if count_words(self.narrative) >= self.max_words * COMPRESS_AT:
            self._compress_history()
        return event

    def add_interaction(
        self,
        user_message: str,
        ai_response: str = "",
        category: Optional[str] = None,
    ) -> ConversationEvent:
        return self.add_event(extract_event(user_message, ai_response, category))

    def _compress_history(self) -> None:
        before = len(self.events)
        self.events = prune_events(self.events)
        self.narrative = events_to_narrative(self.events, self.max_words)
        self.compressed_count += 1
        logger.info(
            "narrative_history_compressed",
            events_before=before,
            events_after=len(self.events),
            words=count_words(self.narrative),
            max_words=self.max_words,
        )

    def get_narrative(self) -> str:
        return self.narrative

    def get_stats(self) -> dict[str, float | int]:
        words = count_words(self.narrative)
        return {
            "total_events": len(self.events),
            "current_words": words,
            "max_words": self.max_words,
            "usage_percent": round(words / self.max_words * 100, 1) if self.max_words else 0.0,
            "compressed_times": self.compressed_count,
        }
