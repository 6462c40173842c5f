"""
Rule-based classification of one interaction into per-tier write candidates.

- working: numeric values keyed by meaning, only when the exchange carries
  calculation or present-tense markers
- episodic: a conversation summary plus any preferences and decisions,
  and the structured event of the exchange
- long-term: detected categories scoring at least 30, with the sentence
  that evidences each one prefixed by the user's name
"""

import re
from typing import Optional, Sequence

import structlog

from finmem.memory.classifier import CategoryClassifier
from finmem.memory.narrative import extract_event
from finmem.memory.values import extract_keyed_values
from finmem.models.schemas import (
    Interaction,
    InteractionClassification,
    LongTermCandidate,
    WorkingCandidate,
)
from finmem.services.text_service import TextService

logger = structlog.get_logger(__name__)

WORKING_MARKERS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"calcul(ar|o|ando|e)",
        r"consider(ar|ando|e)",
        r"\bagora\b",
        r"\batual\b",
        r"\btempor[áa]ri[oa]|temporariamente\b",
        r"\bneste momento\b",
        r"vamos (ver|analisar|calcular)",
        r"quanto.*render|render.*quanto",
        r"result(ado|ar)",
        r"\bsom[ae]\b|adicione",
        r"\btotal\b|montante",
    )
]
PREFERENCE_PATTERNS = [
    re.compile(r"\bprefiro\s+([^!?]+)", re.IGNORECASE),
    re.compile(r"\bgosto\s+de\s+([^!?]+)", re.IGNORECASE),
    re.compile(r"\bquero\s+([^!?]+)", re.IGNORECASE),
]
DECISION_PATTERNS = [
    re.compile(r"\bvou\s+([^!?]+)", re.IGNORECASE),
    re.compile(r"\bdecidi\s+([^!?]+)", re.IGNORECASE),
    re.compile(r"\bescolhi\s+([^!?]+)", re.IGNORECASE),
]
MAX_WORKING_VALUES = 5
SNIPPET_CHARS = 150
RANKING_SCORE_CEILING = 50
# Turns of prior conversation given to the ranking step
RANKING_HISTORY_TURNS = 3
DEFAULT_USER_NAME = "O usuário"


def summarize_exchange(user_message: str, ai_response: str) -> str:
    summary = f'Usuário perguntou sobre: "{user_message[:SNIPPET_CHARS].strip()}".'
    if ai_response:
        summary += f' Assistente respondeu: "{ai_response[:SNIPPET_CHARS].strip()}".'
    return summary


def _collect(patterns: list[re.Pattern[str]], text: str) -> Optional[str]:
    found = []
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            found.append(match.group(1).strip().rstrip("."))
    return "; ".join(dict.fromkeys(found)) or None


def extract_preferences(text: str) -> Optional[str]:
    return _collect(PREFERENCE_PATTERNS, text)


def extract_decisions(text: str) -> Optional[str]:
    return _collect(DECISION_PATTERNS, text)


def has_working_context(text: str) -> bool:
    return any(pattern.search(text) for pattern in WORKING_MARKERS)


class InteractionClassifier:
    """
    Usage:
        classifier = InteractionClassifier()
        result = await classifier.classify(interaction, active_categories=["investimentos"])
    """

    def __init__(
        self,
        categories: Optional[CategoryClassifier] = None,
        text_service: Optional[TextService] = None,
    ) -> None:
        self.categories = categories or CategoryClassifier()
        self.text_service = text_service

    def working_candidates(self, user_message: str, ai_response: str) -> list[WorkingCandidate]:
        # The user's name stays out of this text so it is never read as a value
        if not has_working_context(f"{user_message} {ai_response}"):
            return []
        values = extract_keyed_values(f"{user_message} {ai_response}")
        return [
            WorkingCandidate(key=key, value=value, reason="calculation_context")
            for key, value in list(values.items())[:MAX_WORKING_VALUES]
        ]

    async def long_term_candidates(
        self,
        user_message: str,
        user_name: Optional[str],
        active_categories: Sequence[str],
        history: Sequence[dict[str, str]] = (),
    ) -> list[LongTermCandidate]:
        matches = self.categories.detect_categories(
            user_message, {"active_categories": list(active_categories)}
        )
        if not matches:
            return []

        if self.text_service is not None and matches[0].score < RANKING_SCORE_CEILING:
            try:
                order = await self.text_service.rank_categories(
                    user_message, [m.category.value for m in matches], history
                )
                rank = {category: index for index, category in enumerate(order)}
                matches.sort(key=lambda m: rank.get(m.category.value, len(rank)))
            except Exception as e:
                logger.warning("category_ranking_failed", error=str(e))

        name = (user_name or DEFAULT_USER_NAME).strip()
        return [
            LongTermCandidate(
                content=f"{name} {self.categories.extract_relevant_info(user_message, m.category)}",
                category=m.category,
                score=m.score,
                reason=m.reason,
            )
            for m in matches
        ]

    async def classify(
        self,
        interaction: Interaction,
        active_categories: Sequence[str] = (),
    ) -> InteractionClassification:
        user_message = interaction.user_message or ""
        ai_response = interaction.ai_response or ""

        long_term = await self.long_term_candidates(
            user_message,
            interaction.user_name,
            active_categories,
            interaction.history[-RANKING_HISTORY_TURNS:],
        )
        category = long_term[0].category.value if long_term else None

        episodic = {"contexto_conversa": summarize_exchange(user_message, ai_response)}
        preferences = extract_preferences(user_message)
        if preferences:
            episodic["preferencias_mencionadas"] = preferences
        decisions = extract_decisions(user_message)
        if decisions:
            episodic["decisoes_tomadas"] = decisions

        result = InteractionClassification(
            working=self.working_candidates(user_message, ai_response),
            episodic=episodic,
            event=extract_event(user_message, ai_response, category),
            long_term=long_term,
            active_categories=[c.category.value for c in long_term],
        )
        logger.debug(
            "interaction_classified",
            session_id=interaction.session_id,
            chat_id=interaction.chat_id,
            working=len(result.working),
            long_term=len(result.long_term),
            category=category,
        )
        return result
