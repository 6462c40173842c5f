"""
Curation pipeline for long-term memory candidates.

A candidate is accepted only after passing, in order: the forbidden
content check, category validity, long-term suitability and the impact
threshold. Accepted content is refined to at most REFINE_MAX_WORDS words
by the text service; the rule-based compressor enforces the ceiling
whatever the service returns.
"""

from typing import Any, Mapping, Optional

import structlog

from finmem.memory.classifier import is_valid_category
from finmem.memory.compression import compress_text
from finmem.memory.rules import contains_forbidden_content, is_suitable_for_tier
from finmem.memory.scoring import ImpactScorer, meets_threshold
from finmem.memory.types import MIN_FOR_LTM, REFINE_MAX_WORDS, LTMCategory, MemoryTier
from finmem.memory.word_counter import count_words
from finmem.models.schemas import CurationResult
from finmem.monitoring.metrics import record_rejection
from finmem.services.text_service import LocalTextService, TextService

logger = structlog.get_logger(__name__)


class MemoryCurator:
    """
    Decides whether a candidate becomes a long-term memory item.

    When the text service offers its own impact score the two scores are
    averaged; the local scorer alone decides otherwise.
    """

    def __init__(
        self,
        text_service: Optional[TextService] = None,
        scorer: Optional[ImpactScorer] = None,
        min_impact: float = MIN_FOR_LTM,
        max_words: int = REFINE_MAX_WORDS,
    ) -> None:
        self.text_service = text_service or LocalTextService()
        self.scorer = scorer or ImpactScorer()
        self.min_impact = min_impact
        self.max_words = max_words

    def _reject(self, reason: str, category: Any = None, score: float = 0.0) -> CurationResult:
        record_rejection(MemoryTier.LONG_TERM.value, reason)
        logger.info(
            "long_term_candidate_rejected",
            reason=reason,
            category=str(category) if category is not None else None,
            impact_score=score,
        )
        return CurationResult(accepted=False, reason=reason, impact_score=score)

    async def curate(
        self,
        content: str,
        category: LTMCategory | str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> CurationResult:
        if not isinstance(content, str) or not content.strip():
            return self._reject("empty_content", category)

        forbidden = contains_forbidden_content(content)
        if forbidden.found:
            return self._reject(f"forbidden_content:{forbidden.kind}", category)

        if not is_valid_category(category):
            return self._reject("invalid_category", category)
        category = LTMCategory(category)

        if not is_suitable_for_tier(content, MemoryTier.LONG_TERM):
            return self._reject("unsuitable_for_tier", category)

        score = self.scorer.score(content, context)
        external = await self.text_service.score_impact(content)
        if external is not None:
            score = round((score + external) / 2, 4)
        if not meets_threshold(score, self.min_impact):
            return self._reject("low_impact", category, score)

        refined = await self.text_service.refine(content, self.max_words)
        if not refined or contains_forbidden_content(refined).found:
            # A refinement must not introduce what the original did not have
            refined = content
        if count_words(refined) > self.max_words:
            refined = compress_text(refined, self.max_words)

        logger.debug(
            "long_term_candidate_accepted",
            category=category.value,
            impact_score=score,
            words=count_words(refined),
        )
        return CurationResult(
            accepted=True,
            reason="accepted",
            content=refined.strip(),
            category=category,
            impact_score=score,
        )
