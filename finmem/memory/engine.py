"""
Memory Engine.

The single entry point for reads and writes across the three tiers.

process_interaction() returns as soon as the work is scheduled; a
background task classifies the exchange and fans the writes out to the
working, episodic and long-term stores concurrently. Each tier's outcome
is logged on its own: a failing tier is neither retried nor rolled back,
and nothing reaches the caller.
"""

import asyncio
from typing import Any, Optional
from uuid import uuid4

import structlog

from finmem.memory.context import format_context_for_prompt
from finmem.memory.episodic import EpisodicMemoryStore
from finmem.memory.interaction import InteractionClassifier
from finmem.memory.long_term import LongTermMemoryStore
from finmem.memory.types import MIN_TO_KEEP, MemoryTier
from finmem.memory.working import WorkingMemoryStore
from finmem.models.schemas import (
    Interaction,
    InteractionClassification,
    MemoryContext,
    ProcessingAck,
    Session,
)
from finmem.monitoring.metrics import BACKGROUND_TASKS
from finmem.scheduler.scheduler import MemoryScheduler

logger = structlog.get_logger(__name__)

ACTIVE_CATEGORIES_KEY = "categorias_ativas"
CONTEXT_LONG_TERM_LIMIT = 10


class MemoryEngine:
    """
    Facade over the memory stores.

    Usage:
        engine = MemoryEngine(working, episodic, long_term, InteractionClassifier())
        await engine.initialize_session("s1", "u1")
        ack = await engine.process_interaction(interaction)
        context = await engine.build_context("s1", "chat-1", "u1")
        prompt_block = engine.format_context_for_prompt(context)
    """

    def __init__(
        self,
        working: WorkingMemoryStore,
        episodic: EpisodicMemoryStore,
        long_term: LongTermMemoryStore,
        classifier: Optional[InteractionClassifier] = None,
        scheduler: Optional[MemoryScheduler] = None,
    ) -> None:
        self.working = working
        self.episodic = episodic
        self.long_term = long_term
        self.classifier = classifier or InteractionClassifier(text_service=long_term.text_service)
        self.scheduler = scheduler
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.start()

    async def stop(self) -> None:
        """Stop the scheduler and let in-flight processing finish."""
        if self.scheduler is not None:
            await self.scheduler.stop()
        await self.drain()

    async def drain(self) -> None:
        """Wait for every scheduled processing task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def initialize_session(
        self,
        session_id: str,
        user_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Session:
        return await self.working.create_session(session_id, user_id, metadata)

    async def end_session(self, session_id: str) -> bool:
        return await self.working.end_session(session_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def build_context(self, session_id: str, chat_id: str, user_id: str) -> MemoryContext:
        """
        Aggregate every tier for prompt construction.

        A tier that cannot be read is left out of the context.
        """
        context = MemoryContext(session=self.working.get_session(session_id))

        working = await self.working.get_all(session_id)
        working.pop(ACTIVE_CATEGORIES_KEY, None)
        context.working_memory = working

        try:
            record = await self.episodic.get(chat_id)
            if record is not None:
                context.episodic_memory = record.content
        except Exception as e:
            logger.warning("context_episodic_unavailable", chat_id=chat_id, error=str(e))

        try:
            profile = await self.long_term.get_profile(user_id)
            if profile is not None:
                context.category_descriptions = {
                    category: description
                    for category, description in profile.category_descriptions.items()
                    if description.description
                }
            context.long_term_memory = await self.long_term.retrieve(
                user_id, min_impact=MIN_TO_KEEP, limit=CONTEXT_LONG_TERM_LIMIT
            )
        except Exception as e:
            logger.warning("context_long_term_unavailable", user_id=user_id, error=str(e))

        return context

    def format_context_for_prompt(self, context: MemoryContext) -> str:
        return format_context_for_prompt(context)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def process_interaction(self, interaction: Interaction) -> ProcessingAck:
        """Schedule background processing of one exchange and return immediately."""
        task_id = uuid4().hex
        task = asyncio.create_task(self._run(task_id, interaction), name=f"finmem-{task_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(
            "memory_processing_scheduled",
            task_id=task_id,
            session_id=interaction.session_id,
            chat_id=interaction.chat_id,
        )
        return ProcessingAck(
            scheduled=True,
            task_id=task_id,
            session_id=interaction.session_id,
            chat_id=interaction.chat_id,
        )

    async def _run(self, task_id: str, interaction: Interaction) -> Optional[dict[str, Any]]:
        try:
            outcome = await self._process(interaction)
        except Exception as e:
            BACKGROUND_TASKS.labels(status="error").inc()
            logger.error(
                "memory_processing_failed",
                task_id=task_id,
                session_id=interaction.session_id,
                chat_id=interaction.chat_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        BACKGROUND_TASKS.labels(status="success").inc()
        return outcome

    async def _process(self, interaction: Interaction) -> dict[str, Any]:
        active = await self.working.get(interaction.session_id, ACTIVE_CATEGORIES_KEY, [])
        classification = await self.classifier.classify(interaction, active or [])

        tiers = (MemoryTier.WORKING, MemoryTier.EPISODIC, MemoryTier.LONG_TERM)
        results = await asyncio.gather(
            self._write_working(interaction, classification),
            self._write_episodic(interaction, classification),
            self._write_long_term(interaction, classification),
            return_exceptions=True,
        )

        outcome: dict[str, Any] = {}
        for tier, result in zip(tiers, results):
            if isinstance(result, BaseException):
                outcome[tier.value] = None
                logger.warning(
                    "memory_tier_write_failed",
                    tier=tier.value,
                    session_id=interaction.session_id,
                    chat_id=interaction.chat_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
            else:
                outcome[tier.value] = result

        logger.info(
            "memory_processing_completed",
            session_id=interaction.session_id,
            chat_id=interaction.chat_id,
            user_id=interaction.user_id,
            **outcome,
        )
        return outcome

    async def _write_working(
        self, interaction: Interaction, classification: InteractionClassification
    ) -> int:
        if not self.working.has_session(interaction.session_id):
            await self.working.create_session(interaction.session_id, interaction.user_id)

        stored = 0
        for candidate in classification.working:
            if await self.working.set(interaction.session_id, candidate.key, candidate.value):
                stored += 1
        if classification.active_categories:
            await self.working.set(
                interaction.session_id, ACTIVE_CATEGORIES_KEY, classification.active_categories
            )
        return stored

    async def _write_episodic(
        self, interaction: Interaction, classification: InteractionClassification
    ) -> int:
        record = await self.episodic.record_interaction(
            interaction.chat_id,
            interaction.user_id,
            classification.episodic,
            classification.event,
        )
        return record.word_count

    async def _write_long_term(
        self, interaction: Interaction, classification: InteractionClassification
    ) -> int:
        stored = 0
        for candidate in classification.long_term:
            item = await self.long_term.propose(
                interaction.user_id,
                candidate.content,
                candidate.category,
                source_chats=[interaction.chat_id],
            )
            if item is not None:
                stored += 1
        return stored
