"""
Episodic Memory Store.

One structured record per conversation, merged on every processed
interaction and kept under a word budget: crossing 80% of the budget
triggers compression towards 60%, and a record still over budget after
compression is refused without touching the stored version.

Records expire (soft delete) after 30 days without updates and are purged
after 90.
"""

from datetime import timedelta
from typing import Any, Optional

import structlog

from finmem.core.exceptions import (
    BudgetExceededError,
    MemoryAlreadyExistsError,
    MemoryNotFoundError,
    MemoryRejectedError,
)
from finmem.core.locks import KeyedLocks
from finmem.memory.compression import SUMMARY_STAGES, compress_content
from finmem.memory.document_store import DocumentStore
from finmem.memory.narrative import events_to_narrative
from finmem.memory.rules import contains_forbidden_content, sanitize_value
from finmem.memory.types import (
    COMPRESSION_TARGET,
    COMPRESSION_TRIGGER,
    EPISODIC_BUDGET,
    EPISODIC_INACTIVITY_DAYS,
    EPISODIC_MAX_AGE_DAYS,
    MemoryTier,
)
from finmem.memory.word_counter import count_words, is_near_limit
from finmem.models.schemas import ConversationEvent, EpisodicContent, EpisodicMemory, utc_now
from finmem.monitoring.metrics import record_compression, record_rejection, track_memory_operation
from finmem.services.text_service import TextService

logger = structlog.get_logger(__name__)

COLLECTION = "episodic"
NEW_CONVERSATION = "Nova conversa iniciada"
# Free-text fields the text service may shorten, largest payoff first
SERVICE_COMPRESSED_FIELDS = ("narrative", "contexto_conversa")


class EpisodicMemoryStore:
    """
    Per-conversation memory backed by a document store.

    Usage:
        store = EpisodicMemoryStore(InMemoryDocumentStore())
        await store.create("chat-1", "user-1", {"contexto_conversa": "..."})
        await store.update("chat-1", {"decisoes_tomadas": "vou investir em CDB"})
    """

    def __init__(
        self,
        documents: DocumentStore,
        budget: int = EPISODIC_BUDGET,
        compression_trigger: float = COMPRESSION_TRIGGER,
        compression_target: float = COMPRESSION_TARGET,
        inactivity_days: int = EPISODIC_INACTIVITY_DAYS,
        max_age_days: int = EPISODIC_MAX_AGE_DAYS,
        text_service: Optional[TextService] = None,
    ) -> None:
        self.documents = documents
        self.text_service = text_service
        self.budget = budget
        self.compression_trigger = compression_trigger
        self.target_words = int(budget * compression_target)
        self.inactivity_days = inactivity_days
        self.max_age_days = max_age_days
        # The narrative shares the record budget with the other fields
        self.narrative_max_words = int(budget * 0.3)
        self._locks = KeyedLocks("episodic")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def _load(self, chat_id: str) -> Optional[EpisodicMemory]:
        document = await self.documents.get(COLLECTION, chat_id)
        return EpisodicMemory.model_validate(document) if document else None

    async def _save(self, record: EpisodicMemory) -> EpisodicMemory:
        now = utc_now()
        record.updated_at = now
        record.expires_at = now + timedelta(days=self.inactivity_days)
        await self.documents.put(
            COLLECTION,
            record.chat_id,
            record.model_dump(mode="json"),
            expires_at=now + timedelta(days=self.max_age_days),
        )
        return record

    # -------------------------------------------------------------------------
    # Content handling
    # -------------------------------------------------------------------------

    def _prepare(self, chat_id: str, content: Any) -> dict[str, Any]:
        """Normalize to a document and redact sensitive values."""
        if content is None:
            return {}
        if isinstance(content, EpisodicContent):
            document = content.to_document()
        elif isinstance(content, dict):
            document = EpisodicContent.model_validate(content).to_document()
        else:
            document = {"contexto_conversa": str(content)}

        if not contains_forbidden_content(document).found:
            return document

        sanitized = sanitize_value(document)
        if document and count_words(sanitized) == 0:
            record_rejection(MemoryTier.EPISODIC.value, "forbidden_content")
            raise MemoryRejectedError("no useful content left after redaction", "forbidden_content")
        logger.info("episodic_content_sanitized", chat_id=chat_id)
        return sanitized

    async def _compress(self, chat_id: str, document: dict[str, Any], target: int) -> dict[str, Any]:
        """
        Staged compression towards target.

        Cleanup and event folding run first. If that misses the target the
        text service summarizes the free-text fields, and rule-based
        truncation finishes whatever is still over.
        """
        if self.text_service is None:
            return compress_content(document, target)
        compressed = compress_content(document, target, stages=SUMMARY_STAGES)
        if count_words(compressed) <= target:
            return compressed

        for field in SERVICE_COMPRESSED_FIELDS:
            text = compressed.get(field)
            excess = count_words(compressed) - target
            if excess <= 0:
                break
            if not isinstance(text, str) or not text.strip():
                continue
            field_words = count_words(text)
            try:
                shorter = await self.text_service.compress(text, max(1, field_words - excess))
            except Exception as e:
                logger.warning(
                    "episodic_text_compression_failed", chat_id=chat_id, field=field, error=str(e)
                )
                continue
            if shorter and 0 < count_words(shorter) < field_words:
                compressed[field] = shorter
        return compress_content(compressed, target)

    async def _fit_budget(
        self,
        record: EpisodicMemory,
        document: dict[str, Any],
        auto_compress: bool,
    ) -> EpisodicMemory:
        """Compress if needed and validate; raises before any state changes."""
        words = count_words(document)
        compressed = False
        if auto_compress and is_near_limit(words, self.budget, self.compression_trigger):
            document = await self._compress(record.chat_id, document, self.target_words)
            compressed_words = count_words(document)
            record_compression(MemoryTier.EPISODIC.value, words, compressed_words)
            logger.info(
                "episodic_memory_compressed",
                chat_id=record.chat_id,
                words_before=words,
                words_after=compressed_words,
                target=self.target_words,
            )
            words = compressed_words
            compressed = True

        if words > self.budget:
            raise BudgetExceededError(MemoryTier.EPISODIC.value, words, self.budget)

        updated = record.model_copy(deep=True)
        updated.content = EpisodicContent.model_validate(document)
        updated.word_count = count_words(updated.content.to_document())
        if compressed:
            updated.compression_count += 1
            updated.last_compressed_at = utc_now()
        return updated

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create(
        self,
        chat_id: str,
        user_id: str,
        initial_content: Any = None,
    ) -> EpisodicMemory:
        """
        Create the record of a conversation.

        Raises:
            MemoryAlreadyExistsError: If the chat already has a record.
            BudgetExceededError: If the initial content is over budget.
        """
        with track_memory_operation(MemoryTier.EPISODIC.value, "create"):
            async with self._locks.hold(chat_id):
                if await self._load(chat_id) is not None:
                    raise MemoryAlreadyExistsError("episodic memory", chat_id)

                document = self._prepare(chat_id, initial_content)
                record = EpisodicMemory(chat_id=chat_id, user_id=user_id)
                record = await self._fit_budget(record, document, auto_compress=False)
                await self._save(record)

        logger.info("episodic_memory_created", chat_id=chat_id, user_id=user_id, words=record.word_count)
        return record

    async def get(self, chat_id: str, include_expired: bool = False) -> Optional[EpisodicMemory]:
        record = await self._load(chat_id)
        if record is None or (record.is_expired and not include_expired):
            return None
        return record

    async def update(
        self,
        chat_id: str,
        content: Any,
        merge: bool = True,
        auto_compress: bool = True,
    ) -> EpisodicMemory:
        """
        Merge new fields into a conversation record.

        Same-key fields are overwritten by the new content.

        Raises:
            MemoryNotFoundError: If the chat has no record.
            BudgetExceededError: If the result is over budget after compression.
        """
        with track_memory_operation(MemoryTier.EPISODIC.value, "update"):
            async with self._locks.hold(chat_id):
                record = await self._load(chat_id)
                if record is None:
                    raise MemoryNotFoundError("episodic memory", chat_id)

                incoming = self._prepare(chat_id, content)
                document = {**record.content.to_document(), **incoming} if merge else incoming
                record = await self._fit_budget(record, document, auto_compress)
                await self._save(record)

        logger.debug("episodic_memory_updated", chat_id=chat_id, words=record.word_count)
        return record

    async def get_or_create(self, chat_id: str, user_id: str) -> EpisodicMemory:
        record = await self._load(chat_id)
        if record is not None:
            return record
        try:
            return await self.create(
                chat_id,
                user_id,
                {"chat_started": utc_now().isoformat(), "contexto_conversa": NEW_CONVERSATION},
            )
        except MemoryAlreadyExistsError:
            # Created concurrently
            return await self._load(chat_id)

    async def record_interaction(
        self,
        chat_id: str,
        user_id: str,
        fields: Optional[dict[str, Any]] = None,
        event: Optional[ConversationEvent] = None,
    ) -> EpisodicMemory:
        """Append an event, rebuild the narrative and merge the new fields."""
        with track_memory_operation(MemoryTier.EPISODIC.value, "record_interaction"):
            async with self._locks.hold(chat_id):
                record = await self._load(chat_id)
                if record is None:
                    record = EpisodicMemory(chat_id=chat_id, user_id=user_id)
                    logger.info("episodic_memory_created", chat_id=chat_id, user_id=user_id, words=0)

                document = {**record.content.to_document(), **self._prepare(chat_id, fields)}
                if event is not None:
                    events = list(record.content.events)
                    events.append(event)
                    event_document = self._prepare(chat_id, EpisodicContent(events=events))
                    document["events"] = event_document.get("events", [])
                    document["narrative"] = events_to_narrative(
                        EpisodicContent.model_validate(event_document).events,
                        max_words=self.narrative_max_words,
                    )

                record = await self._fit_budget(record, document, auto_compress=True)
                await self._save(record)

        return record

    async def archive(self, chat_id: str, days: int) -> EpisodicMemory:
        """Move the soft-expiry of a record to now + days without deleting it."""
        async with self._locks.hold(chat_id):
            record = await self._load(chat_id)
            if record is None:
                raise MemoryNotFoundError("episodic memory", chat_id)
            record.expires_at = utc_now() + timedelta(days=days)
            await self.documents.put(
                COLLECTION,
                chat_id,
                record.model_dump(mode="json"),
                expires_at=record.updated_at + timedelta(days=self.max_age_days),
            )
        logger.info("episodic_memory_archived", chat_id=chat_id, days=days)
        return record

    async def compress_memory(
        self, chat_id: str, target_words: Optional[int] = None
    ) -> EpisodicMemory:
        """Compress a record on demand, regardless of the trigger threshold."""
        target = target_words or self.target_words
        async with self._locks.hold(chat_id):
            record = await self._load(chat_id)
            if record is None:
                raise MemoryNotFoundError("episodic memory", chat_id)

            before = record.word_count
            document = await self._compress(chat_id, record.content.to_document(), target)
            updated = await self._fit_budget(record, document, auto_compress=False)
            if updated.word_count < before:
                updated.compression_count += 1
                updated.last_compressed_at = utc_now()
                record_compression(MemoryTier.EPISODIC.value, before, updated.word_count)
            await self._save(updated)

        logger.info(
            "episodic_memory_manually_compressed",
            chat_id=chat_id,
            words_before=before,
            words_after=updated.word_count,
        )
        return updated

    async def delete(self, chat_id: str) -> bool:
        async with self._locks.hold(chat_id):
            deleted = await self.documents.delete(COLLECTION, chat_id)
        if deleted:
            logger.info("episodic_memory_deleted", chat_id=chat_id)
        return deleted

    async def get_user_memories(
        self,
        user_id: str,
        limit: int = 10,
        include_expired: bool = False,
    ) -> list[EpisodicMemory]:
        """Most recently updated conversation records of a user."""
        records = [
            EpisodicMemory.model_validate(document)
            for document in await self.documents.scan(COLLECTION)
            if document.get("user_id") == user_id
        ]
        if not include_expired:
            records = [record for record in records if not record.is_expired]
        records.sort(key=lambda record: record.updated_at, reverse=True)
        return records[:limit]

    async def purge_expired(self) -> int:
        """Hard delete records without updates for longer than the maximum age."""
        cutoff = utc_now() - timedelta(days=self.max_age_days)
        purged = 0
        for document in await self.documents.scan(COLLECTION):
            record = EpisodicMemory.model_validate(document)
            if record.updated_at < cutoff:
                async with self._locks.hold(record.chat_id):
                    current = await self._load(record.chat_id)
                    if current is not None and current.updated_at < cutoff:
                        await self.documents.delete(COLLECTION, record.chat_id)
                        purged += 1
        if purged:
            logger.info("episodic_memories_purged", count=purged, max_age_days=self.max_age_days)
        return purged
