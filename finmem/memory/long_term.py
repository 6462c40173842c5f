"""
Long-Term Memory Store.

Curated, durable facts about a user, partitioned into ten categories of
at most 350 words each. A proposal is curated, date-prefixed and then
either merged into a near-duplicate (cosine similarity >= 0.85 within the
same category) or inserted after evicting the lowest-impact items the
category budget requires.

Profiles live in the document store; item vectors live in the vector
store under the user's namespace. When the vector store fails, similarity
falls back to a local lexical embedding of the same category's items.
"""

from typing import Any, Optional

import structlog

from finmem.core.locks import KeyedLocks
from finmem.knowledge.embeddings import HashingEmbedder, cosine_similarity
from finmem.knowledge.vector_store import VectorStore, namespace_for
from finmem.memory.classifier import CategoryClassifier
from finmem.memory.curator import MemoryCurator
from finmem.memory.dates import process_date_in_content, strip_date_prefix
from finmem.memory.descriptions import refresh_description
from finmem.memory.document_store import DocumentStore
from finmem.memory.merger import eviction_order, merge_items
from finmem.memory.types import (
    DUPLICATE_THRESHOLD,
    LONG_TERM_PER_CATEGORY,
    LONG_TERM_TOTAL,
    MERGE_THRESHOLD,
    MIN_TO_KEEP,
    LTMCategory,
    MemoryTier,
)
from finmem.memory.word_counter import count_words, percentage_used
from finmem.models.schemas import (
    CategoryUsage,
    EpisodicMemory,
    LongTermProfile,
    LongTermStats,
    MemoryItem,
    utc_now,
)
from finmem.monitoring.metrics import (
    MEMORY_MERGES,
    record_eviction,
    record_fallback,
    track_memory_operation,
)
from finmem.services.text_service import LocalTextService, TextService

logger = structlog.get_logger(__name__)

COLLECTION = "long_term"


class LongTermMemoryStore:
    """
    Per-user long-term profile.

    Usage:
        store = LongTermMemoryStore(InMemoryDocumentStore(), InMemoryVectorStore())
        item = await store.propose("u1", "Tenho reserva de emergência de R$ 30.000 em CDB", "investimentos")
        items = await store.retrieve("u1", query="reserva de emergência")
    """

    def __init__(
        self,
        documents: DocumentStore,
        vector_store: Optional[VectorStore] = None,
        text_service: Optional[TextService] = None,
        curator: Optional[MemoryCurator] = None,
        classifier: Optional[CategoryClassifier] = None,
        category_budget: int = LONG_TERM_PER_CATEGORY,
        total_budget: int = LONG_TERM_TOTAL,
        merge_threshold: float = MERGE_THRESHOLD,
        duplicate_threshold: float = DUPLICATE_THRESHOLD,
    ) -> None:
        self.documents = documents
        self.vector_store = vector_store
        self.text_service = text_service or LocalTextService()
        self.curator = curator or MemoryCurator(self.text_service)
        self.classifier = classifier or CategoryClassifier()
        self.category_budget = category_budget
        self.total_budget = total_budget
        self.merge_threshold = merge_threshold
        self.duplicate_threshold = duplicate_threshold
        self._lexical = HashingEmbedder()
        self._locks = KeyedLocks("long_term")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def _load(self, user_id: str) -> Optional[LongTermProfile]:
        document = await self.documents.get(COLLECTION, user_id)
        return LongTermProfile.model_validate(document) if document else None

    async def _save(self, profile: LongTermProfile) -> None:
        profile.recount()
        profile.updated_at = utc_now()
        await self.documents.put(COLLECTION, profile.user_id, profile.model_dump(mode="json"))

    # -------------------------------------------------------------------------
    # Vector helpers
    # -------------------------------------------------------------------------

    async def _embed(self, text: str) -> Optional[list[float]]:
        if self.vector_store is None:
            return None
        try:
            return await self.vector_store.embed(text)
        except Exception as e:
            record_fallback("vector_store", "embed")
            logger.warning("long_term_embedding_failed_fallback_to_lexical", error=str(e))
            return None

    async def _upsert(self, user_id: str, item: MemoryItem, vector: Optional[list[float]]) -> None:
        if self.vector_store is None or vector is None:
            return
        metadata = {
            "user_id": user_id,
            "category": item.category.value,
            "impact_score": item.impact_score,
            "created_at": item.created_at.isoformat(),
            "content": item.content,
        }
        try:
            await self.vector_store.upsert(namespace_for(user_id), item.id, vector, metadata)
            item.vector_ref = item.id
        except Exception as e:
            logger.warning("long_term_vector_upsert_failed", user_id=user_id, item_id=item.id, error=str(e))

    async def _delete_vectors(self, user_id: str, ids: list[str]) -> None:
        if self.vector_store is None or not ids:
            return
        try:
            await self.vector_store.delete(namespace_for(user_id), ids=ids)
        except Exception as e:
            logger.warning("long_term_vector_delete_failed", user_id=user_id, count=len(ids), error=str(e))

    def _lexical_similarity(self, left: str, right: str) -> float:
        return cosine_similarity(
            self._lexical.embed(strip_date_prefix(left)),
            self._lexical.embed(strip_date_prefix(right)),
        )

    async def _find_match(
        self,
        profile: LongTermProfile,
        candidate: MemoryItem,
        vector: Optional[list[float]],
    ) -> tuple[Optional[MemoryItem], float]:
        """Most similar existing item of the candidate's category."""
        peers = profile.items_in(candidate.category)
        if not peers:
            return None, 0.0

        if vector is not None:
            try:
                matches = await self.vector_store.query(
                    namespace_for(profile.user_id),
                    vector,
                    top_k=3,
                    filter={"category": {"$eq": candidate.category.value}},
                )
                for match in matches:
                    item = profile.find(match["id"])
                    # Vectors of evicted items may linger in the index
                    if item is not None and item.category == candidate.category:
                        return item, float(match["score"])
                return None, 0.0
            except Exception as e:
                record_fallback("vector_store", "query")
                logger.warning("long_term_similarity_fallback_to_lexical", error=str(e))

        scored = [(peer, self._lexical_similarity(peer.content, candidate.content)) for peer in peers]
        return max(scored, key=lambda pair: pair[1])

    # -------------------------------------------------------------------------
    # Budget
    # -------------------------------------------------------------------------

    def _evict(
        self,
        profile: LongTermProfile,
        category: LTMCategory,
        incoming_words: int = 0,
        protect: Optional[str] = None,
    ) -> list[MemoryItem]:
        """Evict lowest-impact items until the category fits its budget."""
        evicted = []
        current = profile.category_words(category)
        for item in eviction_order(profile.items_in(category), protect=protect):
            if current + incoming_words <= self.category_budget:
                break
            profile.items.remove(item)
            current -= item.word_count
            evicted.append(item)

        if evicted:
            record_eviction(MemoryTier.LONG_TERM.value, len(evicted))
            logger.info(
                "long_term_items_evicted",
                user_id=profile.user_id,
                category=category.value,
                evicted=len(evicted),
                words=current + incoming_words,
                budget=self.category_budget,
            )
        return evicted

    # -------------------------------------------------------------------------
    # Proposal
    # -------------------------------------------------------------------------

    async def propose(
        self,
        user_id: str,
        content: str,
        category: LTMCategory | str,
        source_chats: Optional[list[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> Optional[MemoryItem]:
        """
        Curate a candidate and store it.

        Returns:
            The stored item (new or merged), or None when curation rejected
            the candidate. A rejection only changes the profile's counters.
        """
        source_chats = list(source_chats or [])
        with track_memory_operation(MemoryTier.LONG_TERM.value, "propose"):
            async with self._locks.hold(user_id):
                profile = await self._load(user_id) or LongTermProfile(user_id=user_id)
                stats = profile.curation_stats
                stats.total_proposed += 1
                stats.last_curation_at = utc_now()

                result = await self.curator.curate(
                    content, category, {"source_chats": source_chats, **(context or {})}
                )
                if not result.accepted:
                    stats.total_rejected += 1
                    await self._save(profile)
                    return None

                prefixed, event_date = process_date_in_content(result.content)
                candidate = MemoryItem(
                    content=prefixed,
                    category=result.category,
                    impact_score=result.impact_score,
                    source_chats=source_chats,
                    event_date=event_date,
                    word_count=count_words(prefixed),
                )

                vector = await self._embed(prefixed)
                match, similarity = await self._find_match(profile, candidate, vector)
                stats.total_accepted += 1

                if match is not None and similarity >= self.merge_threshold:
                    stored = merge_items(match, candidate)
                    profile.items[profile.items.index(match)] = stored
                    evicted = self._evict(profile, stored.category, protect=stored.id)
                    stats.total_merged += 1
                    MEMORY_MERGES.inc()
                    vector = await self._embed(stored.content)
                    logger.info(
                        "long_term_item_merged",
                        user_id=user_id,
                        category=stored.category.value,
                        item_id=stored.id,
                        similarity=round(similarity, 3),
                    )
                else:
                    evicted = self._evict(profile, candidate.category, candidate.word_count)
                    profile.items.append(candidate)
                    stored = candidate
                    logger.info(
                        "long_term_item_stored",
                        user_id=user_id,
                        category=stored.category.value,
                        item_id=stored.id,
                        impact_score=stored.impact_score,
                        words=stored.word_count,
                    )

                description = profile.description_for(stored.category)
                description.accepted_count += 1
                await refresh_description(
                    self.text_service, description, stored.category, profile.items_in(stored.category)
                )

                await self._upsert(user_id, stored, vector)
                await self._delete_vectors(user_id, [item.id for item in evicted])
                await self._save(profile)

        return stored

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def retrieve(
        self,
        user_id: str,
        query: Optional[str] = None,
        category: Optional[LTMCategory | str] = None,
        min_impact: float = MIN_TO_KEEP,
        limit: int = 5,
        use_vector_search: bool = True,
    ) -> list[MemoryItem]:
        """
        Items relevant to a query, or the highest-impact ones.

        Returned items count as accessed.
        """
        category = LTMCategory(category) if category is not None else None
        async with self._locks.hold(user_id):
            profile = await self._load(user_id)
            if profile is None:
                return []

            pool = [
                item
                for item in profile.items
                if item.impact_score >= min_impact and (category is None or item.category == category)
            ]
            selected: list[MemoryItem] = []

            if query and use_vector_search and self.vector_store is not None:
                search_filter: dict[str, Any] = {"impact_score": {"$gte": min_impact}}
                if category is not None:
                    search_filter["category"] = {"$eq": category.value}
                try:
                    matches = await self.vector_store.query(
                        namespace_for(user_id), query, top_k=limit * 2, filter=search_filter
                    )
                    by_id = {item.id: item for item in pool}
                    selected = [by_id[m["id"]] for m in matches if m["id"] in by_id][:limit]
                except Exception as e:
                    record_fallback("vector_store", "query")
                    logger.warning("long_term_search_fallback_to_impact", user_id=user_id, error=str(e))

            if not selected:
                selected = sorted(
                    pool, key=lambda item: (item.impact_score, item.created_at), reverse=True
                )[:limit]

            if selected:
                now = utc_now()
                for item in selected:
                    item.last_accessed = now
                    item.access_count += 1
                await self._save(profile)

        return [item.model_copy(deep=True) for item in selected]

    async def get_profile(self, user_id: str) -> Optional[LongTermProfile]:
        return await self._load(user_id)

    async def get_category_memories(self, user_id: str, category: LTMCategory | str) -> list[MemoryItem]:
        profile = await self._load(user_id)
        if profile is None:
            return []
        return sorted(profile.items_in(category), key=lambda item: item.impact_score, reverse=True)

    async def get_top_memories(self, user_id: str, limit: int = 10) -> list[MemoryItem]:
        profile = await self._load(user_id)
        if profile is None:
            return []
        return sorted(
            profile.items, key=lambda item: (item.impact_score, item.created_at), reverse=True
        )[:limit]

    def _category_usage(self, profile: LongTermProfile) -> list[CategoryUsage]:
        usage = []
        for category in LTMCategory:
            items = profile.items_in(category)
            if not items:
                continue
            words = sum(item.word_count for item in items)
            usage.append(
                CategoryUsage(
                    category=category,
                    item_count=len(items),
                    word_count=words,
                    average_impact=round(sum(i.impact_score for i in items) / len(items), 3),
                    budget_used_percent=round(percentage_used(words, self.category_budget), 1),
                )
            )
        return usage

    async def get_category_stats(self, user_id: str) -> list[CategoryUsage]:
        profile = await self._load(user_id)
        return self._category_usage(profile) if profile else []

    async def get_stats(self, user_id: str) -> LongTermStats:
        profile = await self._load(user_id) or LongTermProfile(user_id=user_id)
        total_words = profile.recount()
        usage = sorted(self._category_usage(profile), key=lambda u: u.word_count, reverse=True)
        impacts = [item.impact_score for item in profile.items]
        return LongTermStats(
            total_items=len(profile.items),
            total_words=total_words,
            budget_used_percent=round(percentage_used(total_words, self.total_budget), 1),
            top_categories=usage[:5],
            average_impact=round(sum(impacts) / len(impacts), 3) if impacts else 0.0,
            curation_stats=profile.curation_stats,
        )

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def consolidate_duplicates(self, user_id: str) -> int:
        """Merge same-category items whose similarity reaches the duplicate threshold."""
        async with self._locks.hold(user_id):
            profile = await self._load(user_id)
            if profile is None:
                return 0

            merged_ids: list[str] = []
            for category in LTMCategory:
                items = profile.items_in(category)
                vectors = {item.id: self._lexical.embed(strip_date_prefix(item.content)) for item in items}
                survivors: list[MemoryItem] = []
                for item in items:
                    target = next(
                        (
                            survivor
                            for survivor in survivors
                            if cosine_similarity(vectors[survivor.id], vectors[item.id])
                            >= self.duplicate_threshold
                        ),
                        None,
                    )
                    if target is None:
                        survivors.append(item)
                        continue
                    fused = merge_items(target, item)
                    survivors[survivors.index(target)] = fused
                    vectors[fused.id] = self._lexical.embed(strip_date_prefix(fused.content))
                    merged_ids.append(item.id)

                if len(survivors) != len(items):
                    others = [item for item in profile.items if item.category != category]
                    profile.items = others + survivors

            if merged_ids:
                profile.curation_stats.total_merged += len(merged_ids)
                MEMORY_MERGES.inc(len(merged_ids))
                for item in profile.items:
                    await self._upsert(user_id, item, await self._embed(item.content))
                await self._delete_vectors(user_id, merged_ids)
                await self._save(profile)
                logger.info("long_term_duplicates_consolidated", user_id=user_id, merged=len(merged_ids))

        return len(merged_ids)

    async def merge_episodic(self, user_id: str, episodic: EpisodicMemory) -> list[MemoryItem]:
        """Propose the preferences and decisions recorded in a conversation."""
        stored = []
        content = episodic.content
        for text in (content.preferencias_mencionadas, content.decisoes_tomadas):
            if not text or not text.strip():
                continue
            matches = self.classifier.detect_categories(text)
            if not matches:
                continue
            item = await self.propose(
                user_id, text, matches[0].category, source_chats=[episodic.chat_id]
            )
            if item is not None:
                stored.append(item)
        return stored

    async def delete_item(self, user_id: str, item_id: str) -> bool:
        async with self._locks.hold(user_id):
            profile = await self._load(user_id)
            item = profile.find(item_id) if profile else None
            if item is None:
                return False
            profile.items.remove(item)
            await self._save(profile)
            await self._delete_vectors(user_id, [item_id])
        logger.info("long_term_item_deleted", user_id=user_id, item_id=item_id)
        return True

    async def delete_profile(self, user_id: str) -> bool:
        async with self._locks.hold(user_id):
            deleted = await self.documents.delete(COLLECTION, user_id)
            if self.vector_store is not None:
                try:
                    await self.vector_store.delete(namespace_for(user_id), delete_all=True)
                except Exception as e:
                    logger.warning("long_term_vector_namespace_delete_failed", user_id=user_id, error=str(e))
        if deleted:
            logger.info("long_term_profile_deleted", user_id=user_id)
        return deleted
