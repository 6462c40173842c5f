"""Unit tests for the long-term memory store."""

import math
from unittest.mock import AsyncMock

import pytest

from finmem.core.exceptions import VectorStoreError
from finmem.knowledge.vector_store import InMemoryVectorStore, namespace_for
from finmem.memory.episodic import EpisodicMemoryStore
from finmem.memory.long_term import LongTermMemoryStore
from finmem.memory.types import LTMCategory
from finmem.models.schemas import EpisodicContent, EpisodicMemory


class FixedEmbedder:
    """Embeds the two income phrasings at cosine similarity 0.9."""

    async def embed_text(self, text: str) -> list[float]:
        if "renda mensal" in text:
            return [0.9, math.sqrt(0.19)]
        if "ganha" in text:
            return [1.0, 0.0]
        return [0.0, 1.0]


DISTINCT_FACTS = [
    "Tem reserva de emergência equivalente a seis meses de despesas",
    "Aporta dois mil reais todo mês no Tesouro IPCA mais",
    "Possui carteira de fundos imobiliários focada em logística",
    "Mantém vinte por cento do patrimônio em ações americanas",
    "Comprou previdência privada PGBL para reduzir imposto",
    "Usa CDB de liquidez diária como caixa para oportunidades",
]


class TestProposal:
    """Test curation, merge and insertion of proposals."""

    @pytest.mark.asyncio
    async def test_durable_preference_is_accepted(self, long_term_store):
        item = await long_term_store.propose(
            "u1",
            "prefiro sempre investir em renda fixa, nunca em ações de alta volatilidade",
            "perfil_risco",
        )

        assert item is not None
        assert item.impact_score >= 0.7
        assert item.category == LTMCategory.PERFIL_RISCO
        assert item.content.startswith("Em ")

    @pytest.mark.asyncio
    async def test_near_duplicates_merge(self, documents, accepting_curator):
        store = LongTermMemoryStore(
            documents,
            vector_store=InMemoryVectorStore(embedder=FixedEmbedder()),
            curator=accepting_curator,
        )

        await store.propose("u1", "Carlos ganha R$8.000/mês", "situacao_financeira", ["c1"])
        merged = await store.propose(
            "u1", "Carlos tem renda mensal de R$8.000", "situacao_financeira", ["c2"]
        )

        profile = await store.get_profile("u1")
        assert len(profile.items) == 1
        assert merged.source_chats == ["c1", "c2"]
        assert profile.curation_stats.total_merged == 1
        assert profile.curation_stats.total_accepted == 2

    @pytest.mark.asyncio
    async def test_repeating_a_proposal_is_idempotent(self, documents, accepting_curator, vector_store):
        store = LongTermMemoryStore(documents, vector_store=vector_store, curator=accepting_curator)
        text = "Carlos tem reserva de emergência de R$ 30.000 em CDB"

        await store.propose("u1", text, "investimentos")
        second = await store.propose("u1", text, "investimentos")
        third = await store.propose("u1", text, "investimentos")

        profile = await store.get_profile("u1")
        assert len(profile.items) == 1
        assert third.content == second.content
        assert third.word_count == second.word_count

    @pytest.mark.asyncio
    async def test_category_budget_enforced(self, documents, accepting_curator):
        store = LongTermMemoryStore(documents, curator=accepting_curator, category_budget=30)

        for fact in DISTINCT_FACTS:
            await store.propose("u1", fact, "investimentos")
            profile = await store.get_profile("u1")
            assert profile.category_words("investimentos") <= 30

        assert profile.items[-1].content.endswith(DISTINCT_FACTS[-1])

    @pytest.mark.asyncio
    async def test_lowest_impact_evicted_first(self, documents, accepting_curator):
        store = LongTermMemoryStore(documents, curator=accepting_curator, category_budget=30)
        low = await store.propose("u1", DISTINCT_FACTS[0], "investimentos")
        profile = await store.get_profile("u1")
        profile.items[0].impact_score = 0.71
        await store._save(profile)
        kept = await store.propose("u1", DISTINCT_FACTS[1], "investimentos")

        await store.propose("u1", DISTINCT_FACTS[2], "investimentos")

        ids = [item.id for item in (await store.get_profile("u1")).items]
        assert low.id not in ids
        assert kept.id in ids

    @pytest.mark.asyncio
    async def test_forbidden_content_never_stored(self, long_term_store):
        item = await long_term_store.propose(
            "u1", "Minha senha: 123456 do banco, sempre uso a mesma", "situacao_financeira"
        )

        profile = await long_term_store.get_profile("u1")
        assert item is None
        assert profile.items == []
        assert profile.curation_stats.total_proposed == 1
        assert profile.curation_stats.total_rejected == 1

    @pytest.mark.asyncio
    async def test_low_impact_rejected(self, long_term_store):
        assert await long_term_store.propose("u1", "oi, tudo bem?", "relacao_plataforma") is None

    @pytest.mark.asyncio
    async def test_invalid_category_rejected(self, long_term_store):
        assert await long_term_store.propose("u1", "Sempre invisto em CDB", "astrologia") is None

    @pytest.mark.asyncio
    async def test_vector_failure_falls_back_to_lexical(self, documents, accepting_curator):
        failing = AsyncMock()
        failing.embed.side_effect = VectorStoreError("vector_store", "down")
        store = LongTermMemoryStore(documents, vector_store=failing, curator=accepting_curator)
        text = "Carlos tem reserva de emergência de R$ 30.000 em CDB"

        await store.propose("u1", text, "investimentos")
        await store.propose("u1", text, "investimentos")

        profile = await store.get_profile("u1")
        assert len(profile.items) == 1
        assert profile.curation_stats.total_merged == 1

    @pytest.mark.asyncio
    async def test_description_generated_on_first_item(self, documents, accepting_curator):
        store = LongTermMemoryStore(documents, curator=accepting_curator)

        await store.propose("u1", DISTINCT_FACTS[0], "investimentos")

        profile = await store.get_profile("u1")
        description = profile.category_descriptions["investimentos"]
        assert description.description
        assert description.accepted_count == 1


class TestRetrieval:
    """Test reads over the profile."""

    @pytest.fixture
    async def store(self, documents, accepting_curator, vector_store):
        store = LongTermMemoryStore(documents, vector_store=vector_store, curator=accepting_curator)
        for fact in DISTINCT_FACTS[:4]:
            await store.propose("u1", fact, "investimentos")
        await store.propose("u1", "Quer comprar um apartamento em cinco anos", "objetivos_metas")
        return store

    @pytest.mark.asyncio
    async def test_retrieve_by_query(self, store):
        items = await store.retrieve("u1", query="reserva de emergência", limit=1)

        assert len(items) == 1
        assert "reserva de emergência" in items[0].content

    @pytest.mark.asyncio
    async def test_retrieve_filters_category(self, store):
        items = await store.retrieve("u1", category="objetivos_metas", limit=10)

        assert [i.category for i in items] == [LTMCategory.OBJETIVOS_METAS]

    @pytest.mark.asyncio
    async def test_retrieve_updates_access(self, store):
        items = await store.retrieve("u1", limit=2)

        profile = await store.get_profile("u1")
        for item in items:
            assert profile.find(item.id).access_count == item.access_count >= 1

    @pytest.mark.asyncio
    async def test_retrieve_respects_min_impact(self, store):
        assert await store.retrieve("u1", min_impact=0.9) == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, store):
        assert await store.retrieve("ninguem") == []
        assert await store.get_top_memories("ninguem") == []

    @pytest.mark.asyncio
    async def test_stats(self, store):
        stats = await store.get_stats("u1")

        assert stats.total_items == 5
        assert stats.top_categories[0].category == LTMCategory.INVESTIMENTOS
        assert stats.curation_stats.total_accepted == 5
        assert 0 < stats.budget_used_percent <= 100

    @pytest.mark.asyncio
    async def test_delete_item_removes_vector(self, store, vector_store):
        item = (await store.get_top_memories("u1", limit=1))[0]

        assert await store.delete_item("u1", item.id) is True

        matches = await vector_store.query(namespace_for("u1"), item.content, top_k=10)
        assert item.id not in [m["id"] for m in matches]
        assert await store.delete_item("u1", item.id) is False

    @pytest.mark.asyncio
    async def test_delete_profile(self, store, vector_store):
        assert await store.delete_profile("u1") is True

        assert await store.get_profile("u1") is None
        assert await vector_store.query(namespace_for("u1"), "CDB") == []


class TestMaintenance:
    """Test consolidation and episodic promotion."""

    @pytest.mark.asyncio
    async def test_consolidate_duplicates(self, documents, accepting_curator, make_item):
        store = LongTermMemoryStore(documents, curator=accepting_curator)
        await store.propose("u1", DISTINCT_FACTS[0], "investimentos")
        profile = await store.get_profile("u1")
        profile.items.append(make_item("Em 01/01/2024, " + DISTINCT_FACTS[0]))
        await store._save(profile)

        merged = await store.consolidate_duplicates("u1")

        assert merged == 1
        assert len((await store.get_profile("u1")).items) == 1

    @pytest.mark.asyncio
    async def test_merge_episodic_promotes_preferences(self, documents, accepting_curator):
        store = LongTermMemoryStore(documents, curator=accepting_curator)
        episodic = EpisodicMemory(
            chat_id="c1",
            user_id="u1",
            content=EpisodicContent(
                preferencias_mencionadas="prefiro renda fixa e evito risco de volatilidade",
                decisoes_tomadas=None,
            ),
        )

        stored = await store.merge_episodic("u1", episodic)

        assert len(stored) == 1
        assert stored[0].category == LTMCategory.PERFIL_RISCO
        assert stored[0].source_chats == ["c1"]

    @pytest.mark.asyncio
    async def test_merge_episodic_from_store(self, documents, accepting_curator):
        episodic_store = EpisodicMemoryStore(documents)
        record = await episodic_store.create(
            "c1", "u1", {"decisoes_tomadas": "quero investir em tesouro todo mês"}
        )
        store = LongTermMemoryStore(documents, curator=accepting_curator)

        stored = await store.merge_episodic("u1", record)

        assert len(stored) == 1
