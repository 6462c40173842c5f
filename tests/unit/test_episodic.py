"""Unit tests for the episodic memory store."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from finmem.core.exceptions import (
    BudgetExceededError,
    MemoryAlreadyExistsError,
    MemoryNotFoundError,
    MemoryRejectedError,
)
from finmem.memory.episodic import COLLECTION, EpisodicMemoryStore
from finmem.memory.narrative import extract_event
from finmem.models.schemas import EpisodicMemory, utc_now


def words(n: int, stem: str = "termo") -> str:
    return " ".join(f"{stem}{i}" for i in range(n))


class TestEpisodicMemoryStore:
    """Test per-conversation records."""

    @pytest.fixture
    def store(self, documents):
        return EpisodicMemoryStore(documents, budget=500)

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        record = await store.create("c1", "u1", {"contexto_conversa": "Planejando a aposentadoria"})

        loaded = await store.get("c1")
        assert loaded.content.contexto_conversa == "Planejando a aposentadoria"
        assert loaded.word_count == record.word_count == 3
        assert loaded.expires_at > utc_now() + timedelta(days=29)

    @pytest.mark.asyncio
    async def test_create_twice_conflicts(self, store):
        await store.create("c1", "u1")

        with pytest.raises(MemoryAlreadyExistsError):
            await store.create("c1", "u1")

    @pytest.mark.asyncio
    async def test_update_missing_record_raises(self, store):
        with pytest.raises(MemoryNotFoundError):
            await store.update("nao-existe", {"contexto_conversa": "algo"})

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, store):
        await store.create("c1", "u1", {"contexto_conversa": "Conversa sobre reserva"})

        record = await store.update("c1", {"decisoes_tomadas": "vou investir em CDB", "tema": "reserva"})

        assert record.content.contexto_conversa == "Conversa sobre reserva"
        assert record.content.decisoes_tomadas == "vou investir em CDB"
        assert record.content.model_extra["tema"] == "reserva"

    @pytest.mark.asyncio
    async def test_update_without_merge_replaces(self, store):
        await store.create("c1", "u1", {"contexto_conversa": "antigo", "preferencias_mencionadas": "fixa"})

        record = await store.update("c1", {"contexto_conversa": "novo"}, merge=False)

        assert record.content.contexto_conversa == "novo"
        assert record.content.preferencias_mencionadas is None

    @pytest.mark.asyncio
    async def test_compression_triggered_near_budget(self, store):
        """A record at 410/500 words is compressed to 60% on the next update."""
        created = await store.create("c1", "u1", {"contexto_conversa": words(410)})
        assert created.word_count == 410

        record = await store.update("c1", {"decisoes_tomadas": "vou investir em CDB"})

        assert record.word_count <= 300
        assert record.compression_count == 1
        assert record.last_compressed_at is not None
        assert (await store.get("c1")).word_count == record.word_count

    @pytest.mark.asyncio
    async def test_over_budget_without_compression_is_refused(self, store):
        await store.create("c1", "u1", {"contexto_conversa": words(450)})

        with pytest.raises(BudgetExceededError):
            await store.update(
                "c1", {"preferencias_mencionadas": words(100, stem="extra")}, auto_compress=False
            )

        stored = await store.get("c1")
        assert stored.word_count == 450
        assert stored.content.preferencias_mencionadas is None

    @pytest.mark.asyncio
    async def test_create_over_budget_raises(self, store):
        with pytest.raises(BudgetExceededError):
            await store.create("c1", "u1", {"contexto_conversa": words(501)})

        assert await store.get("c1") is None

    @pytest.mark.asyncio
    async def test_sensitive_values_are_redacted(self, store):
        record = await store.create(
            "c1", "u1", {"contexto_conversa": "Cliente enviou o CPF 123.456.789-09 para cadastro"}
        )

        assert "123.456.789-09" not in record.content.contexto_conversa

    @pytest.mark.asyncio
    async def test_only_sensitive_content_is_rejected(self, store):
        with pytest.raises(MemoryRejectedError):
            await store.create("c1", "u1", {"contexto_conversa": "123.456.789-09"})

    @pytest.mark.asyncio
    async def test_get_or_create(self, store):
        first = await store.get_or_create("c1", "u1")
        second = await store.get_or_create("c1", "u1")

        assert first.content.contexto_conversa == "Nova conversa iniciada"
        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_record_interaction_builds_narrative(self, store):
        event = extract_event("Quero investir R$ 1.000 em CDB", "Boa escolha para começar.")

        record = await store.record_interaction(
            "c1", "u1", {"contexto_conversa": "Conversa sobre CDB"}, event
        )

        assert len(record.content.events) == 1
        assert record.content.narrative
        assert record.word_count <= store.budget

    @pytest.mark.asyncio
    async def test_record_interaction_keeps_budget(self, store):
        for i in range(40):
            event = extract_event(f"Quero investir R$ {i + 1}.000 em tesouro na etapa {i}", "Certo.")
            record = await store.record_interaction(
                "c1", "u1", {"contexto_conversa": words(60, stem=f"r{i}_")}, event
            )
            assert record.word_count <= store.budget

    @pytest.mark.asyncio
    async def test_expired_records_hidden_unless_requested(self, store):
        await store.create("c1", "u1", {"contexto_conversa": "conversa antiga"})
        await store.archive("c1", days=-1)

        assert await store.get("c1") is None
        assert (await store.get("c1", include_expired=True)) is not None
        assert await store.get_user_memories("u1") == []
        assert len(await store.get_user_memories("u1", include_expired=True)) == 1

    @pytest.mark.asyncio
    async def test_get_user_memories_most_recent_first(self, store):
        await store.create("c1", "u1", {"contexto_conversa": "primeira"})
        await store.create("c2", "u1", {"contexto_conversa": "segunda"})
        await store.create("c3", "u2", {"contexto_conversa": "outro usuário"})
        await store.update("c1", {"decisoes_tomadas": "atualizada"})

        records = await store.get_user_memories("u1", limit=5)

        assert [r.chat_id for r in records] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_compress_memory_on_demand(self, store):
        await store.create("c1", "u1", {"contexto_conversa": words(200)})

        record = await store.compress_memory("c1", target_words=50)

        assert record.word_count <= 50
        assert record.compression_count == 1

    @pytest.mark.asyncio
    async def test_text_service_summarizes_when_cleanup_misses_target(self, documents):
        service = MagicMock()
        service.compress = AsyncMock(return_value="Resumo: cliente planeja reserva de emergência em CDB")
        store = EpisodicMemoryStore(documents, budget=500, text_service=service)
        await store.create("c1", "u1", {"contexto_conversa": words(410)})

        record = await store.update("c1", {"decisoes_tomadas": "vou investir em CDB"})

        service.compress.assert_awaited_once()
        text, goal = service.compress.await_args.args
        assert text == words(410)
        assert 0 < goal < 410
        assert record.content.contexto_conversa == "Resumo: cliente planeja reserva de emergência em CDB"
        assert record.content.decisoes_tomadas == "vou investir em CDB"
        assert record.word_count <= 300
        assert record.compression_count == 1

    @pytest.mark.asyncio
    async def test_text_service_failure_falls_back_to_truncation(self, documents):
        service = MagicMock()
        service.compress = AsyncMock(side_effect=RuntimeError("service down"))
        store = EpisodicMemoryStore(documents, budget=500, text_service=service)
        await store.create("c1", "u1", {"contexto_conversa": words(200)})

        record = await store.compress_memory("c1", target_words=50)

        service.compress.assert_awaited_once()
        assert record.word_count <= 50
        assert record.content.contexto_conversa.startswith("termo0 termo1")

    @pytest.mark.asyncio
    async def test_text_service_not_called_when_cleanup_suffices(self, documents):
        service = MagicMock()
        service.compress = AsyncMock()
        store = EpisodicMemoryStore(documents, budget=500, text_service=service)
        await store.create("c1", "u1", {"contexto_conversa": "Isto é muito importante. " * 60})

        record = await store.compress_memory("c1", target_words=150)

        service.compress.assert_not_awaited()
        assert record.content.contexto_conversa == "Isto é importante."

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.create("c1", "u1")

        assert await store.delete("c1") is True
        assert await store.delete("c1") is False

    @pytest.mark.asyncio
    async def test_purge_removes_stale_records(self, store, documents):
        stale = EpisodicMemory(
            chat_id="velho",
            user_id="u1",
            updated_at=utc_now() - timedelta(days=120),
            expires_at=utc_now() - timedelta(days=90),
        )
        await documents.put(COLLECTION, "velho", stale.model_dump(mode="json"))
        await store.create("novo", "u1", {"contexto_conversa": "recente"})

        purged = await store.purge_expired()

        assert purged == 1
        assert await store.get("velho", include_expired=True) is None
        assert await store.get("novo") is not None
