"""Unit tests for the working memory store."""

import asyncio
from datetime import timedelta

import pytest

from finmem.core.exceptions import SessionNotFoundError
from finmem.memory.working import WorkingMemoryStore


def words(n: int, stem: str = "palavra") -> str:
    return " ".join(f"{stem}{i}" for i in range(n))


class TestWorkingMemoryStore:
    """Test per-session key/value memory."""

    @pytest.fixture
    async def store(self):
        store = WorkingMemoryStore(budget=700)
        await store.create_session("s1", "u1")
        return store

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        assert await store.set("s1", "renda_mensal", 8000.0) is True

        assert await store.get("s1", "renda_mensal") == 8000.0
        assert await store.get("s1", "ausente", "padrao") == "padrao"

    @pytest.mark.asyncio
    async def test_oldest_entry_evicted_when_full(self, store):
        """A write into a full session evicts the oldest entry first."""
        await store.set("s1", "calc_result", "1500")
        await store.set("s1", "historico", words(699))
        assert store.word_count("s1") == 700

        await store.set("s1", "calc_result2", "2200")

        snapshot = await store.get_all("s1")
        assert "calc_result" not in snapshot
        assert snapshot["calc_result2"] == "2200"
        assert store.word_count("s1") <= 700

    @pytest.mark.asyncio
    async def test_budget_never_exceeded(self, store):
        for i in range(30):
            await store.set("s1", f"nota_{i}", words(50, stem=f"n{i}_"))
            assert store.word_count("s1") <= 700

    @pytest.mark.asyncio
    async def test_overwrite_moves_key_to_newest(self, store):
        await store.set("s1", "a", words(300))
        await store.set("s1", "b", words(300))
        await store.set("s1", "a", words(300, stem="novo"))

        await store.set("s1", "c", words(300))

        snapshot = await store.get_all("s1")
        assert list(snapshot) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_oversized_entry_stored_alone(self, store):
        await store.set("s1", "pequeno", "valor pequeno")

        await store.set("s1", "enorme", words(800))

        assert list(await store.get_all("s1")) == ["enorme"]

    @pytest.mark.asyncio
    async def test_rejected_values_are_not_stored(self, store):
        assert await store.set("s1", "login", "senha: hunter2") is False
        assert await store.set("s1", "x", "7") is False
        assert await store.set("s1", "", "valor qualquer") is False

        assert await store.get_all("s1") == {}

    @pytest.mark.asyncio
    async def test_returned_values_are_copies(self, store):
        await store.set("s1", "carteira", {"acoes": "PETR4 e VALE3"})

        snapshot = await store.get("s1", "carteira")
        snapshot["acoes"] = "alterado"

        assert (await store.get("s1", "carteira"))["acoes"] == "PETR4 e VALE3"

    @pytest.mark.asyncio
    async def test_unknown_session_raises(self, store):
        with pytest.raises(SessionNotFoundError):
            await store.set("nao-existe", "k", "valor valido")

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, store):
        await store.set("s1", "a", "valor um")
        await store.set("s1", "b", "valor dois")

        assert await store.delete("s1", "a") is True
        assert await store.delete("s1", "a") is False
        assert await store.clear("s1") == 1
        assert store.word_count("s1") == 0

    @pytest.mark.asyncio
    async def test_end_session_discards_map(self, store):
        await store.set("s1", "a", "valor um")

        assert await store.end_session("s1") is True
        assert store.has_session("s1") is False
        assert await store.get_all("s1") == {}
        assert await store.end_session("s1") is False

    @pytest.mark.asyncio
    async def test_create_session_is_idempotent(self, store):
        await store.set("s1", "a", "valor um")

        session = await store.create_session("s1", "u1", {"canal": "web"})

        assert session.metadata == {"canal": "web"}
        assert await store.get("s1", "a") == "valor um"

    @pytest.mark.asyncio
    async def test_concurrent_writes_respect_budget(self, store):
        await asyncio.gather(
            *[store.set("s1", f"k{i}", words(90, stem=f"c{i}_")) for i in range(20)]
        )

        assert store.word_count("s1") <= 700


class TestSessionExpiry:
    """Test the inactivity sweep."""

    @pytest.mark.asyncio
    async def test_sweep_reclaims_idle_sessions(self):
        store = WorkingMemoryStore(session_timeout_seconds=60)
        await store.create_session("idle", "u1")
        await store.create_session("active", "u2")
        store.get_session("idle").last_activity -= timedelta(minutes=5)

        reclaimed = await store.sweep_expired()

        assert reclaimed == ["idle"]
        assert store.has_session("active") is True
        assert store.has_session("idle") is False

    @pytest.mark.asyncio
    async def test_write_renews_session(self):
        store = WorkingMemoryStore(session_timeout_seconds=60)
        await store.create_session("s1", "u1")
        store.get_session("s1").last_activity -= timedelta(minutes=5)

        await store.set("s1", "renda", "R$ 5.000 por mês")

        assert await store.sweep_expired() == []

    def test_stats(self):
        store = WorkingMemoryStore()

        stats = store.stats()

        assert stats["active_sessions"] == 0
        assert stats["total_words"] == 0
