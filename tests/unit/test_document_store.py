"""Unit tests for the document stores."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from finmem.memory.document_store import (
    InMemoryDocumentStore,
    RedisDocumentStore,
    create_document_store,
)
from finmem.models.schemas import utc_now


class TestInMemoryDocumentStore:
    """Test the in-memory backend."""

    @pytest.mark.asyncio
    async def test_put_get_delete(self, documents):
        await documents.put("episodic", "c1", {"chat_id": "c1", "valores": [1, 2]})

        assert await documents.get("episodic", "c1") == {"chat_id": "c1", "valores": [1, 2]}
        assert await documents.get("long_term", "c1") is None
        assert await documents.delete("episodic", "c1") is True
        assert await documents.delete("episodic", "c1") is False

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, documents):
        await documents.put("episodic", "c1", {"events": []})

        loaded = await documents.get("episodic", "c1")
        loaded["events"].append("x")

        assert await documents.get("episodic", "c1") == {"events": []}

    @pytest.mark.asyncio
    async def test_expired_documents_disappear(self, documents):
        await documents.put("episodic", "old", {"n": 1}, expires_at=utc_now() - timedelta(seconds=1))
        await documents.put("episodic", "new", {"n": 2}, expires_at=utc_now() + timedelta(days=1))

        assert await documents.get("episodic", "old") is None
        assert await documents.scan("episodic") == [{"n": 2}]


class TestCreateDocumentStore:
    """Test backend selection."""

    @pytest.mark.asyncio
    async def test_memory_by_default(self, settings):
        assert isinstance(await create_document_store(settings), InMemoryDocumentStore)

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_memory(self, settings):
        redis_settings = settings.model_copy(
            update={"document_store_provider": "redis", "redis_url": "redis://localhost:1"}
        )

        with patch.object(RedisDocumentStore, "connect", side_effect=ConnectionError("refused")):
            store = await create_document_store(redis_settings)

        assert isinstance(store, InMemoryDocumentStore)
