"""Vector similarity store for long-term memory items.

Provides a consistent interface with a Pinecone + OpenAI backend and an
in-memory backend with a local embedder. Every user's vectors live in
their own namespace ("user_<id>").

ResilientVectorStore adds the per-call time bound and the circuit breaker;
any failure surfaces as VectorStoreError so the caller can fall back to
lexical similarity.

Usage:
    store = create_vector_store(settings)

    vector = await store.embed("Investe R$ 2.000 por mês em Tesouro IPCA+")
    await store.upsert(namespace_for("42"), item.id, vector, {"category": "investimentos"})
    matches = await store.query(namespace_for("42"), vector, top_k=5)
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import structlog

from finmem.config.settings import Settings
from finmem.core.circuit_breaker import CircuitBreaker
from finmem.core.exceptions import (
    CircuitBreakerOpenError,
    ExternalServiceTimeoutError,
    VectorStoreError,
)
from finmem.knowledge.embeddings import (
    Embedder,
    EmbeddingsService,
    HashingEmbedder,
    cosine_similarity,
)
from finmem.knowledge.pinecone_client import PineconeClient
from finmem.monitoring.metrics import track_external_call

logger = structlog.get_logger(__name__)


def namespace_for(user_id: str) -> str:
    return f"user_{user_id}"


class VectorStore(Protocol):
    """Protocol for vector store implementations."""

    async def embed(self, text: str) -> list[float]: ...

    async def upsert(
        self, namespace: str, vector_id: str, vector: list[float], metadata: dict[str, Any]
    ) -> None: ...

    async def query(
        self,
        namespace: str,
        vector: list[float] | str,
        top_k: int = 5,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]: ...

    async def delete(
        self, namespace: str, ids: Optional[list[str]] = None, delete_all: bool = False
    ) -> None: ...


def matches_filter(metadata: dict[str, Any], filter: Optional[dict[str, Any]]) -> bool:
    """Evaluate the subset of the Pinecone filter language the engine uses."""
    if not filter:
        return True
    for key, condition in filter.items():
        value = metadata.get(key)
        if not isinstance(condition, dict):
            condition = {"$eq": condition}
        for operator, expected in condition.items():
            if operator == "$eq" and value != expected:
                return False
            if operator == "$in" and value not in expected:
                return False
            if operator == "$gte" and (value is None or value < expected):
                return False
            if operator == "$lte" and (value is None or value > expected):
                return False
    return True


@dataclass
class InMemoryVectorStore:
    """
    In-memory vector store for development and tests.

    WARNING: Does not persist across restarts.
    """

    embedder: Embedder = field(default_factory=HashingEmbedder)
    _namespaces: dict[str, dict[str, tuple[list[float], dict[str, Any]]]] = field(default_factory=dict)

    async def embed(self, text: str) -> list[float]:
        return await self.embedder.embed_text(text)

    async def upsert(
        self, namespace: str, vector_id: str, vector: list[float], metadata: dict[str, Any]
    ) -> None:
        self._namespaces.setdefault(namespace, {})[vector_id] = (list(vector), dict(metadata))

    async def query(
        self,
        namespace: str,
        vector: list[float] | str,
        top_k: int = 5,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        if isinstance(vector, str):
            vector = await self.embed(vector)
        matches = [
            {"id": vector_id, "score": cosine_similarity(vector, stored), "metadata": dict(metadata)}
            for vector_id, (stored, metadata) in self._namespaces.get(namespace, {}).items()
            if matches_filter(metadata, filter)
        ]
        matches.sort(key=lambda match: match["score"], reverse=True)
        return matches[:top_k]

    async def delete(
        self, namespace: str, ids: Optional[list[str]] = None, delete_all: bool = False
    ) -> None:
        if delete_all:
            self._namespaces.pop(namespace, None)
            return
        vectors = self._namespaces.get(namespace, {})
        for vector_id in ids or []:
            vectors.pop(vector_id, None)


class PineconeVectorStore:
    """OpenAI embeddings plus a Pinecone index."""

    def __init__(self, embeddings: EmbeddingsService, client: PineconeClient) -> None:
        self.embeddings = embeddings
        self.client = client

    async def embed(self, text: str) -> list[float]:
        return await self.embeddings.embed_text(text)

    async def upsert(
        self, namespace: str, vector_id: str, vector: list[float], metadata: dict[str, Any]
    ) -> None:
        await self.client.upsert(namespace, vector_id, vector, metadata)

    async def query(
        self,
        namespace: str,
        vector: list[float] | str,
        top_k: int = 5,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        if isinstance(vector, str):
            vector = await self.embed(vector)
        return await self.client.query(namespace, vector, top_k=top_k, filter=filter)

    async def delete(
        self, namespace: str, ids: Optional[list[str]] = None, delete_all: bool = False
    ) -> None:
        await self.client.delete(namespace, ids=ids, delete_all=delete_all)


class ResilientVectorStore:
    """
    Time-bounded, circuit-protected wrapper around a vector store.

    Raises:
        VectorStoreError: On timeout, open circuit, or backend failure.
    """

    def __init__(self, inner: VectorStore, breaker: CircuitBreaker, timeout: float = 8.0) -> None:
        self.inner = inner
        self.breaker = breaker
        self.timeout = timeout

    async def _guarded(self, operation: str, func, *args, **kwargs) -> Any:
        async def bounded():
            return await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout)

        try:
            with track_external_call("vector_store", operation):
                return await self.breaker.call(bounded)
        except CircuitBreakerOpenError as e:
            raise VectorStoreError("vector_store", str(e)) from e
        except asyncio.TimeoutError as e:
            logger.warning("vector_store_timeout", operation=operation, timeout=self.timeout)
            raise ExternalServiceTimeoutError("vector_store", self.timeout) from e
        except Exception as e:
            logger.warning("vector_store_call_failed", operation=operation, error=str(e))
            raise VectorStoreError("vector_store", f"{operation} failed: {e}") from e

    async def embed(self, text: str) -> list[float]:
        return await self._guarded("embed", self.inner.embed, text)

    async def upsert(
        self, namespace: str, vector_id: str, vector: list[float], metadata: dict[str, Any]
    ) -> None:
        await self._guarded("upsert", self.inner.upsert, namespace, vector_id, vector, metadata)

    async def query(
        self,
        namespace: str,
        vector: list[float] | str,
        top_k: int = 5,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        return await self._guarded("query", self.inner.query, namespace, vector, top_k=top_k, filter=filter)

    async def delete(
        self, namespace: str, ids: Optional[list[str]] = None, delete_all: bool = False
    ) -> None:
        await self._guarded("delete", self.inner.delete, namespace, ids=ids, delete_all=delete_all)


def create_vector_store(settings: Settings) -> ResilientVectorStore:
    """
    Build the configured vector store.

    Falls back to the in-memory store if Pinecone cannot be reached.
    """
    inner: VectorStore = InMemoryVectorStore()
    if settings.vector_store_provider == "pinecone":
        try:
            client = PineconeClient(
                settings.pinecone_api_key.get_secret_value(),
                settings.pinecone_index_name,
                dimension=settings.embedding_dimension,
            )
            client.connect()
            client.ensure_index()
            embeddings = EmbeddingsService(
                settings.openai_api_key.get_secret_value(),
                model=settings.embedding_model,
                dimension=settings.embedding_dimension,
            )
            inner = PineconeVectorStore(embeddings, client)
            logger.info("vector_store_initialized", backend="pinecone")
        except Exception as e:
            logger.warning("pinecone_vector_store_failed_fallback_to_memory", error=str(e))
    else:
        logger.info("vector_store_initialized", backend="in_memory")

    breaker = CircuitBreaker(
        "vector_store",
        failure_threshold=settings.circuit_failure_threshold,
        recovery_timeout=settings.circuit_recovery_timeout,
    )
    return ResilientVectorStore(inner, breaker, timeout=settings.external_timeout_seconds)
