"""Persistent document store for episodic records and long-term profiles.

Provides a consistent interface with a Redis backend and an in-memory
fallback used in development, tests, or when Redis is unreachable.
Documents may carry an expiry time; expired documents are invisible to
readers and reclaimed by the backend (Redis TTL, or lazily in memory).

Usage:
    store = await create_document_store(settings)

    await store.put("episodic", chat_id, record, expires_at=hard_delete_at)
    record = await store.get("episodic", chat_id)
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

import redis.asyncio as redis
import structlog

from finmem.config.settings import Settings
from finmem.models.schemas import utc_now

logger = structlog.get_logger(__name__)


class DocumentStore(Protocol):
    """Protocol for document store implementations."""

    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]: ...

    async def put(
        self,
        collection: str,
        key: str,
        document: dict[str, Any],
        expires_at: Optional[datetime] = None,
    ) -> None: ...

    async def delete(self, collection: str, key: str) -> bool: ...

    async def scan(self, collection: str) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


@dataclass
class InMemoryDocumentStore:
    """
    In-memory document store for development or Redis fallback.

    WARNING: Does not persist across restarts and does not share
    state between multiple application instances.
    """

    _collections: dict[str, dict[str, tuple[str, Optional[datetime]]]] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        async with self._lock:
            entry = self._collections.get(collection, {}).get(key)
            if entry is None:
                return None
            payload, expires_at = entry
            if expires_at is not None and expires_at <= utc_now():
                del self._collections[collection][key]
                return None
            return json.loads(payload)

    async def put(
        self,
        collection: str,
        key: str,
        document: dict[str, Any],
        expires_at: Optional[datetime] = None,
    ) -> None:
        # Stored serialized so callers never share mutable state with the store
        payload = json.dumps(document, ensure_ascii=False, default=str)
        async with self._lock:
            self._collections.setdefault(collection, {})[key] = (payload, expires_at)

    async def delete(self, collection: str, key: str) -> bool:
        async with self._lock:
            return self._collections.get(collection, {}).pop(key, None) is not None

    async def scan(self, collection: str) -> list[dict[str, Any]]:
        now = utc_now()
        async with self._lock:
            documents = self._collections.get(collection, {})
            expired = [k for k, (_, exp) in documents.items() if exp is not None and exp <= now]
            for key in expired:
                del documents[key]
            return [json.loads(payload) for payload, _ in documents.values()]

    async def close(self) -> None:
        return None


class RedisDocumentStore:
    """
    Redis-backed document store.

    Documents are JSON strings under "<prefix>:<collection>:<key>"; an
    expiry time becomes the key's TTL.

    Args:
        redis_url: Redis connection URL
        key_prefix: Prefix for Redis keys (default: "finmem")
    """

    def __init__(self, redis_url: str, key_prefix: str = "finmem"):
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._client is not None:
            return

        client = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        await client.ping()
        self._client = client
        logger.info("redis_document_store_connected")

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis document store not connected. Call connect() first.")
        return self._client

    def _key(self, collection: str, key: str) -> str:
        return f"{self._key_prefix}:{collection}:{key}"

    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        payload = await self.client.get(self._key(collection, key))
        return json.loads(payload) if payload else None

    async def put(
        self,
        collection: str,
        key: str,
        document: dict[str, Any],
        expires_at: Optional[datetime] = None,
    ) -> None:
        payload = json.dumps(document, ensure_ascii=False, default=str)
        ttl = None
        if expires_at is not None:
            ttl = max(1, int((expires_at - utc_now()).total_seconds()))
        await self.client.set(self._key(collection, key), payload, ex=ttl)

    async def delete(self, collection: str, key: str) -> bool:
        return bool(await self.client.delete(self._key(collection, key)))

    async def scan(self, collection: str) -> list[dict[str, Any]]:
        documents = []
        async for redis_key in self.client.scan_iter(match=self._key(collection, "*")):
            payload = await self.client.get(redis_key)
            if payload:
                documents.append(json.loads(payload))
        return documents

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("redis_document_store_closed")


async def create_document_store(settings: Settings) -> DocumentStore:
    """
    Build the configured document store.

    Attempts Redis when selected, falls back to in-memory if the
    connection fails.
    """
    if settings.document_store_provider == "redis" and settings.redis_url:
        try:
            store = RedisDocumentStore(settings.redis_url, key_prefix=settings.redis_key_prefix)
            await store.connect()
            logger.info("document_store_initialized", backend="redis")
            return store
        except Exception as e:
            logger.warning("redis_document_store_failed_fallback_to_memory", error=str(e))

    logger.info("document_store_initialized", backend="in_memory")
    return InMemoryDocumentStore()
