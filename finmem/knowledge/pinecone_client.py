"""
Pinecone Vector Index Client.

Connection management and vector operations for long-term memory
similarity. One namespace per user keeps profiles isolated.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog
from pinecone import Pinecone, ServerlessSpec

logger = structlog.get_logger(__name__)


class PineconeClient:
    """
    Pinecone vector index client.

    The Pinecone SDK is synchronous; every index call runs in the default
    executor.

    Usage:
        client = PineconeClient(api_key, "finmem-long-term", dimension=3072)
        client.connect()
        client.ensure_index()
        await client.upsert("user_42", "item-id", vector, {"category": "investimentos"})
    """

    METRIC = "cosine"
    CLOUD = "aws"
    REGION = "us-east-1"

    def __init__(self, api_key: str, index_name: str, dimension: int = 3072) -> None:
        self._api_key = api_key
        self._index_name = index_name
        self.dimension = dimension
        self._client: Pinecone | None = None
        self._index: Any = None

    def connect(self) -> None:
        """Initialize connection to Pinecone."""
        if self._client is not None:
            return
        self._client = Pinecone(api_key=self._api_key)
        logger.info("pinecone_client_initialized")

    @property
    def client(self) -> Pinecone:
        if self._client is None:
            raise RuntimeError("Pinecone client not initialized. Call connect() first.")
        return self._client

    @property
    def index(self) -> Any:
        if self._index is None:
            raise RuntimeError("Pinecone index not initialized. Call ensure_index() first.")
        return self._index

    def ensure_index(self, wait_for_ready: bool = True, timeout: int = 300) -> None:
        """Create the index if it doesn't exist and connect to it."""
        existing_indexes = [idx.name for idx in self.client.list_indexes()]

        if self._index_name not in existing_indexes:
            logger.info(
                "pinecone_creating_index",
                index_name=self._index_name,
                dimension=self.dimension,
                metric=self.METRIC,
            )
            self.client.create_index(
                name=self._index_name,
                dimension=self.dimension,
                metric=self.METRIC,
                spec=ServerlessSpec(cloud=self.CLOUD, region=self.REGION),
            )
            if wait_for_ready:
                self._wait_for_index_ready(timeout)

        self._index = self.client.Index(self._index_name)
        logger.info("pinecone_index_connected", index_name=self._index_name)

    def _wait_for_index_ready(self, timeout: int) -> None:
        start_time = time.time()
        while not self.client.describe_index(self._index_name).status.ready:
            if time.time() - start_time > timeout:
                raise TimeoutError(f"Index {self._index_name} not ready after {timeout}s")
            time.sleep(5)
            logger.debug("pinecone_waiting_for_index", index_name=self._index_name)

    async def _run(self, func, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(**kwargs))

    async def upsert(
        self,
        namespace: str,
        vector_id: str,
        values: list[float],
        metadata: dict[str, Any],
    ) -> None:
        await self._run(
            self.index.upsert,
            vectors=[{"id": vector_id, "values": values, "metadata": metadata}],
            namespace=namespace,
        )
        logger.debug("pinecone_vector_upserted", namespace=namespace, vector_id=vector_id)

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int = 10,
        filter: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Query the index for similar vectors.

        Returns:
            Matches as dicts with id, score and metadata.
        """
        result = await self._run(
            self.index.query,
            vector=vector,
            top_k=top_k,
            filter=filter,
            namespace=namespace,
            include_metadata=True,
        )
        matches = [
            {"id": match.id, "score": match.score, "metadata": dict(match.metadata or {})}
            for match in result.matches
        ]
        logger.debug("pinecone_query_completed", namespace=namespace, matches=len(matches))
        return matches

    async def delete(self, namespace: str, ids: list[str] | None = None, delete_all: bool = False) -> None:
        if delete_all:
            await self._run(self.index.delete, delete_all=True, namespace=namespace)
            logger.info("pinecone_delete_all", namespace=namespace)
        elif ids:
            await self._run(self.index.delete, ids=ids, namespace=namespace)
            logger.info("pinecone_delete_ids", namespace=namespace, count=len(ids))
