"""
Embedding providers for long-term memory similarity.

EmbeddingsService calls OpenAI's text-embedding-3-large with retries.
HashingEmbedder is a deterministic local embedder (hashed word and
character-trigram features) used when no provider is configured and as
the lexical fallback when the remote service is unavailable.
"""

from __future__ import annotations

import hashlib
import math
import re
import unicodedata
from typing import Protocol

import structlog
from openai import APIError, AsyncOpenAI, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

TOKEN = re.compile(r"\w+", re.UNICODE)
STOPWORDS = frozenset(
    "a o as os de da do das dos e em no na nos nas um uma para por com que se "
    "ao aos eu meu minha meus minhas é ser está".split()
)


class Embedder(Protocol):
    """Turns text into a vector."""

    async def embed_text(self, text: str) -> list[float]: ...


def cosine_similarity(left: list[float], right: list[float]) -> float:
    if not left or not right or len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    return dot / norm if norm else 0.0


class EmbeddingsService:
    """
    OpenAI embeddings service.

    Usage:
        service = EmbeddingsService(api_key="sk-...")
        embedding = await service.embed_text("Tenho reserva de emergência de 6 meses")
    """

    MAX_BATCH_SIZE = 2048  # OpenAI limit

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-large",
        dimension: int = 3072,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.dimension = dimension
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create the OpenAI async client."""
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    @retry(
        retry=retry_if_exception_type((RateLimitError, APIError)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        before_sleep=lambda retry_state: logger.warning(
            "openai_retry",
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep,
        ),
        reraise=True,
    )
    async def embed_text(self, text: str) -> list[float]:
        """
        Generate embedding for a single text.

        Raises:
            ValueError: If the text is empty.
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        response = await self.client.embeddings.create(model=self.model, input=text)
        embedding = response.data[0].embedding
        logger.debug("embedding_generated", text_length=len(text), dimension=len(embedding))
        return embedding

    async def embed_batch(self, texts: list[str], batch_size: int = 100) -> list[list[float]]:
        """Embed several texts, preserving input order."""
        if not texts:
            return []

        results: list[list[float]] = []
        effective_batch_size = min(batch_size, self.MAX_BATCH_SIZE)
        for i in range(0, len(texts), effective_batch_size):
            batch = texts[i : i + effective_batch_size]
            response = await self.client.embeddings.create(model=self.model, input=batch)
            # Sort by index to maintain order
            results.extend(item.embedding for item in sorted(response.data, key=lambda x: x.index))

        logger.info("embedding_batch_completed", total_texts=len(texts))
        return results


def _normalize(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


class HashingEmbedder:
    """
    Deterministic local embedder.

    Identical texts map to identical vectors and texts sharing vocabulary
    land close together, which is all the merge and retrieval logic needs
    when no embedding provider is configured.
    """

    def __init__(self, dimension: int = 512) -> None:
        self.dimension = dimension

    def _bucket(self, feature: str) -> tuple[int, float]:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "big")
        return value % self.dimension, 1.0 if (value >> 63) & 1 else -1.0

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        words = [w for w in TOKEN.findall(_normalize(text)) if w not in STOPWORDS]
        for word in words:
            index, sign = self._bucket(f"w:{word}")
            vector[index] += sign * 2.0
            padded = f"#{word}#"
            for start in range(len(padded) - 2):
                index, sign = self._bucket(f"c:{padded[start:start + 3]}")
                vector[index] += sign * 0.5

        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector] if norm else vector

    async def embed_text(self, text: str) -> list[float]:
        return self.embed(text)
