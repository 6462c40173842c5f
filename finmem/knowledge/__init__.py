"""
Knowledge layer: embeddings and vector similarity for long-term memory.
"""

from finmem.knowledge.embeddings import (
    Embedder,
    EmbeddingsService,
    HashingEmbedder,
    cosine_similarity,
)
from finmem.knowledge.pinecone_client import PineconeClient
from finmem.knowledge.vector_store import (
    InMemoryVectorStore,
    PineconeVectorStore,
    ResilientVectorStore,
    VectorStore,
    create_vector_store,
    namespace_for,
)

__all__ = [
    "Embedder",
    "EmbeddingsService",
    "HashingEmbedder",
    "cosine_similarity",
    "PineconeClient",
    "VectorStore",
    "InMemoryVectorStore",
    "PineconeVectorStore",
    "ResilientVectorStore",
    "create_vector_store",
    "namespace_for",
]
