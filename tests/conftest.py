"""
Pytest Configuration and Shared Fixtures.

This module provides common fixtures for all tests:

- clean_environment: clears every settings variable from the process env
- settings: Settings with local providers and no .env lookup
- documents: fresh in-memory document store
- vector_store: in-memory vector store with the hashing embedder
- working_store / episodic_store / long_term_store: the three tiers
- accepting_curator: curator stub that accepts every candidate unchanged
- engine: MemoryEngine wired over the stores above
- make_item: factory for long-term MemoryItem records
"""

from datetime import datetime, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from finmem.config.settings import Settings
from finmem.knowledge.vector_store import InMemoryVectorStore
from finmem.memory.document_store import InMemoryDocumentStore
from finmem.memory.engine import MemoryEngine
from finmem.memory.episodic import EpisodicMemoryStore
from finmem.memory.long_term import LongTermMemoryStore
from finmem.memory.types import LTMCategory
from finmem.memory.word_counter import count_words
from finmem.memory.working import WorkingMemoryStore
from finmem.models.schemas import CurationResult, MemoryItem


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep exported keys and URLs from leaking into Settings."""
    for name in Settings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> Settings:
    """Settings using only local providers."""
    return Settings(_env_file=None)


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def working_store() -> WorkingMemoryStore:
    return WorkingMemoryStore()


@pytest.fixture
def episodic_store(documents) -> EpisodicMemoryStore:
    return EpisodicMemoryStore(documents)


@pytest.fixture
def accepting_curator() -> MagicMock:
    """Curator that accepts every candidate as-is with impact 0.8."""

    def accept(content, category, context=None):
        return CurationResult(
            accepted=True,
            reason="accepted",
            content=content,
            category=LTMCategory(category),
            impact_score=0.8,
        )

    curator = MagicMock()
    curator.curate = AsyncMock(side_effect=accept)
    return curator


@pytest.fixture
def long_term_store(documents, vector_store) -> LongTermMemoryStore:
    return LongTermMemoryStore(documents, vector_store=vector_store)


@pytest.fixture
def engine(working_store, episodic_store, long_term_store) -> MemoryEngine:
    return MemoryEngine(working_store, episodic_store, long_term_store)


@pytest.fixture
def make_item():
    """Factory for MemoryItem records."""

    def _make(
        content: str,
        category: LTMCategory = LTMCategory.INVESTIMENTOS,
        impact_score: float = 0.8,
        created_at: Optional[datetime] = None,
        **kwargs,
    ) -> MemoryItem:
        return MemoryItem(
            content=content,
            category=category,
            impact_score=impact_score,
            created_at=created_at or datetime.now(timezone.utc),
            word_count=count_words(content),
            **kwargs,
        )

    return _make
