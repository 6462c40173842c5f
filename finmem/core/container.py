"""
Dependency Injection Container for finmem.

Builds the memory engine and its collaborators from Settings, with lazy
initialization and explicit lifecycle management. There is no global
instance: the application creates one container and passes the engine
by reference.

Usage:
    container = DependencyContainer(settings)
    await container.initialize()

    engine = container.engine
    ...

    await container.shutdown()
"""

from __future__ import annotations

from typing import Optional

import structlog

from finmem.config.settings import Settings, get_settings
from finmem.core.exceptions import InitializationError
from finmem.knowledge.vector_store import VectorStore, create_vector_store
from finmem.memory.curator import MemoryCurator
from finmem.memory.document_store import DocumentStore, create_document_store
from finmem.memory.engine import MemoryEngine
from finmem.memory.episodic import EpisodicMemoryStore
from finmem.memory.interaction import InteractionClassifier
from finmem.memory.long_term import LongTermMemoryStore
from finmem.memory.working import WorkingMemoryStore
from finmem.scheduler.scheduler import MemoryScheduler
from finmem.services.text_service import TextService, create_text_service

logger = structlog.get_logger(__name__)


class DependencyContainer:
    """
    Central container for the engine's dependencies.

    The document store needs an async connection and is created in
    initialize(); everything else is created on first access.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._documents: Optional[DocumentStore] = None
        self._vector_store: Optional[VectorStore] = None
        self._text_service: Optional[TextService] = None
        self._engine: Optional[MemoryEngine] = None
        self._initialized = False

        logger.info("dependency_container_created", app_env=self._settings.app_env)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def documents(self) -> DocumentStore:
        if self._documents is None:
            raise RuntimeError("Document store not initialized. Call initialize() first.")
        return self._documents

    @property
    def vector_store(self) -> VectorStore:
        if self._vector_store is None:
            self._vector_store = create_vector_store(self._settings)
        return self._vector_store

    @property
    def text_service(self) -> TextService:
        if self._text_service is None:
            self._text_service = create_text_service(self._settings)
        return self._text_service

    @property
    def engine(self) -> MemoryEngine:
        """
        Get the memory engine (lazy construction).

        Raises:
            InitializationError: If the engine cannot be assembled.
        """
        if self._engine is None:
            s = self._settings
            try:
                working = WorkingMemoryStore(
                    budget=s.working_budget,
                    session_timeout_seconds=s.session_timeout_seconds,
                )
                episodic = EpisodicMemoryStore(
                    self.documents,
                    budget=s.episodic_budget,
                    compression_trigger=s.episodic_compression_trigger,
                    compression_target=s.episodic_compression_target,
                    inactivity_days=s.episodic_inactivity_days,
                    max_age_days=s.episodic_max_age_days,
                    text_service=self.text_service,
                )
                curator = MemoryCurator(
                    self.text_service,
                    min_impact=s.min_impact_for_ltm,
                    max_words=s.refine_max_words,
                )
                long_term = LongTermMemoryStore(
                    self.documents,
                    vector_store=self.vector_store,
                    text_service=self.text_service,
                    curator=curator,
                    category_budget=s.long_term_category_budget,
                    total_budget=s.long_term_total_budget,
                    merge_threshold=s.merge_threshold,
                    duplicate_threshold=s.duplicate_threshold,
                )
                scheduler = MemoryScheduler(
                    working,
                    episodic,
                    sweep_interval_seconds=s.session_sweep_interval_seconds,
                    purge_interval_hours=s.episodic_purge_interval_hours,
                )
                self._engine = MemoryEngine(
                    working,
                    episodic,
                    long_term,
                    classifier=InteractionClassifier(text_service=self.text_service),
                    scheduler=scheduler,
                )
                logger.info("memory_engine_created")
            except RuntimeError:
                raise
            except Exception as e:
                logger.error("memory_engine_creation_failed", error=str(e))
                raise InitializationError("MemoryEngine", f"Failed to create memory engine: {e}")
        return self._engine

    async def initialize(self, start_scheduler: bool = True) -> None:
        """
        Connect backends and start background jobs.

        Raises:
            InitializationError: If any component fails to initialize.
        """
        if self._initialized:
            logger.warning("container_already_initialized")
            return

        logger.info("container_initializing")
        try:
            self._documents = await create_document_store(self._settings)
            engine = self.engine
            if start_scheduler:
                await engine.start()
        except InitializationError:
            raise
        except Exception as e:
            logger.error(
                "container_initialization_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise InitializationError("DependencyContainer", f"Failed to initialize dependencies: {e}")

        self._initialized = True
        logger.info("container_initialized")

    async def shutdown(self) -> None:
        """Stop background work and close connections."""
        logger.info("container_shutting_down")

        if self._engine is not None:
            try:
                await self._engine.stop()
            except Exception as e:
                logger.error("engine_stop_error", error=str(e))

        if self._documents is not None:
            try:
                await self._documents.close()
            except Exception as e:
                logger.error("document_store_close_error", error=str(e))

        self._initialized = False
        logger.info("container_shutdown_complete")
