"""
Application Settings.

Centralized configuration using Pydantic Settings with environment variable loading.
Every external provider is optional: the defaults run the whole engine in-process
with deterministic local collaborators.

Provider selection:
    text_service_provider="anthropic" requires anthropic_api_key
    vector_store_provider="pinecone" requires pinecone_api_key and openai_api_key
    document_store_provider="redis" requires redis_url
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # -------------------------------------------------------------------------
    # Memory Budgets (words)
    # -------------------------------------------------------------------------
    working_budget: int = Field(default=700, description="Words per session working memory")
    episodic_budget: int = Field(default=500, description="Words per conversation record")
    long_term_category_budget: int = Field(
        default=350, description="Words per long-term category"
    )
    long_term_total_budget: int = Field(
        default=1800, description="Informational total reported by stats"
    )

    # -------------------------------------------------------------------------
    # Curation Thresholds
    # -------------------------------------------------------------------------
    episodic_compression_trigger: float = Field(
        default=0.8, description="Fraction of episodic budget that triggers compression"
    )
    episodic_compression_target: float = Field(
        default=0.6, description="Fraction of episodic budget compression aims for"
    )
    min_impact_for_ltm: float = Field(default=0.7, description="Minimum impact to store long-term")
    min_impact_to_keep: float = Field(default=0.5, description="Retention floor for retrieval")
    merge_threshold: float = Field(default=0.85, description="Cosine similarity that merges items")
    duplicate_threshold: float = Field(
        default=0.9, description="Cosine similarity for batch duplicate consolidation"
    )
    refine_max_words: int = Field(default=60, description="Word ceiling for refined memories")
    description_max_words: int = Field(default=25, description="Word ceiling for category summaries")

    # -------------------------------------------------------------------------
    # Timing
    # -------------------------------------------------------------------------
    session_timeout_minutes: int = Field(default=40, description="Session inactivity timeout")
    session_sweep_interval_seconds: int = Field(
        default=300, description="Interval of the session expiry sweep"
    )
    episodic_inactivity_days: int = Field(
        default=30, description="Days without updates before an episodic record expires"
    )
    episodic_max_age_days: int = Field(
        default=90, description="Days without updates before an episodic record is deleted"
    )
    episodic_purge_interval_hours: int = Field(
        default=24, description="Interval of the episodic purge job"
    )

    # -------------------------------------------------------------------------
    # External Services
    # -------------------------------------------------------------------------
    external_timeout_seconds: float = Field(
        default=8.0, description="Timeout for embedding/refinement/summarization calls"
    )
    circuit_failure_threshold: int = Field(
        default=5, description="Failures before an external circuit opens"
    )
    circuit_recovery_timeout: float = Field(
        default=60.0, description="Seconds before an open circuit is retried"
    )

    # -------------------------------------------------------------------------
    # Providers
    # -------------------------------------------------------------------------
    text_service_provider: Literal["local", "anthropic"] = Field(
        default="local", description="Text refinement/summarization backend"
    )
    vector_store_provider: Literal["memory", "pinecone"] = Field(
        default="memory", description="Vector similarity backend"
    )
    document_store_provider: Literal["memory", "redis"] = Field(
        default="memory", description="Persistent document store backend"
    )

    # -------------------------------------------------------------------------
    # Anthropic (Claude LLM)
    # -------------------------------------------------------------------------
    anthropic_api_key: SecretStr | None = Field(
        default=None, description="Anthropic API key for Claude"
    )
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514", description="Claude model for text operations"
    )

    # -------------------------------------------------------------------------
    # Pinecone (Vector Store)
    # -------------------------------------------------------------------------
    pinecone_api_key: SecretStr | None = Field(default=None, description="Pinecone API key")
    pinecone_index_name: str = Field(
        default="finmem-long-term",
        description="Pinecone index name",
    )

    # -------------------------------------------------------------------------
    # OpenAI (Embeddings)
    # -------------------------------------------------------------------------
    openai_api_key: SecretStr | None = Field(
        default=None, description="OpenAI API key for embeddings"
    )
    embedding_model: str = Field(default="text-embedding-3-large", description="Embedding model")
    embedding_dimension: int = Field(default=3072, description="Embedding dimension")

    # -------------------------------------------------------------------------
    # Redis (Document Store)
    # -------------------------------------------------------------------------
    redis_url: str | None = Field(default=None, description="Redis connection URL")
    redis_key_prefix: str = Field(default="finmem", description="Prefix for Redis keys")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def session_timeout_seconds(self) -> float:
        return self.session_timeout_minutes * 60.0

    @model_validator(mode="after")
    def validate_provider_settings(self) -> "Settings":
        """Validate that selected providers have their credentials."""
        errors = []

        if self.text_service_provider == "anthropic" and not self.anthropic_api_key:
            errors.append("anthropic_api_key must be set when text_service_provider is 'anthropic'")

        if self.vector_store_provider == "pinecone":
            if not self.pinecone_api_key:
                errors.append("pinecone_api_key must be set when vector_store_provider is 'pinecone'")
            if not self.openai_api_key:
                errors.append("openai_api_key must be set when vector_store_provider is 'pinecone'")

        if self.document_store_provider == "redis" and not self.redis_url:
            errors.append("redis_url must be set when document_store_provider is 'redis'")

        if self.is_production and self.debug:
            errors.append("debug must be False in production")

        if not 0 < self.episodic_compression_target < self.episodic_compression_trigger <= 1:
            errors.append("episodic compression target must be below the trigger")

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")

        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings if needed.
    """
    return Settings()
