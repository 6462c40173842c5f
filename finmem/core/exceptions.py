"""
Core exception hierarchy for finmem.

Every error raised by the memory engine derives from FinMemError and is
categorized as retryable or permanent. Rejections by admission rules are
expected outcomes: callers log them at info level and move on.
"""

from typing import Any, Optional


# =============================================================================
# Base Exceptions
# =============================================================================


class FinMemError(Exception):
    """Base exception for all finmem errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class RetryableError(FinMemError):
    """
    Transient errors that may succeed on a later attempt.

    Examples: external service timeouts, open circuits.
    """

    pass


class PermanentError(FinMemError):
    """
    Errors that won't be fixed by retrying.

    Examples: forbidden content, missing records, budget violations.
    """

    pass


# =============================================================================
# Initialization Errors
# =============================================================================


class InitializationError(PermanentError):
    """Raised when a critical component fails to initialize."""

    def __init__(self, component: str, message: str, details: Optional[dict[str, Any]] = None):
        self.component = component
        super().__init__(f"[{component}] {message}", details)


class ConfigurationError(PermanentError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        details = {"config_key": config_key} if config_key else None
        super().__init__(message, details)


# =============================================================================
# Memory Errors
# =============================================================================


class MemoryRejectedError(PermanentError):
    """Raised when content is declined by an admission rule."""

    def __init__(self, reason: str, kind: Optional[str] = None):
        self.reason = reason
        self.kind = kind
        details = {"kind": kind} if kind else None
        super().__init__(f"Memory rejected: {reason}", details)


class BudgetExceededError(PermanentError):
    """Raised when content is still over budget after compression."""

    def __init__(self, tier: str, word_count: int, budget: int):
        self.tier = tier
        self.word_count = word_count
        self.budget = budget
        super().__init__(
            f"{tier} memory over budget: {word_count}/{budget} words",
            {"tier": tier, "word_count": word_count, "budget": budget},
        )


class MemoryNotFoundError(PermanentError):
    """Raised when operating on a record that does not exist."""

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}", {"entity": entity})


class SessionNotFoundError(MemoryNotFoundError):
    """Raised when a working-memory session is unknown or expired."""

    def __init__(self, session_id: str):
        super().__init__("session", session_id)


class MemoryAlreadyExistsError(PermanentError):
    """Raised when creating a record whose identifier is taken."""

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} already exists: {identifier}", {"entity": entity})


# =============================================================================
# External Service Errors
# =============================================================================


class ExternalServiceError(RetryableError):
    """Raised when an embedding, refinement or summarization call fails."""

    def __init__(self, service: str, message: str, details: Optional[dict[str, Any]] = None):
        self.service = service
        super().__init__(f"[{service}] {message}", details)


class ExternalServiceTimeoutError(ExternalServiceError):
    """Raised when an external call exceeds its time bound."""

    def __init__(self, service: str, timeout: float):
        self.timeout = timeout
        super().__init__(service, f"timed out after {timeout:.1f}s", {"timeout": timeout})


class VectorStoreError(ExternalServiceError):
    """Raised when the vector similarity service fails."""

    pass


# =============================================================================
# Circuit Breaker
# =============================================================================


class CircuitBreakerOpenError(RetryableError):
    """Raised when circuit breaker is open and blocking requests."""

    def __init__(self, service: str, recovery_time: float):
        self.service = service
        self.recovery_time = recovery_time
        super().__init__(
            f"Circuit breaker open for {service}. Recovery in {recovery_time:.1f}s",
            {"service": service, "recovery_time": recovery_time},
        )
