"""Core infrastructure: exceptions, circuit breaker, locks and dependency wiring."""

from finmem.core.circuit_breaker import CircuitBreaker, CircuitState
from finmem.core.exceptions import (
    BudgetExceededError,
    CircuitBreakerOpenError,
    ConfigurationError,
    ExternalServiceError,
    ExternalServiceTimeoutError,
    FinMemError,
    InitializationError,
    MemoryAlreadyExistsError,
    MemoryNotFoundError,
    MemoryRejectedError,
    PermanentError,
    RetryableError,
    SessionNotFoundError,
    VectorStoreError,
)
from finmem.core.locks import KeyedLocks

__all__ = [
    "BudgetExceededError",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitState",
    "ConfigurationError",
    "ExternalServiceError",
    "ExternalServiceTimeoutError",
    "FinMemError",
    "InitializationError",
    "KeyedLocks",
    "MemoryAlreadyExistsError",
    "MemoryNotFoundError",
    "MemoryRejectedError",
    "PermanentError",
    "RetryableError",
    "SessionNotFoundError",
    "VectorStoreError",
]
