"""
Prometheus metrics for finmem observability.

Tracks memory-tier operations, admission rejections, evictions, compressions
and the health of external collaborators.

Usage:
    from finmem.monitoring.metrics import track_memory_operation

    with track_memory_operation("episodic", "update"):
        await store.update(chat_id, content)

    # Or manually
    MEMORY_REJECTIONS.labels(tier="long_term", reason="low_impact").inc()
"""

import time
from contextlib import contextmanager
from typing import Generator

from prometheus_client import Counter, Gauge, Histogram, generate_latest


# =============================================================================
# Metric Definitions
# =============================================================================

# Memory tier metrics
MEMORY_OPERATIONS = Counter(
    "finmem_memory_operations_total",
    "Total memory store operations",
    ["tier", "operation", "status"],
)

MEMORY_OPERATION_LATENCY = Histogram(
    "finmem_memory_operation_latency_seconds",
    "Latency of memory store operations",
    ["tier", "operation"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

MEMORY_REJECTIONS = Counter(
    "finmem_memory_rejections_total",
    "Writes declined by admission rules or curation",
    ["tier", "reason"],
)

MEMORY_EVICTIONS = Counter(
    "finmem_memory_evictions_total",
    "Entries evicted to restore a word budget",
    ["tier"],
)

MEMORY_MERGES = Counter(
    "finmem_memory_merges_total",
    "Long-term proposals merged into an existing item",
)

# Compression metrics
COMPRESSIONS = Counter(
    "finmem_compressions_total",
    "Structured content compressions",
    ["tier"],
)

COMPRESSION_WORDS_SAVED = Histogram(
    "finmem_compression_words_saved",
    "Words removed by a compression",
    ["tier"],
    buckets=[10, 25, 50, 100, 200, 400, 800],
)

# External collaborator metrics
EXTERNAL_CALL_LATENCY = Histogram(
    "finmem_external_call_latency_seconds",
    "Latency of text service and vector store calls",
    ["service", "operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

EXTERNAL_FALLBACKS = Counter(
    "finmem_external_fallbacks_total",
    "Calls answered by the local deterministic fallback",
    ["service", "operation"],
)

# Background processing
BACKGROUND_TASKS = Counter(
    "finmem_background_tasks_total",
    "Interaction processing tasks by outcome",
    ["status"],
)

ACTIVE_SESSIONS = Gauge(
    "finmem_active_sessions",
    "Sessions currently holding working memory",
)

# Circuit breaker metrics
CIRCUIT_BREAKER_STATE = Gauge(
    "finmem_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["service"],
)

CIRCUIT_BREAKER_FAILURES = Counter(
    "finmem_circuit_breaker_failures_total",
    "Total failures recorded by circuit breakers",
    ["service"],
)


# =============================================================================
# Tracking Context Managers
# =============================================================================


@contextmanager
def track_memory_operation(tier: str, operation: str) -> Generator[None, None, None]:
    """
    Context manager to track a memory store operation.

    Usage:
        with track_memory_operation("working", "set"):
            ...
    """
    start_time = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time
        MEMORY_OPERATIONS.labels(tier=tier, operation=operation, status=status).inc()
        MEMORY_OPERATION_LATENCY.labels(tier=tier, operation=operation).observe(duration)


@contextmanager
def track_external_call(service: str, operation: str) -> Generator[None, None, None]:
    """Context manager to time a call to an external collaborator."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        EXTERNAL_CALL_LATENCY.labels(service=service, operation=operation).observe(
            time.perf_counter() - start_time
        )


def record_rejection(tier: str, reason: str) -> None:
    MEMORY_REJECTIONS.labels(tier=tier, reason=reason).inc()


def record_eviction(tier: str, count: int = 1) -> None:
    if count > 0:
        MEMORY_EVICTIONS.labels(tier=tier).inc(count)


def record_compression(tier: str, words_before: int, words_after: int) -> None:
    COMPRESSIONS.labels(tier=tier).inc()
    COMPRESSION_WORDS_SAVED.labels(tier=tier).observe(max(0, words_before - words_after))


def record_fallback(service: str, operation: str) -> None:
    EXTERNAL_FALLBACKS.labels(service=service, operation=operation).inc()


def update_circuit_breaker_state(service: str, state: str) -> None:
    """
    Update circuit breaker state gauge.

    Args:
        service: Service name
        state: Circuit state ("closed", "half_open", "open")
    """
    state_map = {"closed": 0, "half_open": 1, "open": 2}
    CIRCUIT_BREAKER_STATE.labels(service=service).set(state_map.get(state, 0))


def record_circuit_breaker_failure(service: str) -> None:
    """Record a circuit breaker failure."""
    CIRCUIT_BREAKER_FAILURES.labels(service=service).inc()


def export_metrics() -> bytes:
    """Render all metrics in the Prometheus text exposition format."""
    return generate_latest()
