"""Monitoring: Prometheus metrics for the memory engine."""

from finmem.monitoring.metrics import (
    export_metrics,
    record_compression,
    record_eviction,
    record_fallback,
    record_rejection,
    track_external_call,
    track_memory_operation,
)

__all__ = [
    "export_metrics",
    "record_compression",
    "record_eviction",
    "record_fallback",
    "record_rejection",
    "track_external_call",
    "track_memory_operation",
]
