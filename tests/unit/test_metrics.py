"""Unit tests for Prometheus metric helpers."""

import pytest
from prometheus_client import REGISTRY

from finmem.monitoring.metrics import (
    export_metrics,
    record_compression,
    record_eviction,
    record_rejection,
    track_memory_operation,
    update_circuit_breaker_state,
)


def sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricHelpers:
    """Test counters move the way callers expect."""

    def test_track_memory_operation_counts_errors(self):
        labels = {"tier": "working", "operation": "metrics_test"}
        before = sample("finmem_memory_operations_total", status="error", **labels)

        with pytest.raises(ValueError):
            with track_memory_operation("working", "metrics_test"):
                raise ValueError("boom")

        assert sample("finmem_memory_operations_total", status="error", **labels) == before + 1

    def test_rejection_and_eviction(self):
        rejected = sample("finmem_memory_rejections_total", tier="long_term", reason="metrics_test")
        evicted = sample("finmem_memory_evictions_total", tier="episodic")

        record_rejection("long_term", "metrics_test")
        record_eviction("episodic", 3)
        record_eviction("episodic", 0)

        assert sample("finmem_memory_rejections_total", tier="long_term", reason="metrics_test") == rejected + 1
        assert sample("finmem_memory_evictions_total", tier="episodic") == evicted + 3

    def test_compression_never_observes_negative_savings(self):
        before = sample("finmem_compression_words_saved_sum", tier="metrics_test")

        record_compression("metrics_test", 100, 120)

        assert sample("finmem_compression_words_saved_sum", tier="metrics_test") == before

    def test_circuit_state_gauge_and_export(self):
        update_circuit_breaker_state("metrics_test", "open")

        assert sample("finmem_circuit_breaker_state", service="metrics_test") == 2
        assert b"finmem_circuit_breaker_state" in export_metrics()
