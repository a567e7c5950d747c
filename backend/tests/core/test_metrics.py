"""Unit tests for freecore.core.metrics: Prometheus metric definitions.

These tests do NOT require a database; they verify metric objects exist and
accept their label sets.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Info

from freecore.core.metrics import (
    app_info,
    db_pool_checked_in,
    db_pool_checked_out,
    db_pool_overflow,
    db_pool_size,
    workflow_operation_failures_total,
    workflow_transitions_total,
)


class TestMetricTypes:
    def test_app_info_is_info(self):
        assert isinstance(app_info, Info)

    def test_workflow_counters(self):
        assert isinstance(workflow_transitions_total, Counter)
        assert isinstance(workflow_operation_failures_total, Counter)

    def test_db_pool_gauges(self):
        for gauge in (db_pool_size, db_pool_checked_in, db_pool_checked_out, db_pool_overflow):
            assert isinstance(gauge, Gauge)


class TestMetricLabels:
    def test_transition_labels(self):
        # Should not raise
        workflow_transitions_total.labels(template="Drawing Review", action="approve", trigger="manual")

    def test_failure_labels(self):
        workflow_operation_failures_total.labels(operation="transition", error="ERR_CONFLICT")
