"""Prometheus metric definitions for the FreeCore workflow engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Info

# ── Application info ────────────────────────────────────────────────
app_info = Info("freecore", "FreeCore workflow engine metadata")

# ── Workflow metrics ────────────────────────────────────────────────
workflow_transitions_total = Counter(
    "workflow_transitions_total",
    "History entries appended, by template, action and trigger",
    ["template", "action", "trigger"],  # trigger: start/manual/automatic/cancel
)

workflow_operation_failures_total = Counter(
    "workflow_operation_failures_total",
    "Rejected workflow operations by operation and error code",
    ["operation", "error"],
)

# ── Database pool metrics ───────────────────────────────────────────
db_pool_size = Gauge("db_pool_size", "Current number of connections in the pool")
db_pool_checked_in = Gauge("db_pool_checked_in", "Connections currently idle in the pool")
db_pool_checked_out = Gauge("db_pool_checked_out", "Connections currently in use")
db_pool_overflow = Gauge("db_pool_overflow", "Current overflow connections beyond pool_size")
