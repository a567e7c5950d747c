"""Unit tests for transition guard evaluation.

These tests do NOT require a database; they test the pure evaluation logic only.
"""

from __future__ import annotations

import uuid
from types import SimpleNamespace

from freecore.services.guard_evaluator import (
    MAX_GUARD_LENGTH,
    _COALESCE,
    _CONTAINS,
    _IF,
    _LOWER,
    _UPPER,
    build_guard_context,
    evaluate_guard,
)


def _instance(**overrides):
    values = {
        "context": {"amount": 75000, "discipline": "Structural", "tags": ["urgent"]},
        "entity_type": "change_order",
        "entity_id": "17",
        "project_id": uuid.UUID("00000000-0000-0000-0000-000000000001"),
        "status": "active",
        "version": 3,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


# ---------------------------------------------------------------------------
# Built-in functions
# ---------------------------------------------------------------------------


class TestFunctions:
    def test_if(self):
        assert _IF(True, "a", "b") == "a"
        assert _IF(None, "a", "b") == "b"

    def test_coalesce_skips_none(self):
        assert _COALESCE(None, None, 5) == 5
        assert _COALESCE(0, 5) == 0
        assert _COALESCE() is None

    def test_lower_upper_ignore_non_strings(self):
        assert _LOWER("MEP") == "mep"
        assert _UPPER("mep") == "MEP"
        assert _LOWER(None) is None
        assert _UPPER(42) is None

    def test_contains(self):
        assert _CONTAINS("structural steel", "steel")
        assert _CONTAINS(["a", "b"], "b")
        assert not _CONTAINS(None, "a")
        assert not _CONTAINS(12, "1")


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class TestBuildGuardContext:
    def test_flattens_context_and_instance_fields(self):
        names = build_guard_context(_instance(), "Value Check")
        assert names["amount"] == 75000
        assert names["context"]["discipline"] == "Structural"
        assert names["entity_type"] == "change_order"
        assert names["project_id"] == "00000000-0000-0000-0000-000000000001"
        assert names["stage"] == "Value Check"
        assert names["version"] == 3

    def test_instance_fields_win_over_context_keys(self):
        names = build_guard_context(_instance(context={"status": "spoofed"}))
        assert names["status"] == "active"
        assert names["context"]["status"] == "spoofed"

    def test_missing_context(self):
        names = build_guard_context(_instance(context=None))
        assert names["context"] == {}


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class TestEvaluateGuard:
    def test_empty_guard_holds(self):
        assert evaluate_guard(None, {}) is True
        assert evaluate_guard("   ", {}) is True

    def test_comparison(self):
        names = build_guard_context(_instance())
        assert evaluate_guard("amount > 50000", names) is True
        assert evaluate_guard("amount <= 50000", names) is False

    def test_functions(self):
        names = build_guard_context(_instance())
        assert evaluate_guard("CONTAINS(LOWER(discipline), 'struct')", names) is True
        assert evaluate_guard("'urgent' in tags", names) is True
        assert evaluate_guard("len(tags) == 1", names) is True

    def test_unknown_name_is_none(self):
        assert evaluate_guard("missing is None", {}) is True
        assert evaluate_guard("COALESCE(missing, 0) > 10", {}) is False

    def test_nested_context_access(self):
        names = build_guard_context(_instance())
        assert evaluate_guard("context['discipline'] == 'Structural'", names) is True

    def test_type_error_is_false(self):
        # None > 5 raises TypeError
        assert evaluate_guard("missing > 5", {}) is False

    def test_syntax_error_is_false(self):
        assert evaluate_guard("amount >", {"amount": 1}) is False

    def test_unknown_function_is_false(self):
        assert evaluate_guard("EXEC('rm -rf /')", {}) is False

    def test_division_by_zero_is_false(self):
        assert evaluate_guard("amount / 0 > 1", {"amount": 1}) is False

    def test_dunder_access_is_rejected(self):
        assert evaluate_guard("amount.__class__", {"amount": 1}) is False

    def test_overlong_guard_is_false(self):
        expr = "1 == 1 and " * (MAX_GUARD_LENGTH // 10) + "True"
        assert len(expr) > MAX_GUARD_LENGTH
        assert evaluate_guard(expr, {}) is False
