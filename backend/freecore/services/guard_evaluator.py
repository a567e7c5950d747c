"""
Sandboxed evaluation of transition guards using simpleeval.

A guard is a boolean expression stored on a transition
(``workflow_transitions.guard_expr``), e.g. ``amount > 50000`` or
``CONTAINS(LOWER(discipline), 'structural')``. It is evaluated against the
instance context: the JSON ``context`` supplied when the workflow started,
plus a few instance fields (``entity_type``, ``entity_id``, ``project_id``,
``status``, ``stage``, ``version``).

Unknown names evaluate to ``None`` so guards may test for optional data.
Anything that fails to evaluate counts as "guard not satisfied".
"""
from __future__ import annotations

import logging
from typing import Any

from simpleeval import EvalWithCompoundTypes, InvalidExpression

logger = logging.getLogger("freecore.guards")

MAX_GUARD_LENGTH = 1000


# ── Built-in functions ────────────────────────────────────────────────


def _IF(condition: Any, true_val: Any, false_val: Any) -> Any:  # noqa: N802
    return true_val if condition else false_val


def _COALESCE(*args: Any) -> Any:  # noqa: N802
    for a in args:
        if a is not None:
            return a
    return None


def _LOWER(s: str | None) -> str | None:  # noqa: N802
    return s.lower() if isinstance(s, str) else None


def _UPPER(s: str | None) -> str | None:  # noqa: N802
    return s.upper() if isinstance(s, str) else None


def _CONTAINS(s: Any, sub: Any) -> bool:  # noqa: N802
    if isinstance(s, (str, list, tuple, dict)):
        return sub in s
    return False


GUARD_FUNCTIONS = {
    "IF": _IF,
    "COALESCE": _COALESCE,
    "LOWER": _LOWER,
    "UPPER": _UPPER,
    "CONTAINS": _CONTAINS,
    "len": len,
}


class _GuardNames(dict):
    """Name table where unknown identifiers resolve to None."""

    def __missing__(self, key: str) -> None:
        return None


def build_guard_context(instance: Any, stage_name: str | None = None) -> dict[str, Any]:
    """Flatten an instance into the names a guard can see."""
    names: dict[str, Any] = dict(instance.context or {})
    names.update(
        {
            "context": dict(instance.context or {}),
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "project_id": str(instance.project_id) if instance.project_id else None,
            "status": instance.status,
            "stage": stage_name,
            "version": instance.version,
        }
    )
    return names


def evaluate_guard(expr: str | None, context: dict[str, Any]) -> bool:
    """Return True if the guard holds (a missing guard always holds)."""
    if not expr or not expr.strip():
        return True
    if len(expr) > MAX_GUARD_LENGTH:
        logger.warning("Guard expression exceeds %d characters; treated as false", MAX_GUARD_LENGTH)
        return False

    evaluator = EvalWithCompoundTypes(functions=GUARD_FUNCTIONS, names=_GuardNames(context))
    try:
        return bool(evaluator.eval(expr))
    except (
        InvalidExpression,
        SyntaxError,
        AttributeError,
        KeyError,
        IndexError,
        TypeError,
        ValueError,
        ZeroDivisionError,
    ) as exc:
        logger.warning("Guard %r could not be evaluated: %s", expr, exc)
        return False
