"""Unit tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from freecore.core.logging_config import JSONFormatter, configure_logging


def _record(**extra):
    record = logging.LogRecord(
        name="freecore.workflow",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Workflow %s: %s",
        args=("abc", "approve"),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "freecore.workflow"
        assert entry["message"] == "Workflow abc: approve"
        assert "timestamp" in entry

    def test_workflow_extras_are_carried(self):
        entry = json.loads(JSONFormatter().format(_record(instance_id="abc", action="approve")))
        assert entry["instance_id"] == "abc"
        assert entry["action"] == "approve"
        assert "entity_id" not in entry

    def test_automatic_flag_is_carried(self):
        entry = json.loads(JSONFormatter().format(_record(action="route", automatic=True)))
        assert entry["automatic"] is True

        entry = json.loads(JSONFormatter().format(_record(action="approve", automatic=False)))
        assert entry["automatic"] is False

    def test_exception_is_formatted(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_production_uses_json(self):
        configure_logging("production", "warning")
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_development_is_plain_text(self):
        configure_logging("development", "DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
