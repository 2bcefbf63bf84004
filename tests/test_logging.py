"""Tests for the structured logging system (approval_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.exceptions import DocumentsIncompleteError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite default."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "approval_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        project_id = uuid4()
        get_logger("test").info(
            "project_created",
            extra={"project_id": project_id, "levels": ("finance", "executive")},
        )

        record = _parse_all_logs(stream)[0]
        assert record["project_id"] == str(project_id)
        assert record["levels"] == ["finance", "executive"]

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise DocumentsIncompleteError("p-1", ("charter",))
        except DocumentsIncompleteError:
            get_logger("test").exception("approve_failed")

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "DocumentsIncompleteError"
        assert record["exc_code"] == "DOCUMENTS_INCOMPLETE"
        assert record["exc_missing_count"] == 1
        assert "traceback" in record

    def test_configure_is_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        get_logger("test").info("once")
        assert len(_parse_all_logs(stream)) == 1

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        get_logger("test").info("hidden")
        get_logger("test").warning("shown")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_context_fields_added(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(project_id="p-1", actor_id="a-1", command="approve")
        get_logger("test").info("with_context")

        record = _parse_all_logs(stream)[0]
        assert record["project_id"] == "p-1"
        assert record["actor_id"] == "a-1"
        assert record["command"] == "approve"

    def test_bind_restores_previous_values(self):
        LogContext.set(command="outer")
        with LogContext.bind(command="inner", project_id="p-2"):
            assert LogContext.get_all() == {"command": "inner", "project_id": "p-2"}
        assert LogContext.get_all() == {"command": "outer"}

    def test_clear(self):
        LogContext.set(correlation_id="c-1")
        LogContext.clear()
        assert LogContext.get_all() == {}
