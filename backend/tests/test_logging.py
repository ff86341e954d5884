"""
Unit tests for structured logging configuration.

Tests verify:
- JSON output carries the event, custom fields and service name
- Correlation IDs (trace_id, request_id) are bound, read back and merged into entries
- pipeline_context tags entries with the orchestrator node and attempt
- ID generation produces unique UUID4 strings
"""
import json
import logging
from io import StringIO

import pytest

from pathways.core import logging as pathway_logging
from pathways.core.logging import (
    add_service_name,
    configure_logging,
    generate_request_id,
    generate_trace_id,
    get_logger,
    get_request_id,
    get_trace_id,
    pipeline_context,
    request_context,
    set_request_id,
    set_trace_id,
)


@pytest.fixture
def captured_output():
    """Route the root logger to a buffer for one test."""
    output = StringIO()
    root_logger = logging.getLogger()
    previous_handlers = list(root_logger.handlers)
    root_logger.handlers.clear()
    handler = logging.StreamHandler(output)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)
    yield output
    root_logger.removeHandler(handler)
    root_logger.handlers.extend(previous_handlers)


@pytest.fixture(autouse=True)
def clear_context():
    yield
    set_trace_id(None)
    set_request_id(None)


class TestLoggingConfiguration:
    """Test logging configuration and setup."""

    def test_configure_logging_json_output(self, captured_output):
        configure_logging(log_level="INFO", json_output=True)
        logger = get_logger("tests.json_output")

        logger.info("test_message", test_field="test_value")

        line = captured_output.getvalue().strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["event"] == "test_message"
        assert entry["test_field"] == "test_value"
        assert entry["service"] == "pathways_api"
        assert entry["level"] == "info"

    def test_configure_logging_console_output(self):
        configure_logging(log_level="INFO", json_output=False)
        get_logger(__name__).info("test_message", test_field="test_value")

    def test_service_name_can_be_overridden(self):
        original = pathway_logging.SERVICE_NAME
        try:
            configure_logging(log_level="INFO", service_name="pathways_worker")
            assert pathway_logging.SERVICE_NAME == "pathways_worker"
        finally:
            configure_logging(log_level="INFO", service_name=original)


class TestContextVariables:
    """Correlation IDs bound into structlog's context."""

    def test_set_and_get_trace_id(self):
        set_trace_id("test-trace-123")
        assert get_trace_id() == "test-trace-123"

        set_trace_id(None)
        assert get_trace_id() is None

    def test_set_and_get_request_id(self):
        set_request_id("test-request-456")
        assert get_request_id() == "test-request-456"

    def test_request_context_restores_previous_ids(self):
        set_trace_id("outer")

        with request_context("inner-trace", "inner-request"):
            assert get_trace_id() == "inner-trace"
            assert get_request_id() == "inner-request"

        assert get_trace_id() == "outer"
        assert get_request_id() is None

    def test_generated_ids_are_unique_uuids(self):
        trace_id = generate_trace_id()
        request_id = generate_request_id()

        for value in (trace_id, request_id):
            assert isinstance(value, str)
            assert len(value) == 36
            assert value.count("-") == 4
        assert trace_id != generate_trace_id()
        assert request_id != generate_request_id()


class TestEntryEnrichment:
    def test_add_service_name(self):
        entry = add_service_name(None, "info", {"event": "x"})

        assert entry["service"] == pathway_logging.SERVICE_NAME

    def test_entries_carry_request_ids(self, captured_output):
        configure_logging(log_level="INFO", json_output=True)

        with request_context("trace-1", "request-1"):
            get_logger("tests.request_ids").info("inside_request")

        entry = json.loads(captured_output.getvalue().strip().splitlines()[-1])
        assert entry["trace_id"] == "trace-1"
        assert entry["request_id"] == "request-1"
        assert "timestamp" in entry

    def test_entries_carry_pipeline_node(self, captured_output):
        configure_logging(log_level="INFO", json_output=True)
        logger = get_logger("tests.pipeline_node")

        with pipeline_context("verify", 2):
            logger.info("inside_node")
            logger.info("explicit_attempt", attempt=3)
        logger.info("outside_node")

        inside, explicit, outside = [
            json.loads(line) for line in captured_output.getvalue().strip().splitlines()[-3:]
        ]
        assert (inside["node"], inside["attempt"]) == ("verify", 2)
        assert explicit["attempt"] == 3
        assert "node" not in outside

    def test_exception_logging(self):
        configure_logging(log_level="ERROR", json_output=False)
        logger = get_logger(__name__)

        try:
            raise ValueError("Test exception")
        except ValueError:
            logger.error("exception_occurred", exc_info=True)
