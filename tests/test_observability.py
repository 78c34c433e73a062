"""Tests for logging setup and tool call metrics."""

import json
import logging

from graphql_mcp.config import LoggingConfig
from graphql_mcp.observability import (
    JsonLogFormatter,
    MetricsCollector,
    ObservabilityContext,
    setup_logging,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("graphql_mcp", logging.INFO, __file__, 1, "call_tool: %s", ("q",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonLogFormatter:
    def test_basic_fields(self):
        data = json.loads(JsonLogFormatter().format(_record()))

        assert data["level"] == "info"
        assert data["logger"] == "graphql_mcp"
        assert data["msg"] == "call_tool: q"
        assert data["ts"].endswith("Z")

    def test_extra_fields(self):
        record = _record(correlation_id="abc123", tool="GetUser", latency_ms=1.5, session_id="s1")
        data = json.loads(JsonLogFormatter().format(record))

        assert data["cid"] == "abc123"
        assert data["tool"] == "GetUser"
        assert data["latency_ms"] == 1.5
        assert data["session_id"] == "s1"

    def test_correlation_id_can_be_dropped(self):
        record = _record(correlation_id="abc123")
        data = json.loads(JsonLogFormatter(include_correlation_id=False).format(record))
        assert "cid" not in data


class TestMetrics:
    def test_records_calls_and_errors(self):
        metrics = MetricsCollector()
        metrics.record_call("query-graphql", 10.0, success=True)
        metrics.record_call("query-graphql", 30.0, success=False)
        metrics.record_call("GetUser", 5.0, success=True)

        stats = metrics.get_stats()

        assert stats["total_requests"] == 3
        assert stats["total_errors"] == 1
        assert stats["tools"]["query-graphql"] == {
            "calls": 2,
            "errors": 1,
            "avg_ms": 20.0,
            "min_ms": 10.0,
            "max_ms": 30.0,
        }

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.record_call("GetUser", 5.0, success=True)
        metrics.reset()
        assert metrics.get_stats()["total_requests"] == 0

    def test_context_correlation_ids_are_unique(self):
        obs = ObservabilityContext()
        assert obs.correlation_id() != obs.correlation_id()


class TestSetupLogging:
    def test_json_format(self):
        logger = setup_logging(LoggingConfig(level="debug", format="json"), "graphql_mcp.test_json")

        assert logger.level == logging.DEBUG
        assert logger.propagate is False
        (handler,) = logger.handlers
        assert isinstance(handler.formatter, JsonLogFormatter)

    def test_text_format_replaces_handlers(self):
        name = "graphql_mcp.test_text"
        setup_logging(LoggingConfig(), name)
        logger = setup_logging(LoggingConfig(level="warning"), name)

        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
        assert not isinstance(logger.handlers[0].formatter, JsonLogFormatter)
