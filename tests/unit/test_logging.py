"""Tests for structured logging and request ID propagation."""

import asyncio
import json
import logging
import sys

import pytest

from deployment_hpa_validator.observability.logging import (
    HealthProbeFilter,
    RequestIDFilter,
    StructuredFormatter,
    generate_request_id,
    get_request_id,
    set_request_id,
    setup_structured_logging,
)


def _record(message="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="deployment_hpa_validator.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestStructuredFormatter:
    def test_emits_json_with_structured_fields(self):
        record = _record(
            "Deployment default/web denied",
            request_id="abc12345",
            resource_type="Deployment",
            namespace="default",
            allowed=False,
            unrelated="dropped",
        )

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Deployment default/web denied"
        assert data["level"] == "INFO"
        assert data["logger"] == "deployment_hpa_validator.test"
        assert data["request_id"] == "abc12345"
        assert data["resource_type"] == "Deployment"
        assert data["namespace"] == "default"
        assert data["allowed"] is False
        assert "unrelated" not in data
        assert "timestamp" in data

    def test_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record(exc_info=sys.exc_info())

        data = json.loads(StructuredFormatter().format(record))

        assert "RuntimeError: boom" in data["exception"]


class TestRequestID:
    def test_generated_ids_are_short_and_distinct(self):
        first, second = generate_request_id(), generate_request_id()
        assert len(first) == 8
        assert first != second

    def test_filter_attaches_current_id(self):
        set_request_id("req-1")
        record = _record()

        assert RequestIDFilter().filter(record) is True
        assert record.request_id == "req-1"

    def test_filter_keeps_explicit_id(self):
        set_request_id("req-1")
        record = _record(request_id="explicit")

        RequestIDFilter().filter(record)

        assert record.request_id == "explicit"

    @pytest.mark.asyncio
    async def test_ids_are_isolated_per_task(self):
        async def handle(value):
            set_request_id(value)
            await asyncio.sleep(0)
            return get_request_id()

        results = await asyncio.gather(handle("a"), handle("b"))

        assert results == ["a", "b"]


class TestHealthProbeFilter:
    @pytest.mark.parametrize("path", ["/health", "/healthz", "/readyz", "/livez", "/metrics"])
    def test_suppresses_health_check_paths(self, path):
        assert HealthProbeFilter().filter(_record(path=path)) is False

    def test_keeps_admission_requests(self):
        assert HealthProbeFilter().filter(_record(path="/validate")) is True

    def test_matches_message_without_path(self):
        assert HealthProbeFilter().filter(_record("GET /readyz -> 200")) is False

    def test_disabled(self):
        assert HealthProbeFilter(suppress_health_logs=False).filter(_record(path="/healthz")) is True


class TestSetup:
    def test_json_handler_installed(self, restore_root_logger):
        setup_structured_logging(log_level="warn", log_format="json")

        root = restore_root_logger
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert isinstance(handler.formatter, StructuredFormatter)
        assert any(isinstance(f, HealthProbeFilter) for f in handler.filters)
        assert any(isinstance(f, RequestIDFilter) for f in handler.filters)

    def test_text_format_and_health_check_logging(self, restore_root_logger):
        setup_structured_logging(log_level="debug", log_format="text", log_health_probes=True)

        handler = restore_root_logger.handlers[0]
        assert restore_root_logger.level == logging.DEBUG
        assert not isinstance(handler.formatter, StructuredFormatter)
        assert not any(isinstance(f, HealthProbeFilter) for f in handler.filters)
