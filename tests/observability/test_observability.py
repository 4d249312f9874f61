"""
Tests for observability/ - log rendering and startup spans.
"""
import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

import observability.tracing as tracing
from core.errors import FatalStorageError
from observability.logging import LogContext, get_logger, prefix_component
from observability.tracing import create_span


class TestLogging:

    def test_component_prefix(self):
        event = prefix_component(None, "info", {"event": "Port 80 requires elevated privileges",
                                                "component": "Express"})

        assert event == {"event": "Express: Port 80 requires elevated privileges"}

    def test_without_component(self):
        assert prefix_component(None, "info", {"event": "plain"}) == {"event": "plain"}

    def test_positional_arguments_and_context(self, caplog):
        logger = get_logger("maildeck.test")

        with LogContext(stage="bind:trusted"):
            logger.info("WWW server [%s] listening on %s", "trusted", "port 3000", component="Express")
        logger.info("after")

        lines = caplog.text.splitlines()
        assert "Express: WWW server [trusted] listening on port 3000" in lines[0]
        assert "stage=bind:trusted" in lines[0]
        assert "stage=" not in lines[1]


@pytest.fixture
def spans(monkeypatch):
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(tracing, "_provider", provider)
    yield exporter
    provider.shutdown()


class TestCreateSpan:

    def test_attributes_recorded(self, spans):
        with create_span("bootstrap.check_storage", attributes={"stage.index": 0}):
            pass

        (span,) = spans.get_finished_spans()
        assert span.name == "bootstrap.check_storage"
        assert span.attributes["stage.index"] == 0

    def test_failure_marks_span(self, spans):
        with pytest.raises(FatalStorageError):
            with create_span("bootstrap.check_storage"):
                raise FatalStorageError("connect ECONNREFUSED")

        (span,) = spans.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["error.code"] == "FATAL_STORAGE_ERROR"
