"""
MAILDECK - Startup Tracing with OpenTelemetry

Every bootstrap stage runs inside a span named `bootstrap.<stage>`, so a slow
or failing startup can be inspected stage by stage. Tracing is off unless
OTEL_TRACING_ENABLED=true; the spans are then no-ops.

Usage:
    from observability.tracing import setup_tracing, create_span

    setup_tracing(TracingConfig(service_name="maildeck"))

    with create_span("bootstrap.check_storage", attributes={"stage.index": 0}):
        ...
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.trace import SpanKind, Status, StatusCode

_provider: Optional[trace.TracerProvider] = None


@dataclass
class TracingConfig:
    service_name: str = "maildeck"
    service_version: str = "2.0.0"
    enabled: bool = field(
        default_factory=lambda: os.getenv("OTEL_TRACING_ENABLED", "false").lower() == "true"
    )
    otlp_endpoint: str = field(default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", ""))
    # Print spans to stdout; handy when debugging a hanging startup
    console_export: bool = field(
        default_factory=lambda: os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"
    )
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))


def setup_tracing(config: Optional[TracingConfig] = None) -> trace.TracerProvider:
    """Install the tracer provider once per process; later calls return it."""
    global _provider

    if _provider is not None:
        return _provider

    config = config or TracingConfig()
    if not config.enabled:
        _provider = trace.NoOpTracerProvider()
        return _provider

    provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: config.service_name,
        SERVICE_VERSION: config.service_version,
        "deployment.environment": config.environment,
    }))
    if config.otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True))
        )
    if config.console_export:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str = "maildeck.bootstrap") -> trace.Tracer:
    return (_provider or setup_tracing()).get_tracer(name, TracingConfig.service_version)


def shutdown_tracing() -> None:
    """Flush pending spans; the next setup_tracing() installs a fresh provider."""
    global _provider
    if isinstance(_provider, TracerProvider):
        _provider.shutdown()
    _provider = None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[Dict[str, Any]] = None,
    kind: SpanKind = SpanKind.INTERNAL,
) -> Iterator[trace.Span]:
    """
    Span around one unit of startup work.

    A failure marks the span as errored and carries the error code of a
    MAILDECK error; the exception itself propagates unchanged.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name, kind=kind, attributes=attributes,
        record_exception=False, set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except BaseException as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            code = getattr(e, "error_code", None)
            if code:
                span.set_attribute("error.code", code)
            raise
