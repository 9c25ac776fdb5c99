"""
OpenTelemetry tracing for command dispatch and periodic updates.

Spans carry `helpqueue.*` attributes so a trace can be filtered by server,
queue or command the same way the logs can.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from helpqueue import __version__
from helpqueue.config import Settings, get_settings
from helpqueue.constants import SPAN_ATTRIBUTE_PREFIX, UNTRACED_PATHS

_tracer: Tracer | None = None


def build_resource(settings: Settings) -> Resource:
    """Resource identifying this deployment."""
    return Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            SERVICE_VERSION: __version__,
            f"{SPAN_ATTRIBUTE_PREFIX}.periodic_update_interval_seconds": (
                settings.periodic_update_interval_seconds
            ),
            f"{SPAN_ATTRIBUTE_PREFIX}.extensions_disabled": settings.disable_extensions,
        }
    )


def setup_tracing(settings: Settings | None = None) -> Tracer:
    """
    Install the tracer provider.

    Spans are exported over OTLP when tracing is enabled; otherwise the
    provider records them for in-process consumers only.

    Args:
        settings: Configuration to trace with. The cached settings if omitted.

    Returns:
        Tracer: The tracer the dispatcher and updater use.
    """
    global _tracer

    settings = settings or get_settings()
    provider = TracerProvider(resource=build_resource(settings))
    if settings.tracing_enabled:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _tracer = provider.get_tracer(settings.otel_service_name, __version__)
    return _tracer


def instrument_fastapi(app: Any) -> None:
    """Trace every request except health checks and metric scrapes."""
    excluded = ",".join(f"{path}$" for path in UNTRACED_PATHS)
    FastAPIInstrumentor.instrument_app(app, excluded_urls=excluded)


def get_tracer() -> Tracer:
    """
    Get the tracer instance.

    Before setup_tracing() runs this is a tracer from the global provider,
    which is a no-op unless something else installed one.
    """
    if _tracer is None:
        return trace.get_tracer(get_settings().otel_service_name, __version__)
    return _tracer


def annotate(span: Span, **attributes: Any) -> None:
    """Set `helpqueue.<key>` attributes on a span, skipping None values."""
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(f"{SPAN_ATTRIBUTE_PREFIX}.{key}", value)


@contextmanager
def traced_span(name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a new span.

    Example:
        with traced_span(SPAN_PERIODIC_UPDATE, servers=3) as span:
            ...
            annotate(span, failures=0)
    """
    with get_tracer().start_as_current_span(name) as span:
        annotate(span, **attributes)
        yield span
