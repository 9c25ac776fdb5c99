"""
Structured logging setup using structlog.

Modules log through the standard library with `extra` context; the
processors below stamp each record with the service identity, the active
trace, and copy the record's community fields onto that trace's span.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace
from structlog.typing import EventDict, Processor, WrappedLogger

from helpqueue import __version__
from helpqueue.config import Settings, get_settings
from helpqueue.constants import SPAN_ATTRIBUTE_PREFIX, SPAN_LOG_FIELDS


class ServiceStamp:
    """Adds the service name and version to every record."""

    def __init__(self, service: str, version: str = __version__):
        self.service = service
        self.version = version

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", self.service)
        event_dict.setdefault("version", self.version)
        return event_dict


def link_trace(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Join a log record and the span that is active when it is written.

    The record gains `trace_id` and `span_id`; the span gains the record's
    server, queue, helper and command fields as `helpqueue.*` attributes.
    Must run after ExtraAdder so `extra` fields are visible.
    """
    span = trace.get_current_span()
    if not span.is_recording():
        return event_dict

    ctx = span.get_span_context()
    event_dict["trace_id"] = format(ctx.trace_id, "032x")
    event_dict["span_id"] = format(ctx.span_id, "016x")
    for field in SPAN_LOG_FIELDS:
        value = event_dict.get(field)
        if value is not None:
            span.set_attribute(f"{SPAN_ATTRIBUTE_PREFIX}.{field}", str(value))
    return event_dict


def build_processors(settings: Settings) -> list[Processor]:
    """Processors shared by structlog and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
        ServiceStamp(settings.otel_service_name),
        link_trace,
    ]


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        settings: Configuration to log with. The cached settings if omitted.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    shared_processors = build_processors(settings)

    if settings.log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


@contextmanager
def command_context(server_id: str, command: str) -> Iterator[None]:
    """
    Tag every record written inside the block with the server and command.

    Context bound by the caller is restored on exit, not cleared.
    """
    with structlog.contextvars.bound_contextvars(server_id=server_id, command=command):
        yield
