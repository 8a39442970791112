"""OpenTelemetry spans for filtered deliveries.

Every delivery is handled inside a ``filter_message`` consumer span. When the
publisher put a W3C ``traceparent`` header on the message, the span joins that
trace. Nothing is exported until ``start_tracing()`` installs a provider
(``RELAY_TRACING=console``); before that the API hands out no-op spans.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from opentelemetry import context, trace  # type: ignore
from opentelemetry.propagate import extract  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter  # type: ignore
from opentelemetry.trace import Span, SpanKind, Tracer  # type: ignore

from rabbit_hole.constants import SERVICE_NAME


# The only message headers the relay reads for tracing
TRACE_HEADERS = ("traceparent", "tracestate")


def build_provider(exporter: Optional[SpanExporter] = None) -> TracerProvider:
    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    provider.add_span_processor(SimpleSpanProcessor(exporter or ConsoleSpanExporter()))
    return provider


def start_tracing(exporter: Optional[SpanExporter] = None) -> Tracer:
    """Install the relay's provider globally; spans go to stdout unless an exporter is given."""
    provider = build_provider(exporter)
    trace.set_tracer_provider(provider)
    return provider.get_tracer(SERVICE_NAME)


def get_tracer() -> Tracer:
    return trace.get_tracer(SERVICE_NAME)


def trace_carrier(headers: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Pick the W3C trace headers out of AMQP headers, decoding bytes values."""
    carrier: dict[str, str] = {}
    for name, value in (headers or {}).items():
        key = str(name).lower()
        if key not in TRACE_HEADERS:
            continue
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        carrier[key] = str(value)
    return carrier


@contextmanager
def delivery_span(tracer: Tracer, queue_name: str, headers: Optional[Mapping[str, Any]]) -> Iterator[Span]:
    """Open the ``filter_message`` span for one delivery, parented on its trace headers."""
    token = context.attach(extract(trace_carrier(headers)))
    try:
        with tracer.start_as_current_span(
            "filter_message",
            kind=SpanKind.CONSUMER,
            attributes={"messaging.system": "rabbitmq", "messaging.source.name": queue_name},
        ) as span:
            yield span
    finally:
        context.detach(token)
