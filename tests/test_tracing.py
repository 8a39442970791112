import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind

from conftest import DummyMessage
from rabbit_hole.decision import MessageFilter
from rabbit_hole.models import MergedConfig, QueueEntry
from rabbit_hole.tracing import build_provider, trace_carrier


TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
PARENT_SPAN_ID = "00f067aa0ba902b7"
TRACEPARENT = f"00-{TRACE_ID}-{PARENT_SPAN_ID}-01"


def test_trace_carrier_keeps_only_w3c_headers():
    headers = {"Traceparent": TRACEPARENT.encode(), "tracestate": "k=v", "x-retry": 3}
    assert trace_carrier(headers) == {"traceparent": TRACEPARENT, "tracestate": "k=v"}
    assert trace_carrier(None) == {}


@pytest.fixture
def spans():
    exporter = InMemorySpanExporter()
    return exporter, build_provider(exporter).get_tracer("test")


@pytest.mark.asyncio
async def test_filter_span_joins_publisher_trace(spans):
    exporter, tracer = spans
    config = MergedConfig(default_regex="drop")
    message_filter = MessageFilter(config, tracer=tracer)

    await message_filter.handle(QueueEntry(queue_name="q"), DummyMessage("please drop", headers={"traceparent": TRACEPARENT}))

    (span,) = exporter.get_finished_spans()
    assert span.name == "filter_message"
    assert span.kind is SpanKind.CONSUMER
    assert format(span.context.trace_id, "032x") == TRACE_ID
    assert format(span.parent.span_id, "016x") == PARENT_SPAN_ID
    assert span.attributes["messaging.source.name"] == "q"
    assert span.attributes["decision"] == "drop"


@pytest.mark.asyncio
async def test_filter_span_without_headers_starts_new_trace(spans):
    exporter, tracer = spans
    message_filter = MessageFilter(MergedConfig(default_regex="x"), tracer=tracer)

    await message_filter.handle(QueueEntry(queue_name="q"), DummyMessage("keep me"))

    (span,) = exporter.get_finished_spans()
    assert span.parent is None
    assert span.attributes["decision"] == "requeue"
