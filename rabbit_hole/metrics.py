"""Prometheus metrics and a tiny HTTP server to expose them.

Call `start_metrics_server(port)` once in a process to expose /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, Gauge, start_http_server


# Decision engine
RELAY_MESSAGE_TOTAL = Counter(
    "relay_message_total", "Total deliveries handled by the relay", ["queue", "decision"]
)
RELAY_HANDLE_LATENCY_SECONDS = Histogram(
    "relay_handle_latency_seconds", "Time to decide and settle a single delivery",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1),
)
RELAY_HANDLE_ERRORS_TOTAL = Counter(
    "relay_handle_errors_total", "Deliveries whose handling raised an exception", ["queue"]
)
RELAY_DROPPED_LOGGED_TOTAL = Counter(
    "relay_dropped_logged_total", "Dropped-message envelopes written to disk"
)

# Connection lifecycle
RELAY_CONNECTION_EVENTS_TOTAL = Counter(
    "relay_connection_events_total", "Broker connection transitions", ["event"]
)
RELAY_TOPOLOGY_APPLIED_TOTAL = Counter(
    "relay_topology_applied_total", "Times the queue/prefetch/consumer topology was applied", ["reason"]
)
RELAY_CONSUMERS = Gauge(
    "relay_consumers", "Consumers currently registered by the relay"
)


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)
