"""Filtering relay for RabbitMQ queues.

Modules include configuration and queue-config merging, RabbitMQ connection
and channel helpers, the per-message drop/requeue decision, dropped-message
audit files, metrics, tracing, and the start/stop lifecycle.
"""

__version__ = "1.0.0"
