"""RabbitMQ helpers for the relay connection and channel topology.

This module wraps ``aio_pika`` to provide:
- ``ConnectionManager``: one robust connection with optional TLS, exposed as a
  small state machine (DISCONNECTED -> CONNECTING -> CONNECTED | FAILED)
- ``ChannelSupervisor``: the declared topology (durable queues, channel-wide
  prefetch, one manual-ack consumer per queue entry) applied on connect

aio_pika's robust connection reconnects on its own after the first success;
its robust channel replays QoS, queue declarations and consumers when it does.
The initial connection is awaited directly, so a failed first attempt surfaces
as a single ``ConnectError``.

Example:
    >>> manager = ConnectionManager(descriptor)
    >>> connection = await manager.connect()
    >>> supervisor = ChannelSupervisor(Topology.from_config(config, 100), on_message)
    >>> await supervisor.apply(connection)
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
)

from rabbit_hole.constants import CONNECTION_NAME
from rabbit_hole.exceptions import ConnectError
from rabbit_hole.metrics import (
    RELAY_CONNECTION_EVENTS_TOTAL,
    RELAY_TOPOLOGY_APPLIED_TOTAL,
    RELAY_CONSUMERS,
)
from rabbit_hole.models import ConnectionDescriptor, MergedConfig, QueueEntry


log = logging.getLogger(__name__)

ConnectedListener = Callable[[AbstractRobustConnection], Awaitable[None]]
MessageCallback = Callable[[QueueEntry, AbstractIncomingMessage], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


def build_ssl_context(descriptor: ConnectionDescriptor) -> Optional[ssl.SSLContext]:
    """Return an ``ssl.SSLContext`` trusting the descriptor's CA, or ``None`` for plain amqp.

    For ``amqps`` without a CA certificate the system trust store is used.
    """
    if descriptor.protocol != "amqps":
        return None
    if descriptor.ca_cert:
        return ssl.create_default_context(cadata=descriptor.ca_cert)
    return ssl.create_default_context()


class ConnectionManager:
    """Owns the single outbound broker connection.

    Properties:
    - `state`: current ``ConnectionState``
    - `connection`: the open robust connection, or ``None``

    Methods:
    - `connect()`: open the connection, raising ``ConnectError`` on failure
    - `add_connected_listener(cb)`: run ``cb(connection)`` on every reconnect
    - `close()`: close if open; no-op otherwise
    """

    def __init__(
        self,
        descriptor: ConnectionDescriptor,
        connect_attempts: int = 1,
        base_delay_ms: int = 500,
        max_delay_ms: int = 3000,
        logger: logging.Logger | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.connect_attempts = max(1, int(connect_attempts))
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.logger = logger or log
        self.state = ConnectionState.DISCONNECTED
        self.connection: Optional[AbstractRobustConnection] = None
        self._listeners: list[ConnectedListener] = []
        self._listener_tasks: set[asyncio.Task] = set()

    def add_connected_listener(self, listener: ConnectedListener) -> None:
        self._listeners.append(listener)

    async def _open(self) -> AbstractRobustConnection:
        ssl_context = build_ssl_context(self.descriptor)
        return await aio_pika.connect_robust(
            self.descriptor.url,
            ssl_context=ssl_context,
            client_properties={"connection_name": CONNECTION_NAME},
        )

    async def connect(self) -> AbstractRobustConnection:
        """Open the robust connection and transition to CONNECTED.

        Makes up to ``connect_attempts`` attempts with exponential backoff;
        the last error is raised as ``ConnectError`` and the state becomes FAILED.
        """
        if self.state == ConnectionState.CONNECTED and self.connection is not None:
            return self.connection

        self._set_state(ConnectionState.CONNECTING)
        self.logger.info("Connecting to RabbitMQ at %s", self.descriptor.redacted_url)

        delay_ms = self.base_delay_ms
        last_exc: Exception | None = None
        for attempt in range(1, self.connect_attempts + 1):
            try:
                connection = await self._open()
                break
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                self.logger.warning("Connect attempt %d/%d failed: %s", attempt, self.connect_attempts, exc)
                if attempt == self.connect_attempts:
                    self._set_state(ConnectionState.FAILED)
                    raise ConnectError(f"Failed to connect to RabbitMQ: {last_exc}") from last_exc
                await asyncio.sleep(delay_ms / 1000.0)
                delay_ms = min(int(delay_ms * 2), self.max_delay_ms)

        connection.close_callbacks.add(self._on_close)
        connection.reconnect_callbacks.add(self._on_reconnect)
        self.connection = connection
        self._set_state(ConnectionState.CONNECTED)
        self.logger.info("Connected to RabbitMQ")
        return connection

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            self.logger.debug("Connection state %s -> %s", self.state.value, state.value)
            RELAY_CONNECTION_EVENTS_TOTAL.labels(event=state.value).inc()
        self.state = state

    def _on_close(self, sender: object, exc: Optional[BaseException] = None) -> None:
        """Transport closed; fatal only through ``close()``, otherwise aio_pika reconnects."""
        if self.state != ConnectionState.CONNECTED:
            return
        if exc is not None:
            self.logger.error("Disconnected from RabbitMQ: %r", exc)
        else:
            self.logger.info("RabbitMQ connection closed")
        self._set_state(ConnectionState.DISCONNECTED)

    def _on_reconnect(self, sender: object) -> None:
        self.logger.info("Reconnected to RabbitMQ")
        self._set_state(ConnectionState.CONNECTED)
        if self.connection is None:
            return
        for listener in self._listeners:
            task = asyncio.ensure_future(listener(self.connection))
            self._listener_tasks.add(task)
            task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Connected listener failed after reconnect: %r", exc, exc_info=exc)

    async def close(self) -> None:
        """Close the connection if one is open; resolves immediately otherwise."""
        connection, self.connection = self.connection, None
        if connection is None:
            return
        # Mark first so the close callback is not reported as a disconnect
        self._set_state(ConnectionState.DISCONNECTED)
        if not connection.is_closed:
            await connection.close()
        self.logger.info("RabbitMQ connection closed")


@dataclass(frozen=True)
class Topology:
    """Desired channel state: durable queues, shared prefetch, one consumer per entry."""

    queue_names: tuple[str, ...]
    prefetch_count: int
    consumers: tuple[QueueEntry, ...]

    @classmethod
    def from_config(cls, config: MergedConfig, prefetch_count: int) -> "Topology":
        return cls(
            queue_names=tuple(config.queue_names()),
            prefetch_count=prefetch_count,
            consumers=tuple(config.queue_list),
        )


class ChannelSupervisor:
    """Applies a ``Topology`` to a connection and keeps it applied.

    Setup order on a fresh channel:
    1) declare every distinct queue durable (idempotent)
    2) set the channel-wide prefetch (``global_=True``), shared by all queues
    3) register one consumer per queue entry with ``no_ack=False``

    On reconnect aio_pika's robust channel replays exactly these steps, so
    ``reapply`` only records the transition; consumers are never registered twice.
    """

    def __init__(
        self,
        topology: Topology,
        on_message: MessageCallback,
        logger: logging.Logger | None = None,
    ) -> None:
        self.topology = topology
        self.on_message = on_message
        self.logger = logger or log
        self.channel: Optional[AbstractChannel] = None
        self.consumer_tags: list[str] = []

    async def declare_queues(self, channel: AbstractChannel) -> dict[str, AbstractQueue]:
        queues: dict[str, AbstractQueue] = {}
        for name in self.topology.queue_names:
            queues[name] = await channel.declare_queue(name, durable=True)
            self.logger.debug("Declared durable queue %s", name)
        return queues

    async def register_consumers(self, queues: dict[str, AbstractQueue]) -> list[str]:
        tags: list[str] = []
        for entry in self.topology.consumers:
            queue = queues[entry.queue_name]
            tag = await queue.consume(self._callback_for(entry), no_ack=False)
            tags.append(tag)
            self.logger.debug("Consuming %s (consumer tag %s)", entry.queue_name, tag)
        return tags

    def _callback_for(self, entry: QueueEntry) -> Callable[[AbstractIncomingMessage], Awaitable[None]]:
        async def _consume(message: AbstractIncomingMessage) -> None:
            await self.on_message(entry, message)

        return _consume

    async def apply(self, connection: AbstractRobustConnection) -> AbstractChannel:
        """Open a channel and apply the topology to it."""
        channel = await connection.channel()
        queues = await self.declare_queues(channel)
        await channel.set_qos(prefetch_count=self.topology.prefetch_count, global_=True)
        self.logger.info(
            "Channel ready: %d queue(s), prefetch %d",
            len(queues),
            self.topology.prefetch_count,
        )
        self.consumer_tags = await self.register_consumers(queues)
        self.channel = channel
        RELAY_CONSUMERS.set(len(self.consumer_tags))
        RELAY_TOPOLOGY_APPLIED_TOTAL.labels(reason="connect").inc()
        return channel

    async def reapply(self, connection: AbstractRobustConnection) -> None:
        """Listener for reconnects: the robust channel restores the topology itself."""
        self.logger.info(
            "Topology restored after reconnect: %d queue(s), %d consumer(s), prefetch %d",
            len(self.topology.queue_names),
            len(self.topology.consumers),
            self.topology.prefetch_count,
        )
        RELAY_TOPOLOGY_APPLIED_TOTAL.labels(reason="reconnect").inc()

    async def close(self) -> None:
        channel, self.channel = self.channel, None
        self.consumer_tags = []
        RELAY_CONSUMERS.set(0)
        if channel is not None and not channel.is_closed:
            await channel.close()