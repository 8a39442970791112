"""Start/stop lifecycle of the relay.

``RabbitHole`` composes the connection manager, channel supervisor and
message filter. The same instance is used by continuous mode (start once,
run until a signal), by ``IntervalRunner`` (start, run for a while, stop, on a
cron schedule) and by graceful shutdown.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from aio_pika.abc import AbstractIncomingMessage

from rabbit_hole.decision import MessageFilter
from rabbit_hole.dropped_log import DroppedMessageLogger
from rabbit_hole.exceptions import StartupError
from rabbit_hole.models import ConnectionDescriptor, MergedConfig, QueueEntry
from rabbit_hole.rabbit import ChannelSupervisor, ConnectionManager, Topology


log = logging.getLogger(__name__)


class RabbitHole:
    """The filtering relay over every queue in the merged table.

    Example:
    ```python
    relay = RabbitHole(descriptor, merged_config, prefetch_count=100)
    await relay.start()
    ...
    await relay.stop()  # safe to call again, or before start()
    ```
    """

    def __init__(
        self,
        descriptor: ConnectionDescriptor,
        queue_config: MergedConfig,
        prefetch_count: int,
        dropped_logger: Optional[DroppedMessageLogger] = None,
        connect_attempts: int = 1,
        connect_base_delay_ms: int = 500,
        connect_max_delay_ms: int = 3000,
        logger: logging.Logger | None = None,
    ) -> None:
        self.logger = logger or log
        self.queue_config = queue_config
        self.prefetch_count = prefetch_count
        self.connection_manager = ConnectionManager(
            descriptor,
            connect_attempts=connect_attempts,
            base_delay_ms=connect_base_delay_ms,
            max_delay_ms=connect_max_delay_ms,
            logger=self.logger.getChild("connection"),
        )
        self.message_filter = MessageFilter(
            queue_config,
            dropped_logger=dropped_logger,
            logger=self.logger.getChild("filter"),
        )
        self.supervisor = ChannelSupervisor(
            Topology.from_config(queue_config, prefetch_count),
            self._on_message,
            logger=self.logger.getChild("channel"),
        )
        self.connection_manager.add_connected_listener(self.supervisor.reapply)

    async def _on_message(self, entry: QueueEntry, message: AbstractIncomingMessage) -> None:
        await self.message_filter.handle(entry, message)

    async def start(self) -> None:
        """Connect, declare queues, set prefetch and register every consumer.

        Raises:
            StartupError: any step failed; whatever was opened is closed again.
        """
        try:
            connection = await self.connection_manager.connect()
            self.logger.info("Starting rabbit_hole with prefetchSize: %d", self.prefetch_count)
            await self.supervisor.apply(connection)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Failed to start: %s", exc)
            try:
                await self.stop()
            except Exception as close_exc:  # noqa: BLE001
                self.logger.warning("Error closing after failed start: %s", close_exc)
            raise StartupError(str(exc)) from exc
        self.logger.info(
            "Consuming %d queue(s) with %d consumer(s)",
            len(self.supervisor.topology.queue_names),
            len(self.supervisor.consumer_tags),
        )

    async def stop(self) -> None:
        """Close the channel and connection; no-op when nothing is open."""
        try:
            await self.supervisor.close()
        finally:
            await self.connection_manager.close()

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Continuous mode: start once and consume until ``stop_event`` is set."""
        await self.start()
        await stop_event.wait()
