"""
Test-message publisher.

- Purges the target queue (declared durable if missing)
- Publishes ``howManyPairs`` pairs of ``test message|<iso timestamp>|keep`` and
  ``test message|<iso timestamp>|drop`` bodies through the default exchange

Broker settings come from the same ``BROKER_*`` variables the relay reads.

Examples:
    python -m scripts.publish_test_messages
    python -m scripts.publish_test_messages --env-file tests/test.env --queue test-queue --pairs 10
"""

import argparse
import asyncio
from datetime import datetime, timezone

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel

from rabbit_hole.config import Settings, load_env_files
from rabbit_hole.rabbit import build_ssl_context


QUEUE_NAME = "test-queue"
MESSAGE_PAIRS = 10


def build_bodies(how_many_pairs: int) -> list[str]:
    """Return alternating keep/drop bodies sharing a timestamp per pair."""
    bodies: list[str] = []
    for _ in range(how_many_pairs):
        timestamp = datetime.now(timezone.utc).isoformat()
        bodies.append(f"test message|{timestamp}|keep")
        bodies.append(f"test message|{timestamp}|drop")
    return bodies


async def queue_message_count(channel: AbstractChannel, queue_name: str) -> int:
    queue = await channel.declare_queue(queue_name, durable=True)
    return int(queue.declaration_result.message_count or 0)


async def empty_queue(channel: AbstractChannel, queue_name: str) -> None:
    queue = await channel.declare_queue(queue_name, durable=True)
    while await queue_message_count(channel, queue_name) > 0:
        await queue.purge()


async def publish_test_messages(how_many_pairs: int = MESSAGE_PAIRS, queue_name: str = QUEUE_NAME) -> int:
    """Purge ``queue_name`` and publish the keep/drop pairs; return the resulting depth."""
    descriptor = Settings().connection_descriptor()
    connection = await aio_pika.connect_robust(descriptor.url, ssl_context=build_ssl_context(descriptor))
    async with connection:
        channel = await connection.channel(publisher_confirms=True)
        await empty_queue(channel, queue_name)
        for body in build_bodies(how_many_pairs):
            await channel.default_exchange.publish(
                Message(body=body.encode("utf-8"), delivery_mode=DeliveryMode.PERSISTENT),
                routing_key=queue_name,
            )
        depth = await queue_message_count(channel, queue_name)
    print(f"Test messages published to {queue_name} (depth {depth}).")
    return depth


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Purge a queue and publish keep/drop test message pairs")
    parser.add_argument("--env-file", action="append", default=[], help="Path to a .env file (repeatable)")
    parser.add_argument("--queue", default=QUEUE_NAME)
    parser.add_argument("--pairs", type=int, default=MESSAGE_PAIRS)
    args = parser.parse_args()

    load_env_files(args.env_file)
    asyncio.run(publish_test_messages(args.pairs, args.queue))
