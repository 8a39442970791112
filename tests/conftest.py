import itertools
from types import SimpleNamespace

import pytest

from rabbit_hole.models import MergedConfig, QueueEntry


_delivery_tags = itertools.count(1)


class DummyMessage(SimpleNamespace):
    """Stand-in for ``aio_pika.IncomingMessage`` that records ack/nack calls."""

    def __init__(self, body: str | bytes, redelivered: bool = False, consumer_tag: str = "ctag-1", **kwargs):
        if isinstance(body, str):
            body = body.encode("utf-8")
        super().__init__(
            body=body,
            redelivered=redelivered,
            consumer_tag=consumer_tag,
            delivery_tag=kwargs.pop("delivery_tag", next(_delivery_tags)),
            exchange=kwargs.pop("exchange", ""),
            routing_key=kwargs.pop("routing_key", "test-queue"),
            headers=kwargs.pop("headers", {}),
            **kwargs,
        )
        self.acked = 0
        self.nacks: list[bool] = []

    async def ack(self, multiple: bool = False) -> None:
        self.acked += 1

    async def nack(self, multiple: bool = False, requeue: bool = True) -> None:
        self.nacks.append(requeue)


class DummyQueue:
    def __init__(self, name: str):
        self.name = name
        self.consumers: list[dict] = []

    async def consume(self, callback, no_ack: bool = False):
        tag = f"ctag-{self.name}-{len(self.consumers) + 1}"
        self.consumers.append({"callback": callback, "no_ack": no_ack, "tag": tag})
        return tag


class DummyChannel:
    def __init__(self):
        self.calls: list[tuple] = []
        self.queues: dict[str, DummyQueue] = {}
        self.is_closed = False

    async def declare_queue(self, name: str, durable: bool = False):
        self.calls.append(("declare_queue", name, durable))
        return self.queues.setdefault(name, DummyQueue(name))

    async def set_qos(self, prefetch_count: int = 0, global_: bool = False):
        self.calls.append(("set_qos", prefetch_count, global_))

    async def close(self):
        self.is_closed = True


class Callbacks(list):
    def add(self, callback):
        self.append(callback)


class DummyConnection:
    def __init__(self):
        self.close_callbacks = Callbacks()
        self.reconnect_callbacks = Callbacks()
        self.channels: list[DummyChannel] = []
        self.is_closed = False
        self.close_count = 0

    async def channel(self):
        ch = DummyChannel()
        self.channels.append(ch)
        return ch

    async def close(self):
        self.close_count += 1
        self.is_closed = True


@pytest.fixture
def queue_config() -> MergedConfig:
    return MergedConfig(
        default_regex="heartbeat",
        queue_list=(
            QueueEntry(queue_name="test-queue", regex_to_drop=r"\|drop$"),
            QueueEntry(queue_name="orders"),
        ),
    )


@pytest.fixture
def dummy_connection(monkeypatch) -> DummyConnection:
    """Patch ``aio_pika.connect_robust`` to hand out a ``DummyConnection``."""
    conn = DummyConnection()
    calls: list[dict] = []

    async def fake_connect_robust(url, **kwargs):
        calls.append({"url": url, **kwargs})
        return conn

    monkeypatch.setattr("rabbit_hole.rabbit.aio_pika.connect_robust", fake_connect_robust)
    conn.connect_calls = calls  # type: ignore[attr-defined]
    return conn


@pytest.fixture
def broker_env(monkeypatch):
    """Clear broker variables so each test starts from the defaults.

    setenv before delenv so monkeypatch also removes values that dotenv
    writes during the test.
    """
    for name in (
        "BROKER_URL",
        "BROKER_USERNAME",
        "BROKER_PASSWORD",
        "BROKER_CA_CERT_PATH",
        "BROKER_PROTOCOL",
        "BROKER_PORT",
        "BROKER_VHOST",
        "RELAY_CONNECT_ATTEMPTS",
        "METRICS_PORT",
        "RELAY_TRACING",
    ):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch
