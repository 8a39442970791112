"""Pydantic models shared by the relay components.

These make the queue table, the broker descriptor and the per-delivery view
explicit instead of passing dicts and raw aio_pika messages around.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_core import to_jsonable_python

from rabbit_hole.constants import AMQP_PORT, AMQPS_PORT


class QueueEntry(BaseModel):
    """One row of the queue table: a queue to filter and its optional pattern."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    queue_name: str = Field(min_length=1)
    regex_to_drop: Optional[str] = None


class MergedConfig(BaseModel):
    """The queue table produced by merging every ``--queue-config`` file.

    ``queue_list`` keeps file order, then in-file order. Duplicates are kept;
    each one becomes its own consumer.
    """
    model_config = ConfigDict(frozen=True)

    default_regex: str = ""
    queue_list: tuple[QueueEntry, ...] = ()

    def queue_names(self) -> list[str]:
        """Distinct queue names in first-seen order."""
        return list(dict.fromkeys(entry.queue_name for entry in self.queue_list))


Protocol = Literal["amqp", "amqps"]


class ConnectionDescriptor(BaseModel):
    """Resolved broker address and credentials.

    Protocol defaults to ``amqps`` when a CA certificate is given, else
    ``amqp``; port defaults to 5671/5672 to match. Both are resolved once here.

    Example:
        >>> d = ConnectionDescriptor(host="rabbit", username="u", password="p")
        >>> d.protocol, d.port
        ('amqp', 5672)
    """
    model_config = ConfigDict(frozen=True)

    host: str
    username: str
    password: str
    protocol: Protocol
    port: int
    ca_cert: Optional[str] = None
    vhost: str = "/"

    @model_validator(mode="before")
    @classmethod
    def _resolve_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("protocol"):
            data["protocol"] = "amqps" if data.get("ca_cert") else "amqp"
        if not data.get("port"):
            data["port"] = AMQPS_PORT if data["protocol"] == "amqps" else AMQP_PORT
        return data

    @property
    def url(self) -> str:
        return self._build_url(quote(self.password, safe=""))

    @property
    def redacted_url(self) -> str:
        """URL safe to log (password masked)."""
        return self._build_url("***")

    def _build_url(self, secret: str) -> str:
        user = quote(self.username, safe="")
        vhost = quote(self.vhost, safe="")
        return f"{self.protocol}://{user}:{secret}@{self.host}:{self.port}/{vhost}"


class Decision(str, Enum):
    """Outcome of the drop/keep decision for one delivery."""
    REQUEUE_NO_EVAL = "requeue_no_eval"
    DROP = "drop"
    REQUEUE = "requeue"


# AMQP basic properties copied into the dropped-message envelope
_PROPERTY_NAMES = (
    "content_type",
    "content_encoding",
    "headers",
    "delivery_mode",
    "priority",
    "correlation_id",
    "reply_to",
    "expiration",
    "message_id",
    "timestamp",
    "type",
    "user_id",
    "app_id",
)


class Delivery(BaseModel):
    """A single delivery as seen by the decision engine."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    body: bytes
    redelivered: bool = False
    queue_name: str
    consumer_tag: Optional[str] = None
    delivery_tag: Optional[int] = None
    exchange: Optional[str] = None
    routing_key: Optional[str] = None
    properties: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_message(cls, message: Any, queue_name: str) -> "Delivery":
        """Build a ``Delivery`` from an ``aio_pika`` incoming message."""
        properties = {name: getattr(message, name, None) for name in _PROPERTY_NAMES}
        return cls(
            body=bytes(message.body),
            redelivered=bool(message.redelivered),
            queue_name=queue_name,
            consumer_tag=message.consumer_tag,
            delivery_tag=message.delivery_tag,
            exchange=message.exchange,
            routing_key=message.routing_key,
            properties={k: v for k, v in properties.items() if v is not None},
        )

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def envelope(self) -> dict[str, Any]:
        """Return the full delivery (fields, properties, content) as plain JSON data."""
        return {
            "fields": {
                "consumer_tag": self.consumer_tag,
                "delivery_tag": self.delivery_tag,
                "redelivered": self.redelivered,
                "exchange": self.exchange,
                "routing_key": self.routing_key,
                "queue": self.queue_name,
            },
            "properties": to_jsonable_python(self.properties, fallback=str, bytes_mode="base64"),
            "content": self.text,
        }
