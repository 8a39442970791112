"""Audit files for dropped messages.

When ``--logDroppedMessages`` is set, every dropped delivery is written as
indented JSON to ``<log_message_path>/<epoch-millis>-<consumerTag>.log``.
The directory is created once at startup; failing to create it is fatal
before any broker connection is attempted.
"""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from rabbit_hole.exceptions import ConfigError
from rabbit_hole.metrics import RELAY_DROPPED_LOGGED_TOTAL
from rabbit_hole.models import Delivery


log = logging.getLogger(__name__)


class DroppedMessageLogger:
    """Writes one file per dropped delivery.

    Example:
        >>> audit = DroppedMessageLogger("./dropped-messages")
        >>> audit.prepare()
        >>> audit.log(delivery)
        PosixPath('dropped-messages/1718000000000-amq.ctag-abc.log')
    """

    def __init__(self, log_message_path: str | Path, logger: logging.Logger | None = None) -> None:
        self.path = Path(log_message_path)
        self.logger = logger or log

    def prepare(self) -> None:
        """Create the target directory (recursive, idempotent)."""
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Error creating log message path {self.path}: {exc}") from exc

    def file_for(self, delivery: Delivery) -> Path:
        return self.path / f"{int(time.time() * 1000)}-{delivery.consumer_tag}.log"

    def log(self, delivery: Delivery) -> Path:
        """Serialize the delivery envelope to its own file and return the path."""
        content = json.dumps(delivery.envelope(), indent=2)
        target = self.file_for(delivery).resolve()
        try:
            with target.open("x", encoding="utf-8") as fh:
                fh.write(content)
        except FileExistsError:
            # Same millisecond and consumer tag; the delivery tag keeps the name unique
            target = target.with_name(f"{target.stem}-{delivery.delivery_tag}.log")
            target.write_text(content, encoding="utf-8")
        RELAY_DROPPED_LOGGED_TOTAL.inc()
        self.logger.debug("Logged dropped message to %s", target)
        return target
