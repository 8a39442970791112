"""Load and merge queue configuration files.

Each ``--queue-config`` file is a JSON5 document (comments and trailing commas
allowed) shaped like::

    {
      // applies to every queue without its own pattern
      default_regex: "heartbeat",
      queue_list: [
        {queue_name: "orders"},
        {queue_name: "audit", regex_to_drop: "\\|drop$"},
      ],
    }

Files are layered in argument order: the last non-empty ``default_regex``
wins and every ``queue_list`` is appended as-is. The merge itself is a pure
fold over the parsed documents so it can be tested without touching disk.

Example:
    >>> merge_documents([{"default_regex": "a"}, {"default_regex": ""}]).default_regex
    'a'
"""
from __future__ import annotations

import logging
import re
from functools import reduce
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import json5
from pydantic import ValidationError

from rabbit_hole.exceptions import ConfigError
from rabbit_hole.models import MergedConfig, QueueEntry


log = logging.getLogger(__name__)


def load_document(path: str | Path) -> dict[str, Any]:
    """Read and parse one JSON5 queue config file."""
    try:
        content = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read queue config {path}: {exc}") from exc
    try:
        document = json5.loads(content)
    except ValueError as exc:
        raise ConfigError(f"Cannot parse queue config {path}: {exc}") from exc
    if not isinstance(document, dict):
        raise ConfigError(f"Queue config {path} must contain an object")
    return document


def merge_document(acc: MergedConfig, document: Mapping[str, Any]) -> MergedConfig:
    """Layer one parsed document over ``acc`` and return a new ``MergedConfig``."""
    default_regex = document.get("default_regex") or acc.default_regex
    if not isinstance(default_regex, str):
        raise ConfigError("default_regex must be a string")

    raw_list = document.get("queue_list")
    if raw_list is None:
        raw_list = []
    if not isinstance(raw_list, list):
        raise ConfigError("queue_list must be a list")
    try:
        entries = tuple(QueueEntry.model_validate(item) for item in raw_list)
    except ValidationError as exc:
        raise ConfigError(f"Invalid queue_list entry: {exc}") from exc

    return MergedConfig(default_regex=default_regex, queue_list=acc.queue_list + entries)


def merge_documents(documents: Iterable[Mapping[str, Any]]) -> MergedConfig:
    """Fold parsed documents, in order, into a single validated ``MergedConfig``."""
    merged = reduce(merge_document, documents, MergedConfig())
    validate_patterns(merged)
    return merged


def validate_patterns(config: MergedConfig) -> None:
    """Compile every pattern once so a bad regex fails at startup, not per message."""
    patterns = {config.default_regex}
    patterns.update(entry.regex_to_drop for entry in config.queue_list if entry.regex_to_drop)
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ConfigError(f"Invalid regular expression {pattern!r}: {exc}") from exc


def merge_queue_configs(file_paths: Sequence[str | Path], logger: logging.Logger | None = None) -> MergedConfig:
    """Load every file in order and merge them into one queue table.

    Raises:
        ConfigError: a file cannot be read, does not parse, or holds an
            invalid entry or pattern.
    """
    logger = logger or log
    documents = []
    for path in file_paths:
        logger.debug("Loading queue configuration from %s", path)
        documents.append(load_document(path))
    merged = merge_documents(documents)
    logger.info(
        "Loaded %d queue entries (%d distinct queues) from %d file(s)",
        len(merged.queue_list),
        len(merged.queue_names()),
        len(documents),
    )
    return merged
