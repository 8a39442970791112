"""
Command-line entry point.

Examples:
    python -m rabbit_hole --env-file .env --queue-config queues.json5
    python -m rabbit_hole --env-file .env --queue-config base.json5 --queue-config extra.json5 \
        --runMode interval --runSchedule "*/10 * * * *" --runDurationSeconds 120 -v
"""
from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from rabbit_hole.config import Settings, load_env_files
from rabbit_hole.constants import (
    DEFAULT_LOG_MESSAGE_PATH,
    DEFAULT_PREFETCH_SIZE,
    EXIT_FAILURE,
    RUN_MODE_CONTINUOUS,
    RUN_MODE_INTERVAL,
    RUN_MODES,
)
from rabbit_hole.dropped_log import DroppedMessageLogger
from rabbit_hole.exceptions import RelayError
from rabbit_hole.metrics import start_metrics_server
from rabbit_hole.queue_config import merge_queue_configs
from rabbit_hole.relay import RabbitHole
from rabbit_hole.schedule import IntervalRunner
from rabbit_hole.shutdown import graceful_shutdown
from rabbit_hole.tracing import start_tracing
from rabbit_hole.utils.logging import get_logger, setup_logging


logger = get_logger("rabbit_hole")


def positive_int(value: str) -> int:
    try:
        parsed = int(value, 10)
    except ValueError:
        parsed = 0
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"{value!r} must be a positive integer")
    return parsed


def existing_file(value: str) -> str:
    if not Path(value).is_file():
        raise argparse.ArgumentTypeError(f"The path {value} does not exist or is not a file")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rabbit-hole",
        description="Drop RabbitMQ messages matching a pattern and requeue the rest",
    )
    parser.add_argument("--prefetch-size", type=positive_int, default=DEFAULT_PREFETCH_SIZE,
                        help="Number of unacknowledged messages the channel may hold")
    parser.add_argument("--logDroppedMessages", action="store_true", help="Log dropped messages to files")
    parser.add_argument("--logMessagePath", default=DEFAULT_LOG_MESSAGE_PATH, help="Directory for dropped-message files")
    parser.add_argument("--env-file", type=existing_file, action="append", required=True,
                        help="Path to a .env file (repeatable)")
    parser.add_argument("--queue-config", type=existing_file, action="append", required=True,
                        help="Path to a JSON5 queue config file (repeatable, later files layer over earlier)")
    parser.add_argument("--runMode", choices=RUN_MODES, default=RUN_MODE_CONTINUOUS, help="continuous or interval")
    parser.add_argument("--runSchedule", help="Cron expression for interval mode")
    parser.add_argument("--runDurationSeconds", type=positive_int, help="Seconds each interval run lasts")
    parser.add_argument("-v", "--v", dest="verbosity", action="count", default=0, help="Increase verbosity (repeatable)")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def build_relay(args: argparse.Namespace) -> RabbitHole:
    """Resolve env, queue configs and the dropped-message directory into a relay.

    Raises ``RelayError`` (or ``ValueError`` for malformed env values) before
    any connection is attempted.
    """
    load_env_files(args.env_file, logger)
    settings = Settings()
    descriptor = settings.connection_descriptor()
    queue_config = merge_queue_configs(args.queue_config, logger)

    dropped_logger = None
    if args.logDroppedMessages:
        dropped_logger = DroppedMessageLogger(args.logMessagePath)
        dropped_logger.prepare()

    if settings.metrics_port:
        start_metrics_server(settings.metrics_port)
        logger.info("Metrics server listening on :%d /metrics", settings.metrics_port)
    if settings.tracing == "console":
        start_tracing()

    return RabbitHole(
        descriptor,
        queue_config,
        prefetch_count=args.prefetch_size,
        dropped_logger=dropped_logger,
        connect_attempts=settings.connect_attempts,
        connect_base_delay_ms=settings.connect_base_delay_ms,
        connect_max_delay_ms=settings.connect_max_delay_ms,
    )


async def run(args: argparse.Namespace) -> int:
    logger.info("Prefetch Size: %s", args.prefetch_size)
    logger.info("Env Files: %s", args.env_file)
    logger.info("Queue Configs: %s", args.queue_config)
    logger.info("Log Dropped Messages: %s", args.logDroppedMessages)
    logger.info("Log Message Path: %s", args.logMessagePath)
    logger.info("Run Mode: %s", args.runMode)
    logger.info("Run Schedule: %s", args.runSchedule)
    logger.info("Run Duration Seconds: %s", args.runDurationSeconds)
    logger.info("Verbosity: %s", args.verbosity)

    if args.runMode == RUN_MODE_INTERVAL and not (args.runSchedule and args.runDurationSeconds):
        logger.error("Both --runSchedule and --runDurationSeconds are required in interval mode.")
        return EXIT_FAILURE

    try:
        relay = build_relay(args)
    except (RelayError, ValueError, OSError) as exc:
        logger.error("Startup failed: %s", exc)
        return EXIT_FAILURE

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        if args.runMode == RUN_MODE_INTERVAL:
            runner = IntervalRunner(relay, args.runSchedule, args.runDurationSeconds, stop_event)
            await runner.run()
        else:
            await relay.run_forever(stop_event)
    except RelayError as exc:
        logger.error("rabbit_hole stopped: %s", exc)
        await graceful_shutdown(relay)
        return EXIT_FAILURE

    return await graceful_shutdown(relay)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbosity)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
