import logging

from rabbit_hole.constants import EXIT_FAILURE, EXIT_OK
from rabbit_hole.relay import RabbitHole


log = logging.getLogger(__name__)


async def graceful_shutdown(relay: RabbitHole, logger: logging.Logger | None = None) -> int:
    """Stop the relay and return the process exit code (0 ok, 1 on error)."""
    logger = logger or log
    logger.info("Shutting down...")
    try:
        await relay.stop()
    except Exception:  # noqa: BLE001
        logger.exception("Error during shutdown")
        return EXIT_FAILURE
    logger.info("RabbitMQ connection closed")
    return EXIT_OK
