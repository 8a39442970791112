"""Shared constants for the relay.

Ports follow the IANA assignments for AMQP 0-9-1; CLI defaults mirror the
documented command-line surface.
"""

AMQP_PORT = 5672
AMQPS_PORT = 5671

DEFAULT_PREFETCH_SIZE = 100
DEFAULT_LOG_MESSAGE_PATH = "./dropped-messages"

RUN_MODE_CONTINUOUS = "continuous"
RUN_MODE_INTERVAL = "interval"
RUN_MODES = (RUN_MODE_CONTINUOUS, RUN_MODE_INTERVAL)

CONNECTION_NAME = "rabbit-hole"
SERVICE_NAME = "rabbit-hole"

# Exit codes returned by the CLI
EXIT_OK = 0
EXIT_FAILURE = 1
