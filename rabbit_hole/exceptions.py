"""Exceptions raised by the relay.

Every error that should stop the process at startup derives from
``RelayError`` so the entry point can map it to a nonzero exit code.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class ConfigError(RelayError):
    """A queue config, env file or the dropped-message directory is unusable."""


class ConnectError(RelayError):
    """The initial connection to the broker could not be established."""


class StartupError(RelayError):
    """``RabbitHole.start()`` failed; the relay is not consuming."""
