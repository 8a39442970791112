import os
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from rabbit_hole.exceptions import ConfigError
from rabbit_hole.models import ConnectionDescriptor


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "")
    return int(value) if value.strip() else default


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "")
    return int(value) if value.strip() else None


def load_env_files(paths: Sequence[str], logger=None) -> None:
    """Load each ``.env`` file into ``os.environ`` in order.

    Variables already present in the environment win, as with ``dotenv``.
    """
    for path in paths:
        if logger is not None:
            logger.debug("Loading environment variables from %s", path)
        if not Path(path).is_file():
            raise ConfigError(f"Env file {path} does not exist or is not a file")
        load_dotenv(dotenv_path=Path(path).resolve())


class Settings(BaseModel):
    """Typed broker and runtime settings read from the environment.

    Values are read when ``Settings()`` is constructed, so env files loaded
    with ``load_env_files`` beforehand are honored.

    Examples:
    - Point the relay at a local broker:
      ```bash
      export BROKER_URL=localhost
      export BROKER_USERNAME=guest
      export BROKER_PASSWORD=guest
      ```
    - Enable TLS with a private CA (protocol and port switch to amqps/5671):
      ```bash
      export BROKER_CA_CERT_PATH=/etc/rabbit/ca.pem
      ```
    """
    broker_host: str = Field(default_factory=lambda: os.getenv("BROKER_URL", "localhost"))
    broker_username: str = Field(default_factory=lambda: os.getenv("BROKER_USERNAME", "guest"))
    broker_password: str = Field(default_factory=lambda: os.getenv("BROKER_PASSWORD", "guest"))
    broker_ca_cert_path: str = Field(default_factory=lambda: os.getenv("BROKER_CA_CERT_PATH", ""))
    broker_protocol: str = Field(default_factory=lambda: os.getenv("BROKER_PROTOCOL", "").strip().lower())
    broker_port: Optional[int] = Field(default_factory=lambda: _env_optional_int("BROKER_PORT"))
    broker_vhost: str = Field(default_factory=lambda: os.getenv("BROKER_VHOST", "/"))

    # Initial connect retry; after the first success aio_pika reconnects on its own
    connect_attempts: int = Field(default_factory=lambda: _env_int("RELAY_CONNECT_ATTEMPTS", 1))
    connect_base_delay_ms: int = Field(default_factory=lambda: _env_int("RELAY_CONNECT_BASE_DELAY_MS", 500))
    connect_max_delay_ms: int = Field(default_factory=lambda: _env_int("RELAY_CONNECT_MAX_DELAY_MS", 3000))

    metrics_port: int = Field(default_factory=lambda: _env_int("METRICS_PORT", 0))
    tracing: str = Field(default_factory=lambda: os.getenv("RELAY_TRACING", "").strip().lower())

    def connection_descriptor(self) -> ConnectionDescriptor:
        """Resolve the broker descriptor, reading the CA certificate if configured."""
        ca_cert: Optional[str] = None
        if self.broker_ca_cert_path:
            try:
                ca_cert = Path(self.broker_ca_cert_path).resolve().read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigError(f"Cannot read CA certificate {self.broker_ca_cert_path}: {exc}") from exc
        try:
            return ConnectionDescriptor(
                host=self.broker_host,
                username=self.broker_username,
                password=self.broker_password,
                protocol=self.broker_protocol or None,
                port=self.broker_port,
                ca_cert=ca_cert,
                vhost=self.broker_vhost,
            )
        except ValidationError as exc:
            raise ConfigError(f"Invalid broker settings: {exc}") from exc
