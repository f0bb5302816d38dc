"""Pool and connection settings loaded from keyword arguments or the environment."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PoolSettings(BaseSettings):
    """Scheduler configuration.

    Every field can be set through an ``SSHPOOL_`` environment variable,
    e.g. ``SSHPOOL_MAX_THREADS=10``.
    """

    model_config = SettingsConfigDict(env_prefix="SSHPOOL_", validate_assignment=True)

    max_threads: int = Field(default=50, ge=1)
    max_retries: int = Field(default=0, ge=0)
    wait_retry: float = Field(default=15, ge=0)  # seconds
    min_config_size: int = Field(default=0, ge=0)  # bytes, 0 disables the check
    poll_interval: float = Field(default=0.025, gt=0)  # seconds
    debug: bool = False


class ConnectionSettings(BaseSettings):
    """SSH connection parameters (``SSHPOOL_SSH_`` environment variables)."""

    model_config = SettingsConfigDict(env_prefix="SSHPOOL_SSH_")

    host: str = "127.0.0.1"
    port: int = Field(default=22, ge=1, le=65535)
    user: str = "root"
    password: Optional[str] = None
    # the public half is derived from the private key file
    private_key: Optional[str] = None
    connect_timeout: float = Field(default=10, gt=0)
    connection_delay: float = Field(default=0.2, ge=0)  # pause after each connect
    # connections opened once the server's per-connection session limit is hit
    max_connections: int = Field(default=10, ge=1)
