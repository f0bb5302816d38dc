"""Run many shell commands over SSH with bounded concurrency, timeouts and retries."""

from .config import ConnectionSettings, PoolSettings
from .errors import (
    AuthFailure,
    ConnectFailure,
    DuplicateIDError,
    SessionRecoveryError,
    SshPoolError,
    StartFailure,
    TransportError,
)
from .local import LocalTransport
from .models import Classification, Command, CommandResult, CommandState, Execution, UNKNOWN_EXIT_STATUS
from .pool import SshPool
from .transport import ParamikoTransport, Transport

__version__ = "1.0.0"
