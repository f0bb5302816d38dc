"""Exceptions raised by the pool and its transports."""


class SshPoolError(Exception):
    """Base class for all sshpool errors."""


class DuplicateIDError(SshPoolError, ValueError):
    """A command ID is already pending, running or waiting for a retry."""

    def __init__(self, command_id: str):
        super().__init__(f"Command {command_id} is already queued")
        self.command_id = command_id


class TransportError(SshPoolError):
    """Base class for transport failures."""


class AuthFailure(TransportError):
    """The remote side rejected every configured credential."""


class ConnectFailure(TransportError):
    """The session could not be established."""


class StartFailure(TransportError):
    """A command could not be started on an open session."""


class SessionRecoveryError(TransportError):
    """A timed out command could not be killed or its session reopened."""
