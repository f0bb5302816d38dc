"""Transport interface and the SSH implementation on paramiko."""

import socket
import time
from abc import ABC, abstractmethod
from typing import Any, List, NamedTuple, Optional, Tuple

import paramiko

from .config import ConnectionSettings
from .errors import AuthFailure, ConnectFailure, StartFailure
from .models import Execution, UNKNOWN_EXIT_STATUS

BUFFER_SIZE = 32768


class Transport(ABC):
    """Runs commands on a session and exposes their output without blocking.

    A session is whatever object the transport needs to start commands
    (an SSH connection, a process table). The pool owns it and is the only
    caller of these methods.
    """

    @abstractmethod
    def open(self) -> Any:
        """Establish a session. Raises AuthFailure or ConnectFailure."""

    @abstractmethod
    def start(self, session: Any, command: str) -> Execution:
        """Start a command. Raises StartFailure."""

    @abstractmethod
    def poll(self, stream: Any) -> Tuple[bytes, bool]:
        """Return the bytes readable right now and whether the stream hit EOF."""

    @abstractmethod
    def exit_code(self, execution: Execution) -> int:
        """Exit status of a finished or killed command, -1 if unavailable."""

    @abstractmethod
    def kill(self, execution: Execution) -> None:
        """Force the command to stop and close its streams."""

    def release(self, execution: Execution) -> None:
        """Free a command's streams after it finished normally."""

    def reopen(self, session: Any) -> Any:
        """Return a session usable after a kill, reconnecting if needed."""
        self.close(session)
        return self.open()

    @abstractmethod
    def close(self, session: Any) -> None:
        """Tear the session down."""


class _ChannelStream(NamedTuple):
    channel: paramiko.Channel
    stderr: bool


class SshConnection:
    """One authenticated client and the number of exec channels open on it."""

    def __init__(self, client: paramiko.SSHClient):
        self.client = client
        self.channels = 0
        self.limit: Optional[int] = None  # learned when the server refuses a channel

    def active(self) -> bool:
        transport = self.client.get_transport()
        return transport is not None and transport.is_active()

    def has_room(self) -> bool:
        return self.limit is None or self.channels < self.limit


class SshSession:
    """The connections a pool spreads its commands over."""

    def __init__(self, connections: Optional[List[SshConnection]] = None):
        self.connections: List[SshConnection] = list(connections or [])

    def prune(self) -> None:
        """Close and forget connections that dropped."""
        for connection in [c for c in self.connections if not c.active()]:
            connection.client.close()
            self.connections.remove(connection)

    def close(self) -> None:
        for connection in self.connections:
            connection.client.close()
        self.connections = []


class _ChannelHandle:
    def __init__(self, channel: paramiko.Channel, connection: SshConnection):
        self.channel = channel
        self.connection = connection
        self.released = False

    def release(self) -> None:
        self.channel.close()
        if not self.released:
            self.released = True
            self.connection.channels -= 1


class ParamikoTransport(Transport):
    """SSH transport: one exec channel per command, spread over a few connections.

    Channels are opened on the first connection with room. When the server
    refuses a channel (sshd's MaxSessions) that connection's limit is
    remembered and another connection is opened, up to ``max_connections``.
    Only then does ``start`` raise StartFailure.
    """

    def __init__(self, settings: Optional[ConnectionSettings] = None):
        self.settings = settings or ConnectionSettings()

    def _credentials(self) -> List[dict]:
        # key first, then password, like ssh itself
        attempts = []
        if self.settings.private_key:
            attempts.append({"key_filename": self.settings.private_key})
        if self.settings.password:
            attempts.append({"password": self.settings.password})
        if not attempts:
            attempts.append({"allow_agent": True, "look_for_keys": True})
        return attempts

    def _connect(self) -> paramiko.SSHClient:
        """Open and authenticate one connection."""
        target = f"{self.settings.user}@{self.settings.host}:{self.settings.port}"
        last_error: Optional[Exception] = None

        for credentials in self._credentials():
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            connect_kwargs = {
                "hostname": self.settings.host,
                "port": self.settings.port,
                "username": self.settings.user,
                "timeout": self.settings.connect_timeout,
                "allow_agent": False,
                "look_for_keys": False,
            }
            connect_kwargs.update(credentials)
            try:
                client.connect(**connect_kwargs)
            except paramiko.AuthenticationException as e:
                client.close()
                last_error = e
                continue
            except (paramiko.SSHException, socket.error) as e:
                client.close()
                raise ConnectFailure(f"Cannot connect to {target}: {e}") from e

            if self.settings.connection_delay:
                time.sleep(self.settings.connection_delay)
            return client

        raise AuthFailure(f"Authentication failed for {target}: {last_error}") from last_error

    def open(self) -> SshSession:
        """Connect and authenticate the first connection."""
        return SshSession([SshConnection(self._connect())])

    def _execute(self, connection: SshConnection, command: str) -> Execution:
        channel = connection.client.get_transport().open_session()
        try:
            channel.exec_command(command)
        except (paramiko.SSHException, socket.error):
            channel.close()
            raise

        channel.setblocking(0)
        connection.channels += 1
        return Execution(
            command=command,
            stdout=_ChannelStream(channel, False),
            stderr=_ChannelStream(channel, True),
            handle=_ChannelHandle(channel, connection),
        )

    def start(self, session: SshSession, command: str) -> Execution:
        """Open an exec channel, adding a connection when the open ones are full."""
        session.prune()
        last_error: Optional[Exception] = None
        for connection in session.connections:
            if not connection.has_room():
                continue
            try:
                return self._execute(connection, command)
            except paramiko.ChannelException as e:
                connection.limit = connection.channels
                last_error = e
            except (paramiko.SSHException, socket.error) as e:
                last_error = e

        if len(session.connections) >= self.settings.max_connections:
            reason = last_error or f"all {len(session.connections)} connections are full"
            raise StartFailure(f"Cannot start '{command}': {reason}") from last_error

        try:
            connection = SshConnection(self._connect())
        except (AuthFailure, ConnectFailure) as e:
            raise StartFailure(f"Cannot open another connection: {e}") from e
        session.connections.append(connection)
        try:
            return self._execute(connection, command)
        except (paramiko.SSHException, socket.error) as e:
            if isinstance(e, paramiko.ChannelException):
                connection.limit = connection.channels
            raise StartFailure(f"Cannot start '{command}': {e}") from e

    def poll(self, stream: _ChannelStream) -> Tuple[bytes, bool]:
        channel = stream.channel
        if stream.stderr:
            ready, recv = channel.recv_stderr_ready, channel.recv_stderr
        else:
            ready, recv = channel.recv_ready, channel.recv

        chunks = []
        while ready():
            data = recv(BUFFER_SIZE)
            if not data:
                break
            chunks.append(data)

        eof = (channel.eof_received or channel.closed) and not ready()
        return b"".join(chunks), eof

    def exit_code(self, execution: Execution) -> int:
        # waits for the exit-status message, which trails EOF by at most a packet;
        # a closed channel without one yields -1
        status = execution.handle.channel.recv_exit_status()
        return UNKNOWN_EXIT_STATUS if status is None else status

    def kill(self, execution: Execution) -> None:
        execution.handle.release()

    def release(self, execution: Execution) -> None:
        execution.handle.release()

    def reopen(self, session: SshSession) -> SshSession:
        """Drop dead connections, reconnecting only when none survived."""
        session.prune()
        if not session.connections:
            session.connections.append(SshConnection(self._connect()))
        return session

    def close(self, session: SshSession) -> None:
        session.close()
