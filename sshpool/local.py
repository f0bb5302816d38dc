"""Transport that runs commands as local shell processes."""

import os
import signal
import subprocess
from typing import Optional, Set, Tuple

from .errors import StartFailure
from .models import Execution, UNKNOWN_EXIT_STATUS
from .transport import BUFFER_SIZE, Transport


class LocalSession:
    """Processes started by a LocalTransport."""

    def __init__(self):
        self.processes: Set[subprocess.Popen] = set()


class LocalTransport(Transport):
    """Runs each command through the shell with non-blocking pipes (POSIX only).

    ``max_sessions`` caps how many commands may run at once, mimicking an
    SSH server's session limit; starts past it raise StartFailure.
    """

    def __init__(self, max_sessions: Optional[int] = None):
        self.max_sessions = max_sessions

    def open(self) -> LocalSession:
        return LocalSession()

    def start(self, session: LocalSession, command: str) -> Execution:
        if self.max_sessions is not None and len(session.processes) >= self.max_sessions:
            raise StartFailure(f"Session limit of {self.max_sessions} reached")
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise StartFailure(f"Cannot start '{command}': {e}") from e

        os.set_blocking(process.stdout.fileno(), False)
        os.set_blocking(process.stderr.fileno(), False)
        session.processes.add(process)
        return Execution(
            command=command,
            stdout=process.stdout,
            stderr=process.stderr,
            handle=(session, process),
        )

    def poll(self, stream) -> Tuple[bytes, bool]:
        try:
            data = os.read(stream.fileno(), BUFFER_SIZE)
        except BlockingIOError:
            return b"", False
        return data, data == b""

    def exit_code(self, execution: Execution) -> int:
        _, process = execution.handle
        returncode = process.wait()
        # negative means killed by a signal
        return UNKNOWN_EXIT_STATUS if returncode < 0 else returncode

    def kill(self, execution: Execution) -> None:
        _, process = execution.handle
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        process.wait()
        self.release(execution)

    def release(self, execution: Execution) -> None:
        session, process = execution.handle
        process.stdout.close()
        process.stderr.close()
        session.processes.discard(process)

    def reopen(self, session: LocalSession) -> LocalSession:
        # processes are independent, nothing to recycle
        return session

    def close(self, session: LocalSession) -> None:
        for process in list(session.processes):
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            process.wait()
            process.stdout.close()
            process.stderr.close()
        session.processes.clear()
