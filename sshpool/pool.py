"""Bounded-concurrency command scheduler."""

import sys
import time
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from .config import PoolSettings
from .dispatcher import CompletionDispatcher
from .errors import SessionRecoveryError, StartFailure
from .models import (
    Classification,
    Command,
    CommandCallback,
    CommandResult,
    RunningCommand,
    UNKNOWN_EXIT_STATUS,
    trim_output,
)
from .policy import RetryPolicy
from .queue import CommandQueue
from .transport import ParamikoTransport, Transport


class SshPool:
    """Runs many commands over one transport session, at most ``max_threads`` at a time.

    Everything happens on the calling thread: each cycle admits pending
    commands, reads whatever output is available without blocking, finishes
    commands that reached EOF or their timeout, and requeues delayed retries.

    Example:
        with SshPool(ParamikoTransport(ConnectionSettings(host="10.0.0.5")), max_threads=10) as pool:
            for host in hosts:
                pool.submit(f"ping -c1 {host}", data=host, callback=on_done)
            pool.run_until_done()
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        settings: Optional[PoolSettings] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        **overrides: Any,
    ):
        if settings is None:
            settings = PoolSettings(**overrides)
        elif overrides:
            settings = PoolSettings(**{**settings.model_dump(), **overrides})
        self.settings = settings
        self.transport = transport or ParamikoTransport()
        self.clock = clock
        self.sleep = sleep
        self.queue = CommandQueue()
        self.dispatcher = CompletionDispatcher()
        self.policy = RetryPolicy(self.settings, self.queue, clock)
        self._session: Any = None

    # Configuration

    @property
    def max_threads(self) -> int:
        return self.settings.max_threads

    @property
    def max_retries(self) -> int:
        return self.settings.max_retries

    @property
    def wait_retry(self) -> float:
        return self.settings.wait_retry

    @property
    def min_config_size(self) -> int:
        return self.settings.min_config_size

    @property
    def debug(self) -> bool:
        return self.settings.debug

    def set_max_threads(self, max_threads: int) -> None:
        self.settings.max_threads = max_threads

    def set_max_retries(self, max_retries: int) -> None:
        self.settings.max_retries = max_retries

    def set_wait_retry(self, wait_retry: float) -> None:
        self.settings.wait_retry = wait_retry

    def set_min_config_size(self, min_config_size: int) -> None:
        self.settings.min_config_size = min_config_size

    def set_debug(self, debug: bool) -> None:
        self.settings.debug = debug

    # Results

    @property
    def results(self) -> Dict[str, CommandResult]:
        return self.dispatcher.results

    @property
    def stdout(self) -> Dict[str, str]:
        return self.dispatcher.stdout

    @property
    def stderr(self) -> Dict[str, str]:
        return self.dispatcher.stderr

    @property
    def exit_status(self) -> Dict[str, int]:
        return self.dispatcher.exit_status

    def stats(self) -> Dict[str, int]:
        """Get command counts per state."""
        completed = sum(1 for result in self.results.values() if result.success)
        return {
            "pending": len(self.queue.pending),
            "running": len(self.queue.running),
            "delayed": len(self.queue.delayed),
            "completed": completed,
            "failed": len(self.results) - completed,
        }

    def is_idle(self) -> bool:
        return self.queue.is_empty()

    # Submission

    def submit(
        self,
        command: str,
        command_id: Optional[str] = None,
        data: Any = None,
        callback: Optional[CommandCallback] = None,
        timeout: float = 0,
    ) -> str:
        """Queue a command and return its ID.

        Raises DuplicateIDError if ``command_id`` is still pending, running
        or waiting for a retry.
        """
        if command_id is None:
            command_id = uuid.uuid4().hex
        record = Command(id=command_id, command=command, timeout=timeout)
        self.queue.enqueue(record)
        self.dispatcher.register(command_id, data, callback)
        self._log(f"Adding queued command {command_id}: {command}")
        return command_id

    add_command = submit

    # Running

    def run(self, once: bool = False) -> bool:
        """Run one cycle if ``once``, otherwise until all work is done."""
        return self.run_once() if once else self.run_until_done()

    def run_once(self) -> bool:
        """Run a single cycle. Returns True when no work is left."""
        finished, _ = self._cycle()
        return finished

    def run_until_done(self) -> bool:
        """Cycle until every command has completed, sleeping while nothing moves."""
        while True:
            finished, progress = self._cycle()
            if finished:
                return True
            if not progress:
                self.sleep(self.settings.poll_interval)

    def run_command(self, command: str) -> CommandResult:
        """Run one command outside the pool and block until it ends.

        No timeout, retry or callback applies. StartFailure is raised to the
        caller since there is no queue to put the command back in.
        """
        session = self._ensure_session()
        execution = self.transport.start(session, command)
        running = RunningCommand(
            record=Command(id="", command=command),
            execution=execution,
            started_at=self.clock(),
        )
        while True:
            got_bytes = self._read(running)
            if running.finished():
                break
            if not got_bytes:
                self.sleep(self.settings.poll_interval)

        exit_status = self.transport.exit_code(execution)
        self.transport.release(execution)
        return CommandResult(
            command=command,
            exit_status=exit_status,
            stdout=trim_output(running.stdout),
            stderr=trim_output(running.stderr),
            success=exit_status == 0,
        )

    def _cycle(self) -> Tuple[bool, bool]:
        progress = self._admit()
        progress = self._poll() or progress
        progress = bool(self.queue.release_ready(self.clock())) or progress
        return self.queue.is_empty(), progress

    def _admit(self) -> bool:
        """Start pending commands while there are free slots."""
        if not self.queue.pending or len(self.queue.running) >= self.settings.max_threads:
            return False

        session = self._ensure_session()
        admitted = False
        while len(self.queue.running) < self.settings.max_threads and self.queue.pending:
            record = self.queue.next_pending()
            try:
                execution = self.transport.start(session, record.command)
            except StartFailure as e:
                self._start_failed(record, e)
                return True
            self.queue.mark_running(RunningCommand(record=record, execution=execution, started_at=self.clock()))
            self._log(f"[{record.id}] Running {record.command}")
            admitted = True
        return admitted

    def _start_failed(self, record: Command, error: StartFailure) -> None:
        """Shrink the pool to what the transport can hold and put the command back."""
        self.settings.max_threads = max(1, len(self.queue.running))
        self._log(f"[{record.id}] Start failed ({error}), max threads now {self.settings.max_threads}", error=True)

        if self.queue.running:
            # capacity problem, try again once a slot frees up
            self.queue.requeue_front(record)
            return

        # nothing else is running, so this counts as a failed attempt
        classification = self.policy.classify(record, UNKNOWN_EXIT_STATUS, 0)
        if classification is Classification.FINAL_FAILURE:
            self._finalize(record, UNKNOWN_EXIT_STATUS, "", str(error), success=False)
        # the session may have dropped, get a working one for the next attempt
        self._recover_session()

    def _poll(self) -> bool:
        """Read output of every running command and finish those that are done."""
        progress = False
        for running in list(self.queue.running.values()):
            if self._read(running):
                progress = True
            if running.finished():
                self._complete(running, timed_out=False)
                progress = True
            elif running.expired(self.clock()):
                self._complete(running, timed_out=True)
                progress = True
        return progress

    def _read(self, running: RunningCommand) -> bool:
        """Append available output to the buffers. Returns True if any bytes arrived."""
        got_bytes = False
        execution = running.execution
        if not running.stdout_eof:
            data, running.stdout_eof = self.transport.poll(execution.stdout)
            if data:
                running.stdout += data
                got_bytes = True
        if not running.stderr_eof:
            data, running.stderr_eof = self.transport.poll(execution.stderr)
            if data:
                running.stderr += data
                got_bytes = True
        return got_bytes

    def _complete(self, running: RunningCommand, timed_out: bool) -> None:
        self.queue.finish(running.id)
        record = running.record
        if timed_out:
            self._log(f"[{record.id}] Timed out after {record.timeout}s", error=True)
            self._kill(running)
            # whatever the shell reported, a timed out attempt never counts as a success
            exit_status = UNKNOWN_EXIT_STATUS
        else:
            exit_status = self.transport.exit_code(running.execution)
            self.transport.release(running.execution)

        stdout = trim_output(running.stdout)
        stderr = trim_output(running.stderr)
        output_len = len(running.stdout.rstrip(b"\r\n"))
        self._log(f"[{record.id}] Finished running '{record.command}' exit {exit_status}, {output_len} bytes")

        classification = self.policy.classify(record, exit_status, output_len)
        if classification is Classification.RETRY_SCHEDULED:
            self._log(f"[{record.id}] Retry {record.retries}/{self.settings.max_retries} in {self.settings.wait_retry}s")
            return
        self._finalize(
            record,
            exit_status,
            stdout,
            stderr,
            success=classification is Classification.SUCCESS,
            timed_out=timed_out,
        )

    def _kill(self, running: RunningCommand) -> None:
        """Kill a timed out command and recycle the session for the next ones."""
        try:
            self.transport.kill(running.execution)
        except Exception as e:
            raise SessionRecoveryError(f"Cannot kill '{running.record.command}': {e}") from e
        self._recover_session()

    def _recover_session(self) -> None:
        try:
            self._session = self.transport.reopen(self._session)
        except Exception as e:
            raise SessionRecoveryError(f"Cannot reopen session: {e}") from e

    def _finalize(
        self,
        record: Command,
        exit_status: int,
        stdout: str,
        stderr: str,
        success: bool,
        timed_out: bool = False,
    ) -> None:
        result = CommandResult(
            id=record.id,
            command=record.command,
            exit_status=exit_status,
            stdout=stdout,
            stderr=stderr,
            retries=record.retries,
            success=success,
            timed_out=timed_out,
        )
        self._log(f"[{record.id}] {'Completed' if success else 'Failed'} after {record.retries} retries")
        self.dispatcher.dispatch(result)

    # Session

    def _ensure_session(self) -> Any:
        if self._session is None:
            self._log("Opening session")
            self._session = self.transport.open()
        return self._session

    def close(self) -> None:
        """Close the session. Commands still running are abandoned."""
        if self._session is None:
            return
        self._log("Closing session")
        session, self._session = self._session, None
        self.transport.close(session)

    disconnect = close

    def __enter__(self) -> "SshPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _log(self, message: str, error: bool = False) -> None:
        if self.settings.debug:
            print(f"[SshPool] {message}", file=sys.stderr if error else sys.stdout)
