"""Data models for commands and their results."""

from enum import Enum
from typing import Any, Callable
from pydantic import BaseModel, Field

# Exit status used when the transport cannot report one (killed, never started).
UNKNOWN_EXIT_STATUS = -1

# (command, id, data, exit_status, stdout, stderr)
CommandCallback = Callable[[str, str, Any, int, str, str], None]


class CommandState(str, Enum):
    """Command lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


class Classification(str, Enum):
    """Outcome of one finished attempt."""
    SUCCESS = "success"
    RETRY_SCHEDULED = "retry_scheduled"
    FINAL_FAILURE = "final_failure"


class Command(BaseModel):
    """A unit of work waiting for a free slot."""
    id: str
    command: str = Field(frozen=True)
    timeout: float = Field(default=0, ge=0)
    retries: int = Field(default=0, ge=0)


class Execution(BaseModel):
    """A command started by a transport: its two output streams and a handle."""
    command: str
    stdout: Any
    stderr: Any
    handle: Any = None

    class Config:
        arbitrary_types_allowed = True


class RunningCommand(BaseModel):
    """An admitted command and the output read from it so far."""
    record: Command
    execution: Execution
    started_at: float
    stdout: bytes = b""
    stderr: bytes = b""
    stdout_eof: bool = False
    stderr_eof: bool = False

    @property
    def id(self) -> str:
        return self.record.id

    def finished(self) -> bool:
        """Both streams reached end-of-stream."""
        return self.stdout_eof and self.stderr_eof

    def expired(self, now: float) -> bool:
        """The command has been running longer than its timeout."""
        return self.record.timeout > 0 and now - self.started_at > self.record.timeout


class DelayedCommand(BaseModel):
    """A failed command waiting before it re-enters the queue."""
    record: Command
    not_before: float

    def ready(self, now: float) -> bool:
        return now >= self.not_before


class CommandResult(BaseModel):
    """Final outcome of a command."""
    id: str = ""
    command: str
    exit_status: int
    stdout: str = ""
    stderr: str = ""
    retries: int = 0
    success: bool = False
    timed_out: bool = False

    @property
    def state(self) -> CommandState:
        return CommandState.COMPLETED if self.success else CommandState.FAILED


def trim_output(raw: bytes) -> str:
    """Decode command output and strip trailing carriage returns and newlines."""
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")
