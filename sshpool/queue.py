"""The three collections a command moves through while it is live."""

from collections import OrderedDict
from typing import Dict, List, Optional
from .errors import DuplicateIDError
from .models import Command, CommandState, DelayedCommand, RunningCommand


class CommandQueue:
    """Pending, running and retry-delayed commands of one pool.

    An ID lives in at most one of the three collections at a time.
    """

    def __init__(self):
        self.pending: "OrderedDict[str, Command]" = OrderedDict()
        self.running: Dict[str, RunningCommand] = {}
        self.delayed: Dict[str, DelayedCommand] = {}

    def __contains__(self, command_id: str) -> bool:
        return command_id in self.pending or command_id in self.running or command_id in self.delayed

    def __len__(self) -> int:
        return len(self.pending) + len(self.running) + len(self.delayed)

    def state_of(self, command_id: str) -> Optional[CommandState]:
        """Where a live command currently is, None once it left the queue."""
        if command_id in self.pending:
            return CommandState.PENDING
        if command_id in self.running:
            return CommandState.RUNNING
        if command_id in self.delayed:
            return CommandState.DELAYED
        return None

    def enqueue(self, record: Command) -> None:
        """Add a new command at the back of the pending queue."""
        if record.id in self:
            raise DuplicateIDError(record.id)
        self.pending[record.id] = record

    def requeue_front(self, record: Command) -> None:
        """Put a command that could not be started back at the head."""
        self.pending[record.id] = record
        self.pending.move_to_end(record.id, last=False)

    def next_pending(self) -> Optional[Command]:
        """Pop the oldest pending command."""
        if not self.pending:
            return None
        _, record = self.pending.popitem(last=False)
        return record

    def mark_running(self, running: RunningCommand) -> None:
        self.running[running.id] = running

    def finish(self, command_id: str) -> RunningCommand:
        """Remove a command from the running set once its attempt ended."""
        return self.running.pop(command_id)

    def delay(self, delayed: DelayedCommand) -> None:
        self.delayed[delayed.record.id] = delayed

    def release_ready(self, now: float) -> List[Command]:
        """Move every delayed command whose wait is over to the back of the queue."""
        ready = [delayed.record for delayed in self.delayed.values() if delayed.ready(now)]
        for record in ready:
            del self.delayed[record.id]
            self.pending[record.id] = record
        return ready

    def is_empty(self) -> bool:
        return not (self.pending or self.running or self.delayed)
