"""Delivers final results to callbacks and keeps them for later inspection."""

from typing import Any, Dict, Optional
from .models import CommandCallback, CommandResult


class CompletionDispatcher:
    """Invokes each command's callback once and stores its result."""

    def __init__(self):
        self.callbacks: Dict[str, CommandCallback] = {}
        self.callback_data: Dict[str, Any] = {}
        self.results: Dict[str, CommandResult] = {}

    def register(self, command_id: str, data: Any = None, callback: Optional[CommandCallback] = None) -> None:
        """Remember the caller data and callback of a submitted command."""
        self.callback_data[command_id] = data
        if callback is not None:
            self.callbacks[command_id] = callback
        else:
            self.callbacks.pop(command_id, None)

    def dispatch(self, result: CommandResult) -> None:
        """Store the result, then hand it to the callback if one was registered.

        The command's data and callback entries are dropped before the
        callback runs, so the ID may be submitted again from inside it and
        an exception raised by the callback still leaves the tables clean.
        """
        self.results[result.id] = result
        data = self.callback_data.pop(result.id, None)
        callback = self.callbacks.pop(result.id, None)
        if callback is not None:
            callback(result.command, result.id, data, result.exit_status, result.stdout, result.stderr)

    @property
    def stdout(self) -> Dict[str, str]:
        return {command_id: result.stdout for command_id, result in self.results.items()}

    @property
    def stderr(self) -> Dict[str, str]:
        return {command_id: result.stderr for command_id, result in self.results.items()}

    @property
    def exit_status(self) -> Dict[str, int]:
        return {command_id: result.exit_status for command_id, result in self.results.items()}
