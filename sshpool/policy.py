"""Retry and output validation policy."""

import time
from typing import Callable
from .config import PoolSettings
from .models import Classification, Command, DelayedCommand
from .queue import CommandQueue


class RetryPolicy:
    """Decides what happens to a command after an attempt finished.

    A successful attempt exits with status 0 and, when ``min_config_size``
    is set, produced at least that many bytes of stdout. Anything else is
    retried after ``wait_retry`` seconds until ``max_retries`` retries have
    been spent, then it is a final failure.
    """

    def __init__(
        self,
        settings: PoolSettings,
        queue: CommandQueue,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.queue = queue
        self.clock = clock

    def is_valid(self, exit_status: int, output_len: int) -> bool:
        """Check exit status and minimum output size."""
        if exit_status != 0:
            return False
        min_size = self.settings.min_config_size
        return min_size == 0 or output_len >= min_size

    def classify(self, record: Command, exit_status: int, output_len: int) -> Classification:
        """Classify an attempt; retries are moved into the retry-delay set."""
        if self.is_valid(exit_status, output_len):
            return Classification.SUCCESS

        if record.retries < self.settings.max_retries:
            record.retries += 1
            not_before = self.clock() + self.settings.wait_retry
            self.queue.delay(DelayedCommand(record=record, not_before=not_before))
            return Classification.RETRY_SCHEDULED

        return Classification.FINAL_FAILURE
