"""
Cancellation Token Module
Cooperative cancellation signal passed down the step execution chain.
"""

import threading

from cdc_sync.errors import SyncError


class TaskCancelled(SyncError):
    """Raised at a step boundary once cancellation was requested."""

    http_status = 409


class CancellationToken:
    """
    Thread-safe, one-way cancellation flag.

    The engine checks it once before each step; an in-flight statement is
    never interrupted.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str) -> None:
        if self._event.is_set():
            raise TaskCancelled(f"Cancelled before {where}")
