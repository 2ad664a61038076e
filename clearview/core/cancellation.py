"""
Cooperative cancellation for pipeline workers.

A token is only observed at suspension points (channel waits and the
capture pacing sleep). Work already in progress, such as a forward pass,
always runs to completion.
"""
import threading
from typing import Optional


class CancellationToken:
    """One-shot cancel flag that sleeping workers can wait on."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Sleep up to ``timeout`` seconds, returning early on cancellation.

        Returns:
            True if the token was cancelled.
        """
        return self._event.wait(timeout)
