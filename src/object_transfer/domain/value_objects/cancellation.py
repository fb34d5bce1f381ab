"""Cooperative cancellation signal."""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe flag checked by the coordinator and workers.

    Setting the token stops new part dispatch; in-flight workers notice it
    at their next checkpoint, which is between HTTP calls.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Request cancellation. Later calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to ``timeout`` seconds; return True if cancelled."""
        return self._event.wait(timeout)
