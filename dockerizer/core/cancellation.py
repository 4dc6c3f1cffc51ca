"""Cancellation token threaded through every external call.

A token combines an explicit cancel flag with an optional deadline. Blocking
operations take their timeout from remaining() and their waits from wait(),
so a cancelled run stops scheduling new work promptly.
"""

from __future__ import annotations

import threading
import time

from dockerizer.core.errors import RunCancelledError


class CancellationToken:
    """Thread-safe cancel flag with an optional monotonic deadline."""

    def __init__(self, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline
        self._reason = "cancelled"

    @classmethod
    def with_timeout(cls, seconds: float | None) -> CancellationToken:
        """Create a token that expires after `seconds` (None = never)."""
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = "timed out"
            self._event.set()
            return True
        return False

    @property
    def reason(self) -> str:
        return self._reason

    def remaining(self) -> float | None:
        """Seconds until the deadline, None if unbounded, 0.0 if expired."""
        if self._event.is_set():
            return 0.0
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`, returning early (True) if cancelled."""
        remaining = self.remaining()
        timeout = seconds if remaining is None else min(seconds, remaining)
        self._event.wait(timeout)
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(self._reason)
