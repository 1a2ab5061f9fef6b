"""Explicit cancellation token with an optional deadline."""

from __future__ import annotations

import threading
import time

from watchy.agent.errors import Cancelled


class CancelToken:
    """Cancellation signal shared between the caller and a running turn.

    The token fires when ``cancel()`` is called or when its deadline passes.
    Turns check it at fixed points; nothing is interrupted mid-call.
    """

    def __init__(self, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> CancelToken:
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` without one."""

        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled
