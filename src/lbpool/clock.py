"""Time source and cancellation-aware sleeping.

All waiting in the reconciler (retry backoff, poll intervals) goes through
Clock.sleep so that an operation can be abandoned within one interval:
either by cancelling the asyncio task or by setting the cancel event that
the caller passed in (e.g. from a SIGTERM handler).
"""

from __future__ import annotations

import asyncio
import time

from .errors import OperationCancelled


class Clock:
    """Monotonic clock with interruptible sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float, cancel_event: asyncio.Event | None = None) -> None:
        """Sleep for up to `seconds`, returning early only by raising.

        Args:
            seconds: Time to wait.
            cancel_event: Optional event; if it is set before or during the
                wait, OperationCancelled is raised.

        Raises:
            OperationCancelled: If the cancel event is set.
        """
        if cancel_event is None:
            await asyncio.sleep(max(seconds, 0))
            return

        if cancel_event.is_set():
            raise OperationCancelled("Operation cancelled")

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=max(seconds, 0))
        except TimeoutError:
            # Normal timeout, the interval elapsed
            return
        raise OperationCancelled("Operation cancelled")


class Deadline:
    """Absolute deadline shared by every phase of one operation."""

    def __init__(self, clock: Clock, timeout_seconds: float) -> None:
        self._clock = clock
        self._timeout_seconds = timeout_seconds
        self._expires_at = clock.monotonic() + timeout_seconds

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(self._expires_at - self._clock.monotonic(), 0.0)

    def expired(self) -> bool:
        return self._clock.monotonic() >= self._expires_at
