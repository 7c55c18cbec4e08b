"""Polling wait with a hard ceiling and cooperative cancellation."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Callable


class WaitTimeoutError(TimeoutError):
    """Raised when a condition does not hold before the deadline."""


class WaitCancelledError(RuntimeError):
    """Raised when the cancel event fires before the condition holds."""


async def wait_for_condition(
    predicate: Callable[[], bool],
    *,
    interval: float,
    timeout: float,
    cancel_event: asyncio.Event | None = None,
    description: str = "condition",
) -> None:
    """Poll ``predicate`` every ``interval`` seconds until it returns true.

    The predicate is checked once before the first sleep, so an already
    satisfied condition returns immediately.
    """

    if interval <= 0:
        raise ValueError("interval must be positive")

    deadline = time.monotonic() + timeout
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise WaitCancelledError(f"Wait for {description} was cancelled")
        if predicate():
            return

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise WaitTimeoutError(f"Timed out after {timeout:g}s waiting for {description}")

        delay = min(interval, remaining)
        if cancel_event is None:
            await asyncio.sleep(delay)
            continue
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)


__all__ = ["WaitCancelledError", "WaitTimeoutError", "wait_for_condition"]
