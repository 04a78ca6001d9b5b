"""Deadlines and cooperative backoff for the polling loops."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

logger = logging.getLogger("appiumkit.wait")

DEFAULT_POLL_INTERVAL = 0.2


def _now() -> float:
    return time.monotonic()


class Deadline:
    """A start instant plus a duration, measured on the monotonic clock.

    One deadline is created per top-level operation and handed down to the
    operations it nests, so they all spend the same budget.
    """

    def __init__(self, timeout: float, start: Optional[float] = None) -> None:
        if timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {timeout}")
        self.timeout = timeout
        self.start = _now() if start is None else start

    def elapsed(self) -> float:
        return _now() - self.start

    def remaining(self) -> float:
        return max(0.0, self.timeout - self.elapsed())

    def expired(self) -> bool:
        return self.elapsed() >= self.timeout

    def __repr__(self) -> str:
        return f"Deadline(timeout={self.timeout:.3f}, remaining={self.remaining():.3f})"


async def backoff(seconds: float) -> None:
    if seconds <= 0:
        return
    logger.debug("backing off %.3fs", seconds)
    await asyncio.sleep(seconds)
