"""
Cooperative Cancellation
========================

A cancellation token shared between the task loop and whoever may stop it
(API route, CLI signal handler). The loop reads it at every step boundary
and inside every wait, so cancellation takes effect within one sleep slice.
"""

import asyncio
import threading
from typing import Optional

# Upper bound on a single sleep slice
MAX_SLEEP_SLICE = 0.5


class CancellationToken:
    """
    Thread-safe, one-way cancellation flag.

    ``cancel`` may be called from any thread; readers on the event loop use
    ``is_cancelled``.
    """

    def __init__(self) -> None:
        self._flag = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Task cancelled") -> None:
        if not self._flag.is_set():
            self.reason = reason
            self._flag.set()

    @property
    def is_cancelled(self) -> bool:
        return self._flag.is_set()


async def interruptible_sleep(
    token: CancellationToken,
    seconds: float,
    step: float = 0.1,
) -> bool:
    """
    Sleep in small slices, stopping early once the token is cancelled.

    Args:
        token: Cancellation token to poll.
        seconds: Total time to sleep.
        step: Slice length, capped at ``MAX_SLEEP_SLICE``.

    Returns:
        True if the full duration elapsed, False if cancelled.
    """
    step = min(max(step, 0.01), MAX_SLEEP_SLICE)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(seconds, 0.0)

    while True:
        if token.is_cancelled:
            return False
        remaining = deadline - loop.time()
        if remaining <= 0:
            return True
        await asyncio.sleep(min(step, remaining))
