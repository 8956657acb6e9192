"""Resend cooldown for verification codes."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
TickListener = Callable[[int], None]


class Countdown:
    """
    Repeating one-second task that counts ``seconds`` down to zero.

    The task belongs to whoever created the Countdown and survives anything
    the presentation layer does; ``cancel()`` stops it and zeroes the counter.
    ``sleep`` is injectable so tests can drive the clock by hand.
    """

    def __init__(self, seconds: int = 60, *, sleep: Optional[Sleep] = None):
        self.seconds = seconds
        self._sleep: Sleep = sleep or asyncio.sleep
        self._remaining = 0
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[TickListener] = []

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def active(self) -> bool:
        return self._remaining > 0

    def on_tick(self, listener: TickListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        """(Re)start from ``seconds``. Needs a running event loop."""
        self.cancel()
        if self.seconds <= 0:
            return
        self._remaining = self.seconds
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._remaining = 0

    async def _run(self) -> None:
        while self._remaining > 0:
            await self._sleep(1)
            self._remaining -= 1
            for listener in list(self._listeners):
                listener(self._remaining)
        logger.debug("[Countdown] Finished, resend available")
