# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Inactivity watchdog for a prompting session.

If the speaker makes no progress for a while the watchdog shows a warning
with a short countdown and then stops the session. Any progress, or the
user asking for more time, re-arms it.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_TIMEOUT: float = 15.0
DEFAULT_WARNING_DURATION: int = 5

WarningCallback = Callable[[int | None], Awaitable[None]]
TimeoutCallback = Callable[[], Awaitable[None]]


class InactivityWatchdog:
    """
    Timer state machine: armed -> warning countdown -> timed out.

    Callbacks:
        on_timeout: awaited once the countdown reaches zero
        on_warning: awaited with the remaining count on each tick of the
            countdown, and with None when the warning is dismissed
    """

    def __init__(
        self,
        on_timeout: TimeoutCallback,
        on_warning: WarningCallback | None = None,
        inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
        warning_duration: int = DEFAULT_WARNING_DURATION,
        tick: float = 1.0
    ) -> None:
        self.on_timeout: TimeoutCallback = on_timeout
        self.on_warning: WarningCallback | None = on_warning
        self.inactivity_timeout: float = inactivity_timeout
        self.warning_duration: int = warning_duration
        self.tick: float = tick

        self.showing_warning: bool = False
        self.countdown: int | None = None
        self.last_progress: float | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """True while the watchdog is armed or counting down."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Arm the watchdog."""
        self.last_progress = time.monotonic()
        await self._rearm()

    async def progress(self) -> None:
        """Record progress and restart the quiet period."""
        if not self.running:
            return
        self.last_progress = time.monotonic()
        await self._rearm()

    async def extend(self) -> None:
        """User asked for more time: dismiss the warning and restart."""
        if not self.running and not self.showing_warning:
            return
        self.last_progress = time.monotonic()
        await self._rearm()

    async def stop(self) -> None:
        """Disarm and clear any warning."""
        await self._cancel()
        self.last_progress = None
        await self._clear_warning()

    async def _rearm(self) -> None:
        await self._cancel()
        await self._clear_warning()
        self._task = asyncio.create_task(self._run(), name="inactivity-watchdog")

    async def _cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _clear_warning(self) -> None:
        if not self.showing_warning:
            return
        self.showing_warning = False
        self.countdown = None
        if self.on_warning:
            await self.on_warning(None)

    async def _run(self) -> None:
        await asyncio.sleep(self.inactivity_timeout)

        logger.info("No progress for %.0fs, warning before stopping",
                    self.inactivity_timeout)
        self.showing_warning = True
        for remaining in range(self.warning_duration, 0, -1):
            self.countdown = remaining
            if self.on_warning:
                await self.on_warning(remaining)
            await asyncio.sleep(self.tick)

        # Detach before the callback, which usually stops this watchdog
        self._task = None
        await self._clear_warning()
        logger.info("Inactivity timeout reached")
        await self.on_timeout()
