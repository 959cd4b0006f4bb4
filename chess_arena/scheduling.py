"""Cancellable one-shot timer for debounced oracle requests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any


class CancellableTimer:
    """Run an async callback once after ``delay`` seconds.

    ``cancel`` only stops a timer that is still waiting. Once the callback
    has started it runs to completion; callers rely on their own staleness
    checks to throw its result away.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[Any]]) -> None:
        self.delay = max(0.0, delay)
        self._callback = callback
        self._task: asyncio.Task | None = None
        self._fired = False
        self._cancelled = False

    def start(self) -> CancellableTimer:
        if self._task is not None:
            raise RuntimeError("Timer already started")
        self._task = asyncio.create_task(self._run())
        return self

    async def _run(self) -> Any:
        await asyncio.sleep(self.delay)
        self._fired = True
        return await self._callback()

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> bool:
        """Cancel if the delay has not elapsed yet. Returns True if cancelled."""
        if self._task is None or self._fired or self._task.done():
            return False
        self._cancelled = True
        self._task.cancel()
        return True

    async def wait(self) -> Any:
        """Await the callback's result; None if the timer was cancelled."""
        if self._task is None:
            return None
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancelled:
                return None
            raise
