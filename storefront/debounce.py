from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Optional


class Debouncer:
    """
    Run the most recent call only after `delay` seconds without another call.

    Only the quiet period can be cancelled. Once the wrapped coroutine has
    started it runs to completion; callers that care about stale results must
    check for them themselves.
    """

    def __init__(self, delay: float = 0.3):
        self.delay = delay
        self._waiting: Optional[asyncio.Task] = None
        self._last: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._waiting is not None

    def call(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
        self.cancel()
        task = asyncio.ensure_future(self._run(fn, *args))
        self._waiting = self._last = task
        return task

    async def _run(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        await asyncio.sleep(self.delay)
        if self._waiting is asyncio.current_task():
            self._waiting = None
        return await fn(*args)

    def cancel(self) -> None:
        if self._waiting is not None:
            self._waiting.cancel()
        self._waiting = None

    async def wait(self) -> None:
        """Wait for the latest scheduled call to finish or be cancelled."""
        task = self._last
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
