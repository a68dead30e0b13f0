"""Single-slot deferred task used to re-arm scanning after a quiet period."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class Debouncer:
    """Run ``action`` once ``delay`` seconds after the last :meth:`schedule`.

    Only one run can be pending: scheduling again cancels the pending run and
    starts the quiet period over, so a burst of requests collapses into a
    single call.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[None]]) -> None:
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.delay = delay
        self._action = action
        self._handle: Optional[asyncio.TimerHandle] = None
        self._running: Set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    async def aclose(self) -> None:
        self.cancel()
        running = list(self._running)
        for task in running:
            task.cancel()
        for task in running:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._action())
        self._running.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task[None]) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Deferred action failed: %s", exc, exc_info=exc)


__all__ = ["Debouncer"]
