"""One-shot timers and background tasks for the control loop.

Components schedule work through a TimerService instead of calling asyncio
directly so tests can substitute a manual clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[Any]]


class TimerService:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return time.time()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` in the background, logging anything it raises."""
        task = asyncio.get_running_loop().create_task(self._guard(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def call_later(self, delay: float, callback: TimerCallback) -> asyncio.Task:
        """Await ``callback()`` after ``delay`` seconds; cancel the returned handle to abort."""

        async def _fire() -> None:
            await asyncio.sleep(delay)
            await callback()

        return self.spawn(_fire())

    async def drain(self) -> None:
        """Wait until every pending task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, Any]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "[transcoder-rotator] background task failed: %s", exc, exc_info=True
            )
