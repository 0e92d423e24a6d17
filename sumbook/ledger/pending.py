"""
Background Writes

Non-batch writes are fire-and-forget: the caller gets control back
immediately and the subscription stream reports the outcome. This
tracker keeps a reference to every in-flight write so it isn't
garbage collected, reports failures through a handler, and lets a
host (or a test) wait for everything to settle.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog


logger = structlog.get_logger(__name__)

FailureHandler = Callable[[str, Exception], Awaitable[None]]


class PendingWrites:
    """Set of in-flight background writes."""

    def __init__(self, on_failure: Optional[FailureHandler] = None):
        self._tasks: set[asyncio.Task] = set()
        self.on_failure = on_failure

    def spawn(self, write: Awaitable[None], action: str) -> asyncio.Task:
        """
        Schedule a write on the running loop and return without waiting.

        Must be called from inside the event loop.
        """
        task = asyncio.get_running_loop().create_task(self._run(write, action))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, write: Awaitable[None], action: str) -> None:
        try:
            await write
        except Exception as e:
            logger.error("background_write_failed", action=action, error=str(e))
            if self.on_failure is not None:
                await self.on_failure(action, e)

    @property
    def count(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no write is in flight, including writes spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
