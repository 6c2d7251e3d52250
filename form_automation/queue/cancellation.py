"""
Cooperative cancellation for one automation run.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from .errors import TaskCancelled

T = TypeVar("T")


class CancellationToken:
    """Flag set when the running task is deleted.

    The pipeline calls :meth:`check` between steps and routes every delay
    and wait through :meth:`sleep` / :meth:`race`, so a deletion is observed
    at the next suspension point.
    """

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def check(self) -> None:
        if self._event.is_set():
            raise TaskCancelled(self.task_id)

    async def sleep(self, seconds: float) -> None:
        """Sleep for *seconds*, waking early with TaskCancelled."""
        self.check()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise TaskCancelled(self.task_id)

    async def race(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await *awaitable* unless the token fires first.

        Raises TaskCancelled if cancelled before *awaitable* finishes and
        ``asyncio.TimeoutError`` if *timeout* elapses.
        """
        self.check()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
        if work in done:
            return work.result()
        if waiter in done or self._event.is_set():
            raise TaskCancelled(self.task_id)
        raise asyncio.TimeoutError()
