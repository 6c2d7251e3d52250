"""
Automation runtime

Runs the scheduler, the worker and the broadcaster on an asyncio loop in a
background thread, so a blocking front end (the Flask dashboard) can call
scheduler operations from its own threads through :meth:`AutomationRuntime.call`.
"""

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
from typing import Any, Callable, Optional, TypeVar

from .broadcast import Broadcaster
from .browser_automation import BrowserSession, PlaywrightSession
from .config import Settings
from .queue.scheduler import TaskScheduler
from .queue.worker import AutomationWorker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AutomationRuntime:
    """Owns the event loop thread and the objects living on it.

    Args:
        settings:        Runtime settings.
        session_factory: Browser session factory; defaults to a
                         :class:`PlaywrightSession` built from *settings*.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[Callable[[], BrowserSession]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.session_factory = session_factory or self._default_session
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.scheduler: Optional[TaskScheduler] = None
        self.worker: Optional[AutomationWorker] = None
        self.broadcaster: Optional[Broadcaster] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[asyncio.Event] = None

    def _default_session(self) -> BrowserSession:
        return PlaywrightSession(
            headless=self.settings.headless, slow_mo_ms=self.settings.slow_mo_ms
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, timeout: float = 5.0) -> None:
        """Start the loop thread and wire the components on it."""
        if self._thread is not None:
            return

        ready = threading.Event()

        async def main() -> None:
            self._stop_event = asyncio.Event()
            self.scheduler = TaskScheduler()
            self.worker = AutomationWorker(self.scheduler, self.session_factory, self.settings)
            self.broadcaster = Broadcaster(self.scheduler)
            self.worker.start()
            ready.set()
            await self._stop_event.wait()
            await self.worker.stop()
            self.broadcaster.close()

        def runner() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self.loop = loop
            try:
                loop.run_until_complete(main())
            finally:
                with contextlib.suppress(Exception):
                    loop.close()

        self._thread = threading.Thread(target=runner, name="automation-loop", daemon=True)
        self._thread.start()
        if not ready.wait(timeout=timeout):
            raise RuntimeError("Automation loop did not start in time")
        logger.info("Automation runtime started")

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        if self._thread is None or self.loop is None or self._stop_event is None:
            return
        try:
            self.loop.call_soon_threadsafe(self._stop_event.set)
        except RuntimeError:
            logger.debug("Automation loop already closed", exc_info=True)
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Automation runtime stopped")

    # ------------------------------------------------------------------
    # Cross-thread calls
    # ------------------------------------------------------------------

    def call(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = 10.0, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` on the loop thread and return its result.

        Exceptions raised by *fn* are re-raised in the calling thread.
        """
        if self.loop is None:
            raise RuntimeError("Automation runtime is not running")
        if threading.current_thread() is self._thread:
            return fn(*args, **kwargs)

        future: "concurrent.futures.Future[T]" = concurrent.futures.Future()

        def invoke() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)

        self.loop.call_soon_threadsafe(invoke)
        return future.result(timeout=timeout)
