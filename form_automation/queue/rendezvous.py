"""
File Upload Rendezvous

Lets the worker suspend on a file input until the matching upload arrives,
the task is deleted, or the wait times out.  Paused waits are keyed by
``(task_id, selector)`` and can be inspected through :meth:`pending`.
"""

import asyncio
import logging
from typing import Dict, List, Tuple

from .errors import TaskCancelled, UploadTimeoutError
from .events import EventBus, FileUploaded, TaskDeleted

logger = logging.getLogger(__name__)

WaitKey = Tuple[str, str]


class FileRendezvous:
    """Keyed waits for ``FileUploaded`` signals."""

    def __init__(self, events: EventBus) -> None:
        self._events = events
        self._waiting: Dict[WaitKey, "asyncio.Future[str]"] = {}

    def pending(self) -> List[WaitKey]:
        """Keys of every wait currently suspended."""
        return list(self._waiting)

    def is_waiting(self, task_id: str, selector: str) -> bool:
        return (task_id, selector) in self._waiting

    async def wait(self, task_id: str, selector: str, timeout: float) -> str:
        """Block until a file is uploaded for ``(task_id, selector)``.

        Returns:
            The path of the uploaded file.

        Raises:
            TaskCancelled:      the task was deleted while waiting.
            UploadTimeoutError: nothing arrived within *timeout* seconds.
        """
        key = (task_id, selector)
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[str]" = loop.create_future()

        def on_upload(event: FileUploaded) -> None:
            if (event.task_id, event.selector) == key and not future.done():
                future.set_result(event.file_path)

        def on_delete(event: TaskDeleted) -> None:
            if event.task_id == task_id and not future.done():
                future.set_exception(
                    TaskCancelled(task_id, "Task cancelled during upload wait")
                )

        self._waiting[key] = future
        uploads = self._events.subscribe(FileUploaded, on_upload)
        deletions = self._events.subscribe(TaskDeleted, on_delete)
        try:
            with uploads, deletions:
                try:
                    return await asyncio.wait_for(future, timeout=timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Upload wait timed out for task %s, selector %s", task_id[:8], selector
                    )
                    raise UploadTimeoutError("Timed out waiting for file upload") from None
        finally:
            self._waiting.pop(key, None)
