"""
In-Memory Task Scheduler

Owns every Task record and the FIFO of pending work, enforces that only one
task is processed at a time, and announces lifecycle changes on an
:class:`EventBus`.  Nothing survives a process restart.
"""

import logging
from collections import OrderedDict, deque
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Union

from .errors import ValidationError
from .events import (
    EventBus,
    FileUploaded,
    TaskAdded,
    TaskDeleted,
    TaskProcessing,
    TaskUpdated,
)
from .models import FormField, LogEntry, Task, TaskStatus

logger = logging.getLogger(__name__)

FormDataInput = Iterable[Union[FormField, Mapping[str, Any]]]


class TaskScheduler:
    """Single-flight FIFO queue of form-automation tasks.

    All methods are synchronous and never block.  They must be called from
    the thread that runs the worker's event loop.

    Args:
        events: Bus used for lifecycle events.  A fresh one is created when
                omitted.
    """

    def __init__(self, events: Optional[EventBus] = None) -> None:
        self.events = events or EventBus()
        self._tasks: "OrderedDict[str, Task]" = OrderedDict()
        self._pending: Deque[str] = deque()
        self.is_processing = False
        self.current_task_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, url: str, form_data: FormDataInput) -> Task:
        """Create a new QUEUED task and try to start processing.

        Raises:
            ValidationError: if *url* or *form_data* is missing, or an entry
                has no selector.
        """
        if not url or not str(url).strip():
            raise ValidationError("URL and formData are required")
        if not form_data:
            raise ValidationError("URL and formData are required")

        fields = []
        for item in form_data:
            if not isinstance(item, (FormField, Mapping)):
                raise ValidationError("formData entries must be {selector, value} objects")
            form_field = FormField.coerce(item)
            if not form_field.selector:
                raise ValidationError("Every formData entry needs a selector")
            fields.append(form_field)
        if not fields:
            raise ValidationError("URL and formData are required")

        task = Task(url=str(url).strip(), form_data=fields)
        self._tasks[task.id] = task
        self._pending.append(task.id)
        logger.info(
            "Enqueued task %s  url=%s  fields=%d", task.short_id, task.url, len(fields)
        )
        self.events.emit(TaskAdded(task))
        self.process_next()
        return task

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def list_all(self) -> List[Task]:
        """Return every task, newest first."""
        return list(reversed(self._tasks.values()))

    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def delete(self, task_id: str) -> bool:
        """Remove a task at any status.  Returns whether it existed.

        Deleting the in-flight task is how a run is cancelled: the worker
        reacts to the :class:`TaskDeleted` event and releases the queue
        once it has unwound.
        """
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        try:
            self._pending.remove(task_id)
        except ValueError:
            pass
        logger.info("Deleted task %s (status=%s)", task.short_id, task.status.value)
        self.events.emit(TaskDeleted(task_id))
        return True

    def set_status(
        self,
        task_id: str,
        status: TaskStatus,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Update a task's status.  Unknown ids are ignored."""
        task = self._tasks.get(task_id)
        if task is None:
            logger.debug("set_status(%s) ignored: task %s is gone", status, task_id[:8])
            return
        task.status = TaskStatus(status)
        if result is not None:
            task.result = result
        if error is not None:
            task.error = error
        task.touch()
        self.events.emit(TaskUpdated(task))

    def append_log(self, task_id: str, message: str) -> None:
        """Append a line to a task's audit trail.  Unknown ids are ignored."""
        task = self._tasks.get(task_id)
        if task is None:
            return
        task.logs.append(LogEntry(message=message))
        task.touch()
        self.events.emit(TaskUpdated(task))

    def complete(self, task_id: str, result: Optional[Dict[str, Any]] = None) -> None:
        self.finish(task_id, TaskStatus.COMPLETED, result=result)

    def fail(self, task_id: str, error: str, result: Optional[Dict[str, Any]] = None) -> None:
        self.finish(task_id, TaskStatus.FAILED, result=result, error=error)

    def finish(
        self,
        task_id: str,
        status: TaskStatus,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record a terminal status and move on to the next queued task."""
        if not TaskStatus(status).is_terminal:
            raise ValueError(f"{status} is not a terminal status")
        self.set_status(task_id, status, result=result, error=error)
        logger.info("Task %s finished: %s", task_id[:8], TaskStatus(status).value)
        self.release(task_id)

    def release(self, task_id: str) -> None:
        """Clear the in-flight flag held by *task_id* and start the next task.

        Releasing a task that is not the in-flight task does nothing.
        """
        if not self.is_processing or self.current_task_id != task_id:
            return
        self.is_processing = False
        self.current_task_id = None
        self.process_next()

    def notify_file_uploaded(self, task_id: str, selector: str, file_path: str) -> bool:
        """Hand an uploaded file to a task paused on *selector*.

        Returns False (and signals nothing) if the task no longer exists.
        """
        if task_id not in self._tasks:
            logger.error("File upload for unknown task %s (selector=%s)", task_id[:8], selector)
            return False
        logger.info("File uploaded for task %s, selector %s", task_id[:8], selector)
        self.append_log(task_id, f"File uploaded for {selector}")
        self.events.emit(FileUploaded(task_id, selector, file_path))
        return True

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def process_next(self) -> None:
        """Start the head of the queue unless a task is already in flight."""
        while not self.is_processing and self._pending:
            task_id = self._pending.popleft()
            task = self._tasks.get(task_id)
            if task is None:
                # Deleted while queued.
                continue

            self.is_processing = True
            self.current_task_id = task_id
            self.set_status(task_id, TaskStatus.PROCESSING)
            logger.info("Processing task %s (%s)", task.short_id, task.url)
            self.events.emit(TaskProcessing(task))

    def summary(self) -> Dict[str, Any]:
        """Counts by status plus the in-flight marker."""
        counts = {status.value: 0 for status in TaskStatus}
        for task in self._tasks.values():
            counts[task.status.value] += 1
        return {
            "total": len(self._tasks),
            "queued": len(self._pending),
            "is_processing": self.is_processing,
            "current_task_id": self.current_task_id,
            "by_status": counts,
        }
