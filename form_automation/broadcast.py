"""
Live-update broadcaster

Fans scheduler lifecycle events out to every attached observer.  Each
observer owns a thread-safe queue so it can be drained from a web request
thread while events are produced on the worker's event loop.
"""

import logging
import queue
from typing import Any, Dict, List

from .queue.events import TaskAdded, TaskDeleted, TaskProcessing, TaskUpdated
from .queue.scheduler import TaskScheduler

logger = logging.getLogger(__name__)

Message = Dict[str, Any]


class Broadcaster:
    """Relays ``taskAdded``/``taskUpdated``/``taskDeleted``/``taskProcessing``."""

    def __init__(self, scheduler: TaskScheduler, max_backlog: int = 1000) -> None:
        self.scheduler = scheduler
        self.max_backlog = max_backlog
        self._observers: List["queue.Queue[Message]"] = []
        events = scheduler.events
        self._subscriptions = [
            events.subscribe(TaskAdded, lambda e: self.publish("taskAdded", e.task.to_dict())),
            events.subscribe(TaskUpdated, lambda e: self.publish("taskUpdated", e.task.to_dict())),
            events.subscribe(TaskDeleted, lambda e: self.publish("taskDeleted", e.task_id)),
            events.subscribe(TaskProcessing, lambda e: self.publish("taskProcessing", e.task.to_dict())),
        ]

    def attach(self) -> "queue.Queue[Message]":
        """Register an observer; its queue starts with the full task list.

        Must run on the scheduler's thread so the snapshot and the
        registration are atomic with respect to new events.
        """
        observer: "queue.Queue[Message]" = queue.Queue(maxsize=self.max_backlog)
        observer.put_nowait(
            {"event": "initialState", "data": [t.to_dict() for t in self.scheduler.list_all()]}
        )
        self._observers.append(observer)
        logger.debug("Observer attached (%d total)", len(self._observers))
        return observer

    def detach(self, observer: "queue.Queue[Message]") -> None:
        if observer in self._observers:
            self._observers.remove(observer)
            logger.debug("Observer detached (%d total)", len(self._observers))

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def publish(self, event: str, data: Any) -> None:
        message = {"event": event, "data": data}
        for observer in list(self._observers):
            try:
                observer.put_nowait(message)
            except queue.Full:
                logger.warning("Dropping slow observer after %d queued events", self.max_backlog)
                self.detach(observer)

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        self._observers.clear()
