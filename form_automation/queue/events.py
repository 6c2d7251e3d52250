"""
Queue Events

Typed lifecycle events and a small observer bus connecting the scheduler
to the worker and to live-update observers.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List, Type, TypeVar

from .models import Task

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Event types
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TaskAdded:
    task: Task


@dataclass(frozen=True)
class TaskUpdated:
    """Emitted on every status or log mutation."""

    task: Task


@dataclass(frozen=True)
class TaskDeleted:
    task_id: str


@dataclass(frozen=True)
class TaskProcessing:
    """The scheduler handed *task* to the worker."""

    task: Task


@dataclass(frozen=True)
class FileUploaded:
    task_id: str
    selector: str
    file_path: str


E = TypeVar("E")
Handler = Callable[[E], None]


# ------------------------------------------------------------------
# Bus
# ------------------------------------------------------------------


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`.

    Closing it unregisters the handler; it can also be used as a context
    manager so the registration is scoped to a block.
    """

    def __init__(self, bus: "EventBus", event_type: type, handler: Callable) -> None:
        self._bus = bus
        self._event_type = event_type
        self._handler = handler
        self.active = True

    def close(self) -> None:
        if self.active:
            self.active = False
            self._bus._remove(self._event_type, self._handler)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class EventBus:
    """Synchronous publish/subscribe keyed by event class."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[type, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Handler) -> Subscription:
        self._handlers[event_type].append(handler)
        return Subscription(self, event_type, handler)

    def emit(self, event: object) -> None:
        """Deliver *event* to every handler registered for its type.

        A failing handler is logged and does not prevent delivery to the
        remaining handlers.
        """
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s", handler, type(event).__name__
                )

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, ()))

    def _remove(self, event_type: type, handler: Callable) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)
