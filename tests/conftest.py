# tests/conftest.py

from __future__ import annotations

from typing import List

import pytest

from form_automation.queue.events import TaskProcessing, TaskUpdated
from form_automation.queue.scheduler import TaskScheduler


class EventRecorder:
    """Collects every event of the given types emitted on a scheduler's bus."""

    def __init__(self, scheduler: TaskScheduler, *event_types: type) -> None:
        self.events: List[object] = []
        for event_type in event_types:
            scheduler.events.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type) -> List[object]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture()
def scheduler() -> TaskScheduler:
    return TaskScheduler()


@pytest.fixture()
def started(scheduler: TaskScheduler) -> List[str]:
    """Ids of tasks in the order the scheduler handed them to a worker."""
    order: List[str] = []
    scheduler.events.subscribe(TaskProcessing, lambda e: order.append(e.task.id))
    return order


@pytest.fixture()
def status_trail(scheduler: TaskScheduler) -> List[tuple]:
    """(task_id, status) after every TaskUpdated, collapsed to status changes."""
    trail: List[tuple] = []

    def record(event: TaskUpdated) -> None:
        entry = (event.task.id, event.task.status)
        if not trail or trail[-1] != entry:
            trail.append(entry)

    scheduler.events.subscribe(TaskUpdated, record)
    return trail
