"""
Form Automation Queue System

Provides the in-memory task scheduler and the automation worker that fills
and submits web forms one task at a time.
"""

from .errors import TaskCancelled, ValidationError
from .events import EventBus
from .models import FieldResult, FormField, Task, TaskStatus
from .scheduler import TaskScheduler
from .worker import AutomationWorker

__all__ = [
    "AutomationWorker",
    "EventBus",
    "FieldResult",
    "FormField",
    "Task",
    "TaskCancelled",
    "TaskScheduler",
    "TaskStatus",
    "ValidationError",
]
