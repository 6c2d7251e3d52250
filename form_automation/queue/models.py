"""
Queue Task Model

Defines the Task dataclass and its companions used throughout the queue
system to represent a single form-automation request.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class TaskStatus(str, Enum):
    """Lifecycle states of a :class:`Task`."""

    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    WAITING_FOR_FILE = "WAITING_FOR_FILE"
    COMPLETED = "COMPLETED"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.PROCESSING, TaskStatus.WAITING_FOR_FILE)


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.PARTIAL_SUCCESS, TaskStatus.FAILED}
)


@dataclass(frozen=True)
class FormField:
    """One declared ``{selector, value}`` pair."""

    selector: str
    value: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"selector": self.selector, "value": self.value}

    @classmethod
    def coerce(cls, item: Union["FormField", Mapping[str, Any]]) -> "FormField":
        """Build a FormField from an instance or a ``{selector, value}`` mapping."""
        if isinstance(item, FormField):
            return item
        value = item.get("value", "")
        return cls(
            selector=str(item.get("selector") or "").strip(),
            value="" if value is None else str(value),
        )


@dataclass(frozen=True)
class LogEntry:
    """A single timestamped line of a task's audit trail."""

    message: str
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, str]:
        return {"timestamp": self.timestamp, "message": self.message}


@dataclass
class FieldResult:
    """Outcome of filling one field of the working set."""

    selector: str
    status: str  # "filled" or "failed"
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"selector": self.selector, "status": self.status}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class Task:
    """A single form-automation request.

    Attributes:
        url:        Address of the form to fill.
        form_data:  Declared ``FormField`` list, in the order supplied.
        id:         Unique task identifier (UUID4 hex string).
        status:     Current :class:`TaskStatus`.
        result:     Paused-selector context while waiting for a file, or the
                    per-field fill report once the task is terminal.
        error:      Failure reason, only set on ``FAILED``.
        logs:       Append-only audit trail of the automation run.
        created_at: ISO-8601 timestamp of task creation.
        updated_at: ISO-8601 timestamp of the last status or log change.
    """

    url: str
    form_data: List[FormField]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TaskStatus = TaskStatus.QUEUED
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    logs: List[LogEntry] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly dict representation of the task."""
        return {
            "id": self.id,
            "url": self.url,
            "form_data": [f.to_dict() for f in self.form_data],
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "logs": [entry.to_dict() for entry in self.logs],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def touch(self) -> None:
        """Update the ``updated_at`` timestamp to *now*."""
        self.updated_at = _now()

    @property
    def short_id(self) -> str:
        return self.id[:8]
