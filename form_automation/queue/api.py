"""
Queue Tool API

Tool definitions and handlers that expose the queue to tool-calling
agents: ``add_task``, ``view_task`` and ``delete_task``.  Every handler
returns a ``{"content": [...]}`` payload; failures carry ``"isError": True``
instead of raising.

The handlers touch the scheduler directly, so they must run on the thread
that owns its event loop.  From any other thread go through the runtime::

    from form_automation.queue.api import call_tool

    payload = runtime.call(call_tool, runtime.scheduler, "add_task", {
        "url": "https://example.com/form",
        "formData": [{"selector": "#email", "value": "a@b.c"}],
    })
"""

import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from .scheduler import TaskScheduler

logger = logging.getLogger(__name__)

TOOLS: List[Dict[str, Any]] = [
    {
        "name": "add_task",
        "description": "Enqueue a new form automation task",
        "inputSchema": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL of the form to automate"},
                "formData": {
                    "type": "array",
                    "description": "List of form fields to fill",
                    "items": {
                        "type": "object",
                        "properties": {
                            "selector": {"type": "string", "description": "CSS selector of the field"},
                            "value": {"type": "string", "description": "Value to fill"},
                        },
                        "required": ["selector", "value"],
                    },
                },
            },
            "required": ["url", "formData"],
        },
    },
    {
        "name": "view_task",
        "description": "Retrieve the status of an existing task or all tasks",
        "inputSchema": {
            "type": "object",
            "properties": {
                "taskId": {
                    "type": "string",
                    "description": "The ID of the task to view. If omitted, lists all tasks.",
                },
            },
        },
    },
    {
        "name": "delete_task",
        "description": "Cancel or remove a task",
        "inputSchema": {
            "type": "object",
            "properties": {
                "taskId": {"type": "string", "description": "The ID of the task to delete"},
            },
            "required": ["taskId"],
        },
    },
]


def _text(text: str, is_error: bool = False) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        payload["isError"] = True
    return payload


def add_task(scheduler: TaskScheduler, args: Mapping[str, Any]) -> Dict[str, Any]:
    task = scheduler.enqueue(args.get("url"), args.get("formData"))
    return _text(
        json.dumps(
            {"message": "Task added successfully", "taskId": task.id, "status": task.status.value},
            indent=2,
        )
    )


def view_task(scheduler: TaskScheduler, args: Mapping[str, Any]) -> Dict[str, Any]:
    task_id: Optional[str] = args.get("taskId")
    if task_id:
        task = scheduler.get(task_id)
        if task is None:
            return _text(f"Task with ID {task_id} not found", is_error=True)
        return _text(json.dumps(task.to_dict(), indent=2))
    return _text(json.dumps([t.to_dict() for t in scheduler.list_all()], indent=2))


def delete_task(scheduler: TaskScheduler, args: Mapping[str, Any]) -> Dict[str, Any]:
    task_id = args.get("taskId")
    if not task_id or not scheduler.delete(task_id):
        return _text(f"Task with ID {task_id} not found", is_error=True)
    return _text(f"Task {task_id} deleted successfully")


_HANDLERS: Dict[str, Callable[[TaskScheduler, Mapping[str, Any]], Dict[str, Any]]] = {
    "add_task": add_task,
    "view_task": view_task,
    "delete_task": delete_task,
}


def call_tool(scheduler: TaskScheduler, name: str, args: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Dispatch a tool call by *name*, turning every error into a payload."""
    handler = _HANDLERS.get(name)
    try:
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        return handler(scheduler, args or {})
    except Exception as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return _text(f"Error: {exc}", is_error=True)
